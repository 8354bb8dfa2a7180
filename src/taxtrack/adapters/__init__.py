"""Persistence and external-system adapters."""
