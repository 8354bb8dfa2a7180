"""Taxtrack - tax expense tracking with bank sync and rule-based categorization."""

__version__ = "0.1.0"
