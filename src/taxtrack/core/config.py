from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Literal

RemovedPolicy = Literal["delete", "tombstone"]
LogLevel = Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"]

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"}


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded at process startup."""

    database_url: str = "sqlite:///taxtrack.db"
    sync_lease_seconds: int = 300
    removed_policy: RemovedPolicy = "delete"
    log_level: LogLevel = "INFO"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_app_config_from_env() -> AppConfig:
    """Load app config from env and validate startup requirements."""
    database_url = os.environ.get(
        "TAXTRACK_DATABASE_URL", "sqlite:///taxtrack.db"
    ).strip()
    if not database_url:
        raise ValueError("TAXTRACK_DATABASE_URL must not be empty")

    sync_lease_seconds = _int_env("TAXTRACK_SYNC_LEASE_SECONDS", 300)

    removed_policy = os.environ.get("TAXTRACK_REMOVED_POLICY", "delete").strip()
    if removed_policy not in {"delete", "tombstone"}:
        raise ValueError("TAXTRACK_REMOVED_POLICY must be one of: delete, tombstone")

    log_level = os.environ.get("TAXTRACK_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(
            "TAXTRACK_LOG_LEVEL must be one of: " + ", ".join(sorted(_LOG_LEVELS))
        )

    return AppConfig(
        database_url=database_url,
        sync_lease_seconds=sync_lease_seconds,
        removed_policy=removed_policy,  # type: ignore[arg-type]
        log_level=log_level,  # type: ignore[arg-type]
    )
