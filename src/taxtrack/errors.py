"""Error taxonomy shared by every taxtrack component.

Each error carries a stable ``code`` so callers (CLI, HTTP layers) can map
failures without string matching on messages.
"""

from __future__ import annotations

from typing import Any


class TaxtrackError(Exception):
    """Base error for taxtrack failures."""

    code = "SERVER_ERROR"

    def __init__(self, message: str, *, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TaxtrackError):
    """Malformed input, rejected before any persistence."""

    code = "VALIDATION_ERROR"


class NotFoundError(TaxtrackError):
    """Referenced record does not resolve within the caller's owner scope."""

    code = "NOT_FOUND"


class ConflictError(TaxtrackError):
    """Unique-key violation or a state that forbids the operation."""

    code = "CONFLICT"


class ForbiddenError(TaxtrackError):
    """Operation on a record the caller may read but never mutate."""

    code = "FORBIDDEN"


class SyncInProgressError(ConflictError):
    """Another sync pass holds the lease for this connection."""

    code = "SYNC_IN_PROGRESS"


class ConnectionInactiveError(TaxtrackError):
    """Bank connection is disconnected and can no longer sync."""

    code = "CONNECTION_INACTIVE"


class ProviderError(TaxtrackError):
    """External transaction provider call failed."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, details=details)
        self.error_code = error_code


class DatabaseError(TaxtrackError):
    """Persistence layer failure."""

    code = "DATABASE_ERROR"
