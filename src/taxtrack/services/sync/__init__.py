"""Incremental bank sync: duplicate detection and delta reconciliation."""

from taxtrack.services.sync.duplicate_guard import (
    DuplicateGuard,
    DuplicateMatch,
    MatchKind,
)
from taxtrack.services.sync.reconciler import (
    SyncCounts,
    SyncReconciler,
    TransactionProvider,
)

__all__ = [
    "DuplicateGuard",
    "DuplicateMatch",
    "MatchKind",
    "SyncCounts",
    "SyncReconciler",
    "TransactionProvider",
]
