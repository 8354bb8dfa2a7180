"""Duplicate detection for incoming external transactions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import Transaction, amount_to_cents
from taxtrack.models.external import ExternalTransaction


class MatchKind(Enum):
    """How an incoming record relates to existing local transactions."""

    PRIMARY = "primary"  # same owner + external ID: already synced
    SECONDARY = "secondary"  # same business fields, external ID not yet attached
    NONE = "none"


@dataclass(frozen=True)
class DuplicateMatch:
    kind: MatchKind
    transaction: Transaction | None = None


class DuplicateGuard:
    """Classifies an external record as primary-, secondary- or no-match.

    Every lookup is filtered on the owner, so records of other owners can
    never match. The check-then-act sequence done by callers is only safe
    while the caller holds the connection's sync lease.
    """

    def __init__(self, db: DB) -> None:
        self._db = db

    def classify(
        self,
        record: ExternalTransaction,
        *,
        user_id: str,
        bank_connection_id: int,
    ) -> DuplicateMatch:
        existing = self._db.find_transaction_by_external_id(
            user_id=user_id,
            external_transaction_id=record.external_transaction_id,
        )
        if existing is not None:
            return DuplicateMatch(kind=MatchKind.PRIMARY, transaction=existing)

        candidate = self._db.find_unlinked_transaction_by_details(
            user_id=user_id,
            bank_connection_id=bank_connection_id,
            posted_on=record.date,
            amount_cents=amount_to_cents(record.amount),
            description=record.name,
        )
        if candidate is not None:
            return DuplicateMatch(kind=MatchKind.SECONDARY, transaction=candidate)

        return DuplicateMatch(kind=MatchKind.NONE)
