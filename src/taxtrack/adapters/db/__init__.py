"""Database adapter: ORM models and the DB facade."""

from __future__ import annotations

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import (
    AutoCategorizeRule,
    BankConnection,
    Base,
    Category,
    ConnectionStatus,
    Transaction,
    TransactionStatus,
    amount_to_cents,
    cents_to_amount,
)

__all__ = [
    "DB",
    "AutoCategorizeRule",
    "BankConnection",
    "Base",
    "Category",
    "ConnectionStatus",
    "Transaction",
    "TransactionStatus",
    "amount_to_cents",
    "cents_to_amount",
]
