from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, TypedDict

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


class ConnectionStatus(Enum):
    CONNECTED = "connected"
    SYNCING = "syncing"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class TransactionStatus(Enum):
    PENDING = "pending"
    CATEGORIZED = "categorized"
    REVIEWED = "reviewed"


class BankConnection(Base):
    """One linked external bank account.

    Never hard-deleted; ``status=disconnected`` is terminal.
    """

    __tablename__ = "bank_connections"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "external_account_id",
            name="uq_bank_connections_user_account",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    external_item_id: Mapped[str] = mapped_column(String, nullable=False)
    external_account_id: Mapped[str] = mapped_column(String, nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    institution_id: Mapped[str | None] = mapped_column(String, nullable=True)
    institution_name: Mapped[str | None] = mapped_column(String, nullable=True)
    institution_logo: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_name: Mapped[str | None] = mapped_column(String, nullable=True)
    account_type: Mapped[str | None] = mapped_column(String, nullable=True)
    account_subtype: Mapped[str | None] = mapped_column(String, nullable=True)
    account_mask: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=ConnectionStatus.CONNECTED.value
    )
    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_sync_date: Mapped[dt.datetime | None] = mapped_column(
        TIMESTAMP, nullable=True
    )
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sync_lease_token: Mapped[str | None] = mapped_column(String, nullable=True)
    sync_lease_expires_at: Mapped[dt.datetime | None] = mapped_column(
        TIMESTAMP, nullable=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    def to_public_dict(self) -> dict[str, Any]:
        """Serializable view with the access credential masked."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "external_item_id": self.external_item_id,
            "external_account_id": self.external_account_id,
            "access_token": "***",
            "institution_id": self.institution_id,
            "institution_name": self.institution_name,
            "account_name": self.account_name,
            "account_type": self.account_type,
            "account_subtype": self.account_subtype,
            "account_mask": self.account_mask,
            "status": self.status,
            "last_sync_date": (
                self.last_sync_date.isoformat() if self.last_sync_date else None
            ),
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class Category(Base):
    """Category model.

    Default categories have no owner and are immutable.
    """

    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_categories_user_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    color: Mapped[str] = mapped_column(String, nullable=False, default="#6B7280")
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("FALSE")
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    transactions: Mapped[list[Transaction]] = relationship(
        "Transaction", back_populates="category"
    )


class Transaction(Base):
    """Locally owned financial event, optionally originating from a bank sync."""

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "external_transaction_id",
            name="uq_transactions_user_external_id",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    # Positive = expense, negative = income
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str | None] = mapped_column(String, nullable=True)
    category_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("categories.id"), nullable=True
    )
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deductible: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=TransactionStatus.PENDING.value
    )
    external_transaction_id: Mapped[str | None] = mapped_column(
        String, nullable=True
    )
    external_account_id: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_connection_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("bank_connections.id"), nullable=True
    )
    removed_at: Mapped[dt.datetime | None] = mapped_column(
        TIMESTAMP, nullable=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    # Relationships
    category: Mapped[Category | None] = relationship(
        "Category", back_populates="transactions"
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)


class AutoCategorizeRule(Base):
    """Owner-scoped pattern rule; higher priority is evaluated first."""

    __tablename__ = "auto_categorize_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    pattern: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("categories.id"), nullable=False
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[dt.datetime] = mapped_column(
        TIMESTAMP, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class CategorySeed(TypedDict):
    name: str
    color: str
    description: str | None


DEFAULT_CATEGORIES: list[CategorySeed] = [
    {
        "name": "Office Supplies",
        "color": "#3B82F6",
        "description": "Paper, pens, printer ink and other office consumables",
    },
    {
        "name": "Travel",
        "color": "#10B981",
        "description": "Flights, lodging, car service and other business travel",
    },
    {
        "name": "Meals & Entertainment",
        "color": "#F59E0B",
        "description": "Business meals and client entertainment",
    },
    {
        "name": "Software & Subscriptions",
        "color": "#8B5CF6",
        "description": "SaaS tools and recurring subscriptions",
    },
    {
        "name": "Marketing",
        "color": "#EC4899",
        "description": "Advertising and promotion",
    },
    {
        "name": "Equipment",
        "color": "#6366F1",
        "description": "Computers, hardware and durable equipment",
    },
    {
        "name": "Professional Services",
        "color": "#14B8A6",
        "description": "Legal, accounting and consulting fees",
    },
    {
        "name": "Other",
        "color": "#6B7280",
        "description": None,
    },
]


_CENT = Decimal("0.01")


def amount_to_cents(amount: Decimal | int | float | str) -> int:
    """Convert a signed decimal amount to integer cents (half-up rounding).

    Floats go through ``str`` first so 42.5 becomes exactly 4250.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral())


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)
