from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, Field, model_validator

from taxtrack.adapters.db.models import amount_to_cents
from taxtrack.schemas.base import InputSchema

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
MAX_BULK_SIZE = 100

TransactionStatusName = Literal["pending", "categorized", "reviewed"]


def _check_calendar_date(value: str) -> str:
    try:
        dt.date.fromisoformat(value)
    except ValueError as e:
        raise ValueError("Date must be a real calendar date") from e
    return value


CalendarDate = Annotated[
    str, Field(pattern=DATE_PATTERN), AfterValidator(_check_calendar_date)
]


class CreateTransactionInput(InputSchema):
    """Manually entered transaction.

    ``bank_connection_id`` ties the entry to a linked account so a later
    sync of the same date, amount and description backfills it instead of
    inserting a duplicate.
    """

    date: CalendarDate
    amount: Decimal = Field(gt=0, decimal_places=2)
    description: str = Field(min_length=1, max_length=500)
    merchant: str | None = Field(default=None, max_length=255)
    category_id: int | None = None
    bank_connection_id: int | None = None
    tags: list[str] | None = None
    notes: str | None = Field(default=None, max_length=1000)
    is_deductible: bool = False
    status: TransactionStatusName = "pending"

    def posted_on(self) -> dt.date:
        return dt.date.fromisoformat(self.date)

    def to_row(self, user_id: str) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "date": self.posted_on(),
            "amount_cents": amount_to_cents(self.amount),
            "description": self.description,
            "merchant": self.merchant,
            "category_id": self.category_id,
            "bank_connection_id": self.bank_connection_id,
            "tags": self.tags or [],
            "notes": self.notes,
            "is_deductible": self.is_deductible,
            "status": self.status,
        }


class UpdateTransactionInput(InputSchema):
    """Partial edit of a transaction; only the fields sent are written."""

    date: CalendarDate | None = None
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    description: str | None = Field(default=None, min_length=1, max_length=500)
    merchant: str | None = Field(default=None, max_length=255)
    category_id: int | None = None
    tags: list[str] | None = None
    notes: str | None = Field(default=None, max_length=1000)
    is_deductible: bool | None = None
    status: TransactionStatusName | None = None

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> UpdateTransactionInput:
        for name in ("date", "amount", "description", "is_deductible", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def to_changes(self) -> dict[str, Any]:
        """Column values for the provided fields."""
        changes = self.provided()
        if "date" in changes:
            changes["date"] = dt.date.fromisoformat(changes["date"])
        if "amount" in changes:
            changes["amount_cents"] = amount_to_cents(changes.pop("amount"))
        if "tags" in changes and changes["tags"] is None:
            changes["tags"] = []
        return changes


class BulkCreateTransactionsInput(InputSchema):
    transactions: list[CreateTransactionInput] = Field(
        min_length=1, max_length=MAX_BULK_SIZE
    )


class BulkUpdateTransactionsInput(InputSchema):
    transaction_ids: list[int] = Field(min_length=1, max_length=MAX_BULK_SIZE)
    updates: UpdateTransactionInput


class BulkDeleteTransactionsInput(InputSchema):
    transaction_ids: list[int] = Field(min_length=1, max_length=MAX_BULK_SIZE)


class BulkCategorizeInput(InputSchema):
    transaction_ids: list[int] = Field(min_length=1, max_length=MAX_BULK_SIZE)
    category_id: int


class ReportPeriodInput(InputSchema):
    """Inclusive date window for reports; either end may be open."""

    from_date: CalendarDate | None = None
    to_date: CalendarDate | None = None

    def bounds(self) -> tuple[dt.date | None, dt.date | None]:
        start = dt.date.fromisoformat(self.from_date) if self.from_date else None
        end = dt.date.fromisoformat(self.to_date) if self.to_date else None
        return start, end
