"""Tax reporting over an owner's transactions.

Amounts follow the provider sign convention: positive is money out
(an expense), negative is money in (income). Removed (tombstoned) rows are
left out of every figure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import datetime as dt
from decimal import Decimal
from typing import Any

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import (
    Category,
    ConnectionStatus,
    Transaction,
    cents_to_amount,
)
from taxtrack.schemas.transaction import ReportPeriodInput

UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_COLOR = "#9CA3AF"


@dataclass
class CategoryTotal:
    category_id: int | None
    name: str
    color: str
    total: Decimal
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_id": self.category_id,
            "name": self.name,
            "color": self.color,
            "total": str(self.total),
            "count": self.count,
        }


@dataclass
class TaxSummary:
    """Totals for a reporting period; open ends mean "all time"."""

    period_from: dt.date | None
    period_to: dt.date | None
    total_income: Decimal
    total_expenses: Decimal
    deductible_expenses: Decimal
    transaction_count: int
    category_breakdown: list[CategoryTotal] = field(default_factory=list)
    deductible_by_category: list[CategoryTotal] = field(default_factory=list)

    @property
    def net_income(self) -> Decimal:
        return self.total_income - self.total_expenses

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": {
                "from": self.period_from.isoformat() if self.period_from else None,
                "to": self.period_to.isoformat() if self.period_to else None,
            },
            "summary": {
                "total_income": str(self.total_income),
                "total_expenses": str(self.total_expenses),
                "net_income": str(self.net_income),
                "deductible_expenses": str(self.deductible_expenses),
                "transaction_count": self.transaction_count,
            },
            "category_breakdown": [c.to_dict() for c in self.category_breakdown],
            "deductible_by_category": [
                c.to_dict() for c in self.deductible_by_category
            ],
        }


@dataclass
class UserStats:
    transaction_count: int
    bank_connection_count: int
    custom_category_count: int
    total_spending: Decimal
    deductible_count: int
    uncategorized_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_count": self.transaction_count,
            "bank_connection_count": self.bank_connection_count,
            "custom_category_count": self.custom_category_count,
            "total_spending": str(self.total_spending),
            "deductible_count": self.deductible_count,
            "uncategorized_count": self.uncategorized_count,
        }


class ReportService:
    def __init__(self, db: DB) -> None:
        self._db = db

    def tax_summary(
        self,
        user_id: str,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> TaxSummary:
        """
        Summarize income, expenses and deductible expenses for a period.

        ``category_breakdown`` groups every transaction by category using the
        absolute amount; ``deductible_by_category`` groups only deductible
        expenses. Both are sorted by total, largest first.

        Raises:
            ValidationError: A date is not YYYY-MM-DD
        """
        period = ReportPeriodInput.validate_input(
            {"from_date": from_date, "to_date": to_date}
        )
        start, end = period.bounds()
        transactions = self._db.list_transactions_in_period(
            user_id=user_id, start=start, end=end
        )
        categories = {c.id: c for c in self._db.list_categories(user_id=user_id)}

        income = sum(-t.amount_cents for t in transactions if t.amount_cents < 0)
        expenses = [t for t in transactions if t.amount_cents > 0]
        deductible = [t for t in expenses if t.is_deductible]

        return TaxSummary(
            period_from=start,
            period_to=end,
            total_income=cents_to_amount(income),
            total_expenses=cents_to_amount(sum(t.amount_cents for t in expenses)),
            deductible_expenses=cents_to_amount(
                sum(t.amount_cents for t in deductible)
            ),
            transaction_count=len(transactions),
            category_breakdown=_group_by_category(transactions, categories),
            deductible_by_category=_group_by_category(deductible, categories),
        )

    def user_stats(self, user_id: str) -> UserStats:
        transactions = self._db.list_transactions(user_id=user_id)
        connections = self._db.list_bank_connections(user_id=user_id)
        categories = self._db.list_categories(user_id=user_id)

        return UserStats(
            transaction_count=len(transactions),
            bank_connection_count=sum(
                1
                for c in connections
                if c.status == ConnectionStatus.CONNECTED.value
            ),
            custom_category_count=sum(1 for c in categories if not c.is_default),
            total_spending=cents_to_amount(
                sum(t.amount_cents for t in transactions if t.amount_cents > 0)
            ),
            deductible_count=sum(1 for t in transactions if t.is_deductible),
            uncategorized_count=sum(1 for t in transactions if t.category_id is None),
        )


def _group_by_category(
    transactions: list[Transaction], categories: dict[int, Category]
) -> list[CategoryTotal]:
    cents: dict[int | None, int] = {}
    counts: dict[int | None, int] = {}
    for transaction in transactions:
        key = transaction.category_id
        cents[key] = cents.get(key, 0) + abs(transaction.amount_cents)
        counts[key] = counts.get(key, 0) + 1

    totals = []
    for key, total in cents.items():
        category = categories.get(key) if key is not None else None
        totals.append(
            CategoryTotal(
                category_id=key,
                name=category.name if category else UNCATEGORIZED_NAME,
                color=category.color if category else UNCATEGORIZED_COLOR,
                total=cents_to_amount(total),
                count=counts[key],
            )
        )
    totals.sort(key=lambda c: (-c.total, c.name))
    return totals
