"""Typed records for data arriving from the external transaction provider.

Provider payloads are validated and coerced here, at the boundary, so the
reconciler never sees loosely typed dicts.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Self

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ExternalBaseModel(BaseModel):
    """Shared base accepting both provider and local field names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    @classmethod
    def parse(cls, data: Any) -> Self:
        return cls.model_validate(data)


class ExternalTransaction(ExternalBaseModel):
    """One added or modified transaction from a sync delta."""

    external_transaction_id: str = Field(
        validation_alias=AliasChoices("transaction_id", "external_transaction_id"),
        min_length=1,
    )
    external_account_id: str = Field(
        validation_alias=AliasChoices("account_id", "external_account_id"),
        min_length=1,
    )
    # Signed exactly as received: positive = money out, negative = money in
    amount: Decimal
    date: dt.date
    name: str = Field(validation_alias=AliasChoices("name", "description"))
    merchant_name: str | None = None
    pending: bool = False
    payment_channel: str | None = None


class RemovedTransaction(ExternalBaseModel):
    external_transaction_id: str = Field(
        validation_alias=AliasChoices("transaction_id", "external_transaction_id"),
        min_length=1,
    )
    external_account_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("account_id", "external_account_id"),
    )


class SyncDelta(ExternalBaseModel):
    """One page of an incremental sync."""

    added: list[ExternalTransaction] = Field(default_factory=list)
    modified: list[ExternalTransaction] = Field(default_factory=list)
    removed: list[RemovedTransaction] = Field(default_factory=list)
    next_cursor: str
    has_more: bool = False
