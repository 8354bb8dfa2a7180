"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import BankConnection
from taxtrack.infra.clients.plaid import (
    PlaidAccount,
    PlaidClientError,
    PlaidItemInfo,
    PublicTokenExchangeResponse,
)
from taxtrack.models.external import SyncDelta

OWNER = "user-1"
OTHER_OWNER = "user-2"
ACCOUNT_ID = "acc_1"


def plaid_txn(
    transaction_id: str,
    *,
    account_id: str = ACCOUNT_ID,
    amount: float | str = 10.0,
    date: str = "2024-03-01",
    name: str = "Test Transaction",
    merchant_name: str | None = None,
    pending: bool = False,
    payment_channel: str | None = "in store",
) -> dict[str, Any]:
    """Build a transaction dict shaped like Plaid's /transactions/sync records."""
    return {
        "transaction_id": transaction_id,
        "account_id": account_id,
        "amount": amount,
        "iso_currency_code": "USD",
        "date": date,
        "name": name,
        "merchant_name": merchant_name,
        "pending": pending,
        "payment_channel": payment_channel,
    }


class FakeProvider:
    """In-memory stand-in for PlaidClient; pages are served in queue order."""

    def __init__(self) -> None:
        self._pages: list[SyncDelta | Exception] = []
        self.cursors_used: list[str | None] = []
        self.accounts: list[PlaidAccount] = [
            {
                "account_id": ACCOUNT_ID,
                "name": "Business Checking",
                "official_name": None,
                "mask": "0000",
                "subtype": "checking",
                "type": "depository",
            },
            {
                "account_id": "acc_2",
                "name": "Business Card",
                "official_name": None,
                "mask": "1111",
                "subtype": None,
                "type": "credit",
            },
        ]

    def queue(
        self,
        *,
        added: list[dict[str, Any]] | None = None,
        modified: list[dict[str, Any]] | None = None,
        removed: list[dict[str, Any]] | None = None,
        next_cursor: str,
        has_more: bool = False,
    ) -> None:
        self._pages.append(
            SyncDelta.parse(
                {
                    "added": added or [],
                    "modified": modified or [],
                    "removed": removed or [],
                    "next_cursor": next_cursor,
                    "has_more": has_more,
                }
            )
        )

    def queue_error(self, error: Exception) -> None:
        self._pages.append(error)

    def sync_transactions(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        count: int = 500,
    ) -> SyncDelta:
        self.cursors_used.append(cursor)
        if not self._pages:
            return SyncDelta(next_cursor=cursor or "")
        page = self._pages.pop(0)
        if isinstance(page, Exception):
            raise page
        return page

    def exchange_public_token(self, public_token: str) -> PublicTokenExchangeResponse:
        if public_token == "public-bad":
            raise PlaidClientError(
                "Plaid API error (400): INVALID_PUBLIC_TOKEN",
                error_code="INVALID_PUBLIC_TOKEN",
                error_message="provided public token is expired",
            )
        return PublicTokenExchangeResponse(
            access_token="access-sandbox-secret", item_id="item_1"
        )

    def get_item_info(self, access_token: str) -> PlaidItemInfo:
        return {
            "item_id": "item_1",
            "institution_id": "ins_1",
            "institution_name": "First Platypus Bank",
            "institution_logo": None,
        }

    def get_accounts(self, access_token: str) -> list[PlaidAccount]:
        return list(self.accounts)


def create_db() -> DB:
    """Create in-memory database instance with default categories."""
    db = DB("sqlite:///:memory:")
    db.create_schema()
    db.seed_default_categories()
    return db


@pytest.fixture
def db() -> DB:
    return create_db()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_txn() -> Callable[..., dict[str, Any]]:
    return plaid_txn


@pytest.fixture
def make_connection(db: DB) -> Callable[..., BankConnection]:
    def _make(
        *, user_id: str = OWNER, account_id: str = ACCOUNT_ID
    ) -> BankConnection:
        return db.create_bank_connection(
            {
                "user_id": user_id,
                "external_item_id": "item_1",
                "external_account_id": account_id,
                "access_token": "access-sandbox-secret",
                "institution_name": "First Platypus Bank",
                "account_name": "Business Checking",
                "account_mask": "0000",
            }
        )

    return _make


@pytest.fixture
def connection(make_connection: Callable[..., BankConnection]) -> BankConnection:
    return make_connection()
