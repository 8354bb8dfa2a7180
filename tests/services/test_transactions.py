from __future__ import annotations

from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

import pytest

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import BankConnection
from taxtrack.errors import NotFoundError, ValidationError
from taxtrack.services.sync.reconciler import SyncReconciler
from taxtrack.services.transactions import TransactionService


def _category_id(db: DB, name: str) -> int:
    for category in db.list_categories(user_id="user-1"):
        if category.name == name:
            return category.id
    raise AssertionError(f"missing category {name}")


def test_create_transaction_stores_cents(db: DB) -> None:
    # input
    service = TransactionService(db)

    # act
    created = service.create_transaction(
        "user-1",
        {"date": "2024-03-01", "amount": "42.50", "description": "Staples"},
    )

    # assert
    assert created.amount_cents == 4250
    assert created.amount == Decimal("42.50")
    assert created.date == date(2024, 3, 1)
    assert created.status == "pending"
    assert created.external_transaction_id is None


@pytest.mark.parametrize(
    "payload",
    [
        {"date": "03/01/2024", "amount": 10, "description": "Bad date"},
        {"date": "2024-02-30", "amount": 10, "description": "Impossible date"},
        {"date": "2024-03-01", "amount": -5, "description": "Negative"},
        {"date": "2024-03-01", "amount": 10, "description": ""},
    ],
)
def test_create_transaction_rejects_bad_input(db: DB, payload: dict) -> None:
    with pytest.raises(ValidationError):
        TransactionService(db).create_transaction("user-1", payload)
    assert db.list_transactions(user_id="user-1") == []


def test_bulk_categorize_only_touches_owner_rows(db: DB) -> None:
    # input
    service = TransactionService(db)
    mine = service.create_transaction(
        "user-1", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
    )
    theirs = service.create_transaction(
        "user-2", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
    )
    office = _category_id(db, "Office Supplies")

    # act
    updated = service.bulk_categorize("user-1", [mine.id, theirs.id], office)

    # assert
    assert updated == 1
    reloaded = db.get_transaction(mine.id, user_id="user-1")
    assert reloaded is not None
    assert reloaded.category_id == office
    assert reloaded.status == "categorized"
    untouched = db.get_transaction(theirs.id, user_id="user-2")
    assert untouched is not None
    assert untouched.category_id is None


def test_bulk_categorize_unknown_category(db: DB) -> None:
    with pytest.raises(NotFoundError):
        TransactionService(db).bulk_categorize("user-1", [1], 9999)


def test_suggest_category_uses_visible_categories(db: DB) -> None:
    # input
    service = TransactionService(db)

    # act
    office = service.suggest_category("user-1", "office")
    software = service.suggest_category("user-1", "software")
    missing = service.suggest_category("user-1", "Groceries")

    # assert
    assert office is not None
    assert office.name == "Office Supplies"
    assert software is not None
    assert software.name == "Software & Subscriptions"
    assert missing is None


def test_manual_entry_on_connection_is_backfilled_by_sync(
    db: DB,
    provider: Any,
    connection: BankConnection,
    make_txn: Callable[..., dict[str, Any]],
) -> None:
    # input
    service = TransactionService(db)
    manual = service.create_transaction(
        "user-1",
        {
            "date": "2024-03-01",
            "amount": "42.50",
            "description": "Staples",
            "bank_connection_id": connection.id,
        },
    )
    provider.queue(
        added=[make_txn("tx_999", amount=42.50, date="2024-03-01", name="Staples")],
        next_cursor="c1",
    )

    # act
    counts = SyncReconciler(db, provider).sync(connection.id, "user-1")

    # assert
    assert (counts.added, counts.backfilled) == (0, 1)
    transactions = service.list_transactions("user-1")
    assert [t.id for t in transactions] == [manual.id]
    assert transactions[0].external_transaction_id == "tx_999"


def test_manual_entry_cannot_reference_other_owner_connection(
    db: DB, make_connection: Callable[..., BankConnection]
) -> None:
    # input
    theirs = make_connection(user_id="user-2")

    # act / assert
    with pytest.raises(NotFoundError):
        TransactionService(db).create_transaction(
            "user-1",
            {
                "date": "2024-03-01",
                "amount": 10,
                "description": "Paper",
                "bank_connection_id": theirs.id,
            },
        )
    assert db.list_transactions(user_id="user-1") == []


class TestEdits:
    def test_get_other_owner_transaction_is_not_found(self, db: DB) -> None:
        # input
        service = TransactionService(db)
        theirs = service.create_transaction(
            "user-2", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        )

        # act / assert
        with pytest.raises(NotFoundError):
            service.get_transaction("user-1", theirs.id)
        assert service.get_transaction("user-2", theirs.id).description == "Paper"

    def test_update_writes_only_sent_fields(self, db: DB) -> None:
        # input
        service = TransactionService(db)
        created = service.create_transaction(
            "user-1",
            {
                "date": "2024-03-01",
                "amount": 10,
                "description": "Paper",
                "notes": "for the printer",
            },
        )
        office = _category_id(db, "Office Supplies")

        # act
        updated = service.update_transaction(
            "user-1",
            created.id,
            {"amount": "12.75", "category_id": office, "is_deductible": True},
        )

        # assert
        assert updated.amount_cents == 1275
        assert updated.category_id == office
        assert updated.is_deductible is True
        assert updated.description == "Paper"
        assert updated.notes == "for the printer"

    def test_update_rejects_unknown_category_and_null_required_field(
        self, db: DB
    ) -> None:
        # input
        service = TransactionService(db)
        created = service.create_transaction(
            "user-1", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        )

        # act / assert
        with pytest.raises(NotFoundError):
            service.update_transaction("user-1", created.id, {"category_id": 9999})
        with pytest.raises(ValidationError):
            service.update_transaction("user-1", created.id, {"description": None})

    def test_update_other_owner_transaction_is_not_found(self, db: DB) -> None:
        # input
        service = TransactionService(db)
        theirs = service.create_transaction(
            "user-2", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        )

        # act / assert
        with pytest.raises(NotFoundError):
            service.update_transaction("user-1", theirs.id, {"notes": "mine now"})
        untouched = db.get_transaction(theirs.id, user_id="user-2")
        assert untouched is not None
        assert untouched.notes is None

    def test_delete(self, db: DB) -> None:
        # input
        service = TransactionService(db)
        created = service.create_transaction(
            "user-1", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        )

        # act
        service.delete_transaction("user-1", created.id)

        # assert
        assert db.get_transaction(created.id, user_id="user-1") is None
        with pytest.raises(NotFoundError):
            service.delete_transaction("user-1", created.id)


class TestBulk:
    def test_bulk_create_is_all_or_nothing(self, db: DB) -> None:
        # input
        service = TransactionService(db)
        good = {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        bad = {"date": "2024-03-01", "amount": 0, "description": "Free"}

        # act
        with pytest.raises(ValidationError):
            service.bulk_create("user-1", [good, bad])
        created = service.bulk_create(
            "user-1", [good, {**good, "description": "Toner"}]
        )

        # assert
        assert [t.description for t in created] == ["Paper", "Toner"]
        assert len(db.list_transactions(user_id="user-1")) == 2

    def test_bulk_create_rejects_more_than_one_hundred(self, db: DB) -> None:
        row = {"date": "2024-03-01", "amount": 1, "description": "Gum"}
        with pytest.raises(ValidationError):
            TransactionService(db).bulk_create("user-1", [row] * 101)

    def test_bulk_update_skips_other_owner_rows(self, db: DB) -> None:
        # input
        service = TransactionService(db)
        mine = service.bulk_create(
            "user-1",
            [
                {"date": "2024-03-01", "amount": 10, "description": "Paper"},
                {"date": "2024-03-02", "amount": 20, "description": "Toner"},
            ],
        )
        theirs = service.create_transaction(
            "user-2", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        )

        # act
        updated = service.bulk_update(
            "user-1",
            [mine[0].id, mine[1].id, theirs.id],
            {"status": "reviewed", "is_deductible": True},
        )

        # assert
        assert sorted(t.id for t in updated) == sorted(t.id for t in mine)
        assert all(t.status == "reviewed" and t.is_deductible for t in updated)
        untouched = db.get_transaction(theirs.id, user_id="user-2")
        assert untouched is not None
        assert untouched.status == "pending"

    def test_bulk_delete_returns_deleted_ids(self, db: DB) -> None:
        # input
        service = TransactionService(db)
        mine = service.create_transaction(
            "user-1", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        )
        theirs = service.create_transaction(
            "user-2", {"date": "2024-03-01", "amount": 10, "description": "Paper"}
        )

        # act
        deleted = service.bulk_delete("user-1", [mine.id, theirs.id, 9999])

        # assert
        assert deleted == [mine.id]
        assert db.get_transaction(theirs.id, user_id="user-2") is not None
