from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import BankConnection
from taxtrack.errors import ConflictError, NotFoundError, ProviderError
from taxtrack.infra.clients.plaid import PlaidClientError
from taxtrack.services.connections import ConnectionService
from taxtrack.services.sync.reconciler import SyncReconciler


def create_service(db: DB, provider: Any) -> ConnectionService:
    return ConnectionService(db, provider, SyncReconciler(db, provider))


class TestLinkAccount:
    def test_link_persists_connection_and_runs_first_sync(
        self, db: DB, provider: Any, make_txn: Callable[..., dict[str, Any]]
    ) -> None:
        # input
        provider.queue(added=[make_txn("tx_1"), make_txn("tx_2")], next_cursor="c1")
        service = create_service(db, provider)

        # act
        result = service.link_account("user-1", "public-ok", "acc_1")

        # assert
        assert result.sync is not None
        assert result.sync.added == 2
        assert result.sync_error is None
        assert result.connection.status == "connected"
        assert result.connection.cursor == "c1"
        assert result.connection.institution_name == "First Platypus Bank"
        assert result.connection.account_mask == "0000"
        assert result.to_dict()["connection"]["access_token"] == "***"

    def test_unknown_account_is_not_found(self, db: DB, provider: Any) -> None:
        with pytest.raises(NotFoundError):
            create_service(db, provider).link_account("user-1", "public-ok", "acc_x")
        assert db.list_bank_connections(user_id="user-1") == []

    def test_relinking_same_account_conflicts(self, db: DB, provider: Any) -> None:
        # input
        service = create_service(db, provider)
        service.link_account("user-1", "public-ok", "acc_1")

        # act / assert
        with pytest.raises(ConflictError):
            service.link_account("user-1", "public-ok", "acc_1")

    def test_exchange_failure_is_provider_error(self, db: DB, provider: Any) -> None:
        with pytest.raises(ProviderError) as exc_info:
            create_service(db, provider).link_account("user-1", "public-bad", "acc_1")
        assert exc_info.value.error_code == "INVALID_PUBLIC_TOKEN"

    def test_failed_first_sync_keeps_link(self, db: DB, provider: Any) -> None:
        # input
        provider.queue_error(
            PlaidClientError(
                "Plaid API error (400): PRODUCT_NOT_READY",
                error_code="PRODUCT_NOT_READY",
                error_message="the requested product is not yet ready",
            )
        )
        service = create_service(db, provider)

        # act
        result = service.link_account("user-1", "public-ok", "acc_1")

        # assert
        assert result.sync is None
        assert result.sync_error is not None
        assert result.sync_error.code == "PROVIDER_ERROR"
        assert result.connection.status == "error"
        assert result.connection.error_code == "PRODUCT_NOT_READY"
        assert result.connection.cursor is None


class TestConnectionLifecycle:
    def test_list_masks_access_token(
        self, db: DB, provider: Any, connection: BankConnection
    ) -> None:
        # act
        listed = create_service(db, provider).list_connections("user-1")

        # assert
        assert len(listed) == 1
        assert listed[0]["access_token"] == "***"
        assert listed[0]["id"] == connection.id

    def test_disconnect_is_owner_scoped(
        self, db: DB, provider: Any, connection: BankConnection
    ) -> None:
        # input
        service = create_service(db, provider)

        # act
        with pytest.raises(NotFoundError):
            service.disconnect("user-2", connection.id)
        service.disconnect("user-1", connection.id)

        # assert
        reloaded = db.get_bank_connection(connection.id, user_id="user-1")
        assert reloaded is not None
        assert reloaded.status == "disconnected"


class TestSyncAllPages:
    def test_drains_until_has_more_is_false(
        self,
        db: DB,
        provider: Any,
        connection: BankConnection,
        make_txn: Callable[..., dict[str, Any]],
    ) -> None:
        # input
        provider.queue(added=[make_txn("tx_1")], next_cursor="c1", has_more=True)
        provider.queue(added=[make_txn("tx_2")], next_cursor="c2", has_more=True)
        provider.queue(added=[make_txn("tx_3")], next_cursor="c3")

        # act
        total = create_service(db, provider).sync_all_pages("user-1", connection.id)

        # assert
        assert total.added == 3
        assert total.has_more is False
        assert provider.cursors_used == [None, "c1", "c2"]

    def test_stops_at_pass_limit(
        self, db: DB, provider: Any, connection: BankConnection
    ) -> None:
        # input
        for i in range(5):
            provider.queue(next_cursor=f"c{i}", has_more=True)

        # act
        total = create_service(db, provider).sync_all_pages(
            "user-1", connection.id, max_passes=2
        )

        # assert
        assert total.has_more is True
        assert len(provider.cursors_used) == 2
