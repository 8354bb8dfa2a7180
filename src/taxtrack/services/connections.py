from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import loguru
from loguru import logger

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import BankConnection
from taxtrack.errors import (
    ConflictError,
    NotFoundError,
    ProviderError,
    TaxtrackError,
)
from taxtrack.infra.clients.plaid import (
    PlaidAccount,
    PlaidClientError,
    PlaidItemInfo,
    PublicTokenExchangeResponse,
)
from taxtrack.services.sync.reconciler import (
    SyncCounts,
    SyncReconciler,
    TransactionProvider,
)


class BankLinkProvider(TransactionProvider, Protocol):
    """Provider calls needed to link a new account on top of syncing."""

    def exchange_public_token(
        self, public_token: str
    ) -> PublicTokenExchangeResponse: ...

    def get_item_info(self, access_token: str) -> PlaidItemInfo: ...

    def get_accounts(self, access_token: str) -> list[PlaidAccount]: ...


@dataclass
class LinkResult:
    """A newly linked connection and the outcome of its first sync."""

    connection: BankConnection
    sync: SyncCounts | None = None
    sync_error: TaxtrackError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "connection": self.connection.to_public_dict(),
            "sync": self.sync.to_dict() if self.sync else None,
            "sync_error": (
                {"code": self.sync_error.code, "message": self.sync_error.message}
                if self.sync_error
                else None
            ),
        }


class ConnectionServiceLogger:
    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def linked(self, connection: BankConnection) -> None:
        self._logger.bind(
            connection_id=connection.id, institution=connection.institution_name
        ).info(
            "Linked {} account {} (connection {})",
            connection.institution_name or "bank",
            connection.account_mask or connection.external_account_id,
            connection.id,
        )

    def initial_sync_failed(self, connection_id: int, error: TaxtrackError) -> None:
        self._logger.bind(connection_id=connection_id, code=error.code).warning(
            "Initial sync for connection {} failed: {}", connection_id, error.message
        )

    def disconnected(self, connection_id: int) -> None:
        self._logger.bind(connection_id=connection_id).info(
            "Disconnected connection {}", connection_id
        )

    def drain_stopped(self, connection_id: int, passes: int, reason: str) -> None:
        self._logger.bind(connection_id=connection_id, passes=passes).info(
            "Stopped draining connection {} after {} pass(es): {}",
            connection_id,
            passes,
            reason,
        )


class ConnectionService:
    """Bank connection lifecycle: link, list, disconnect and sync."""

    def __init__(
        self,
        db: DB,
        provider: BankLinkProvider,
        reconciler: SyncReconciler,
    ) -> None:
        self._db = db
        self._provider = provider
        self._reconciler = reconciler
        self._logger = ConnectionServiceLogger()

    def link_account(
        self, user_id: str, public_token: str, account_id: str
    ) -> LinkResult:
        """
        Exchange a Link public token and persist one of the item's accounts.

        The initial sync runs right after the connection is stored. If it
        fails, the connection stays linked (in ``error`` state) and the
        failure is returned in ``LinkResult.sync_error``.

        Raises:
            ProviderError: Token exchange or account lookup failed
            NotFoundError: ``account_id`` is not part of the linked item
            ConflictError: The owner already linked this account
        """
        try:
            exchange = self._provider.exchange_public_token(public_token)
            item = self._provider.get_item_info(exchange.access_token)
            accounts = self._provider.get_accounts(exchange.access_token)
        except PlaidClientError as e:
            raise ProviderError(
                f"Failed to link account: {e.error_message}", error_code=e.error_code
            ) from e

        account = next((a for a in accounts if a["account_id"] == account_id), None)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found on the linked item")

        existing = self._db.find_bank_connection_by_account(
            user_id=user_id, external_account_id=account_id
        )
        if existing is not None:
            raise ConflictError("This bank account is already connected")

        connection = self._db.create_bank_connection(
            {
                "user_id": user_id,
                "external_item_id": exchange.item_id,
                "external_account_id": account["account_id"],
                "access_token": exchange.access_token,
                "institution_id": item["institution_id"],
                "institution_name": item["institution_name"] or "Unknown Bank",
                "institution_logo": item["institution_logo"],
                "account_name": account["name"],
                "account_type": account["type"],
                "account_subtype": account["subtype"] or "other",
                "account_mask": account["mask"],
            }
        )
        self._logger.linked(connection)

        result = LinkResult(connection=connection)
        try:
            result.sync = self._reconciler.sync(connection.id, user_id)
        except TaxtrackError as e:
            self._logger.initial_sync_failed(connection.id, e)
            result.sync_error = e
        refreshed = self._db.get_bank_connection(connection.id, user_id=user_id)
        if refreshed is not None:
            result.connection = refreshed
        return result

    def list_connections(self, user_id: str) -> list[dict[str, Any]]:
        """Owner's connections, newest first, with credentials masked."""
        connections = self._db.list_bank_connections(user_id=user_id)
        return [connection.to_public_dict() for connection in connections]

    def disconnect(self, user_id: str, connection_id: int) -> None:
        """
        Raises:
            NotFoundError: Connection missing or owned by someone else
        """
        if not self._db.disconnect_bank_connection(connection_id, user_id=user_id):
            raise NotFoundError("Bank connection not found or access denied")
        self._logger.disconnected(connection_id)

    def sync(self, user_id: str, connection_id: int) -> SyncCounts:
        return self._reconciler.sync(connection_id, user_id)

    def sync_all_pages(
        self, user_id: str, connection_id: int, *, max_passes: int = 20
    ) -> SyncCounts:
        """
        Re-run the reconciler while the provider reports ``has_more``.

        Stops early when a pass does not advance the cursor (partial
        failure), since repeating it immediately would replay the same page.

        Returns:
            Counts summed over every pass; ``has_more`` reflects the last one
        """
        total = SyncCounts()
        for passes in range(1, max_passes + 1):
            counts = self._reconciler.sync(connection_id, user_id)
            _accumulate(total, counts)
            if not counts.cursor_advanced:
                self._logger.drain_stopped(connection_id, passes, "cursor not advanced")
                break
            if not counts.has_more:
                break
        else:
            self._logger.drain_stopped(connection_id, max_passes, "pass limit reached")
        return total


def _accumulate(total: SyncCounts, counts: SyncCounts) -> None:
    total.added += counts.added
    total.modified += counts.modified
    total.removed += counts.removed
    total.backfilled += counts.backfilled
    total.skipped += counts.skipped
    total.failed += counts.failed
    total.has_more = counts.has_more
    total.cursor_advanced = counts.cursor_advanced
