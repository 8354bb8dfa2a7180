from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, NoReturn, Protocol

import loguru
from loguru import logger

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import (
    BankConnection,
    ConnectionStatus,
    TransactionStatus,
    amount_to_cents,
    cents_to_amount,
)
from taxtrack.core.config import RemovedPolicy
from taxtrack.errors import (
    ConflictError,
    ConnectionInactiveError,
    DatabaseError,
    NotFoundError,
    ProviderError,
    SyncInProgressError,
)
from taxtrack.infra.clients.plaid import PlaidClientError
from taxtrack.models.external import ExternalTransaction, RemovedTransaction, SyncDelta
from taxtrack.services.sync.duplicate_guard import DuplicateGuard, MatchKind

PARTIAL_FAILURE_CODE = "PARTIAL_FAILURE"
UNKNOWN_ERROR_CODE = "UNKNOWN"


class TransactionProvider(Protocol):
    """Incremental transaction source (Plaid's /transactions/sync shape)."""

    def sync_transactions(
        self,
        access_token: str,
        *,
        cursor: str | None = None,
        count: int = 500,
    ) -> SyncDelta: ...


@dataclass
class SyncCounts:
    """Outcome of one reconciliation pass."""

    added: int = 0
    modified: int = 0
    removed: int = 0
    backfilled: int = 0
    skipped: int = 0
    failed: int = 0
    has_more: bool = False
    cursor_advanced: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncReconcilerLogger:
    """Handles all logging for SyncReconciler with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def pass_start(self, connection_id: int, cursor: str | None) -> None:
        cursor_label = cursor or "initial"
        self._logger.bind(connection_id=connection_id, cursor=cursor_label).info(
            "Syncing connection {} (cursor: {})", connection_id, cursor_label
        )

    def delta_received(
        self,
        connection_id: int,
        added_count: int,
        modified_count: int,
        removed_count: int,
        has_more: bool,
    ) -> None:
        self._logger.bind(
            connection_id=connection_id,
            added=added_count,
            modified=modified_count,
            removed=removed_count,
            has_more=has_more,
        ).info(
            "Provider delta: {} added, {} modified, {} removed (has_more={})",
            added_count,
            modified_count,
            removed_count,
            has_more,
        )

    def record_backfilled(self, transaction_id: int, external_id: str) -> None:
        self._logger.bind(transaction_id=transaction_id, external_id=external_id).debug(
            "Attached external ID {} to existing transaction {}",
            external_id,
            transaction_id,
        )

    def modified_unknown(self, connection_id: int, external_id: str) -> None:
        self._logger.bind(connection_id=connection_id, external_id=external_id).warning(
            "Provider modified unknown transaction {}; ignoring", external_id
        )

    def record_failed(self, external_id: str, action: str, error: Exception) -> None:
        self._logger.bind(external_id=external_id, action=action).warning(
            "Failed to {} transaction {}: {}", action, external_id, error
        )

    def lease_busy(self, connection_id: int) -> None:
        self._logger.bind(connection_id=connection_id).warning(
            "Sync already in progress for connection {}", connection_id
        )

    def lease_lost(self, connection_id: int) -> None:
        self._logger.bind(connection_id=connection_id).warning(
            "Lost sync lease for connection {} (disconnected or taken over); "
            "connection state not updated",
            connection_id,
        )

    def amount_rounded(self, external_id: str, amount: Decimal, cents: int) -> None:
        self._logger.bind(external_id=external_id, amount=str(amount)).warning(
            "Amount {} of transaction {} has sub-cent precision; stored as {} cents",
            amount,
            external_id,
            cents,
        )

    def lease_release_failed(self, connection_id: int, error: Exception) -> None:
        self._logger.bind(connection_id=connection_id).error(
            "Failed to release sync lease for connection {}: {}", connection_id, error
        )

    def pass_complete(self, connection_id: int, counts: SyncCounts) -> None:
        self._logger.bind(connection_id=connection_id, **counts.to_dict()).info(
            "Sync complete for connection {}: {} added, {} backfilled, "
            "{} modified, {} removed, {} skipped",
            connection_id,
            counts.added,
            counts.backfilled,
            counts.modified,
            counts.removed,
            counts.skipped,
        )

    def pass_partial(self, connection_id: int, counts: SyncCounts) -> None:
        self._logger.bind(connection_id=connection_id, **counts.to_dict()).warning(
            "Sync for connection {} left {} record(s) unpersisted; cursor kept",
            connection_id,
            counts.failed,
        )

    def pass_failed(self, connection_id: int, error_code: str, message: str) -> None:
        self._logger.bind(connection_id=connection_id, error_code=error_code).error(
            "Sync failed for connection {} ({}): {}", connection_id, error_code, message
        )

    def error_state_not_persisted(self, connection_id: int, error: Exception) -> None:
        self._logger.bind(connection_id=connection_id).error(
            "Could not record error state for connection {}: {}", connection_id, error
        )


class SyncReconciler:
    """
    Runs one incremental sync pass for a single bank connection.

    A pass fetches one delta page, applies added, modified and removed
    records in that order, then advances the cursor. Passes for the same
    connection are single-flight: a datastore lease is taken before any
    work and released afterwards.
    """

    def __init__(
        self,
        db: DB,
        provider: TransactionProvider,
        *,
        lease_seconds: int = 300,
        removed_policy: RemovedPolicy = "delete",
        page_size: int = 500,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize the reconciler.

        Args:
            db: Database facade
            provider: Transaction provider (e.g. PlaidClient)
            lease_seconds: Lifetime of the single-flight sync lease
            removed_policy: "delete" hard-deletes removed transactions,
                "tombstone" keeps them with removed_at set
            page_size: Maximum records requested per provider call
            clock: Source of the current time
        """
        self._db = db
        self._provider = provider
        self._guard = DuplicateGuard(db)
        self._lease_seconds = lease_seconds
        self._removed_policy = removed_policy
        self._page_size = page_size
        self._clock = clock
        self._logger = SyncReconcilerLogger()

    def sync(self, connection_id: int, user_id: str) -> SyncCounts:
        """
        Run one reconciliation pass.

        Returns:
            SyncCounts; when ``has_more`` is True the caller should call
            again to drain the rest of the delta

        Raises:
            NotFoundError: Connection missing or owned by someone else
            ConnectionInactiveError: Connection is disconnected
            SyncInProgressError: Another pass holds the lease
            ProviderError: The provider call failed
            DatabaseError: The datastore failed in a way that aborts the pass
        """
        token = self._db.acquire_sync_lease(
            connection_id,
            user_id=user_id,
            lease_seconds=self._lease_seconds,
            now=self._clock(),
        )
        if token is None:
            self._raise_lease_refusal(connection_id, user_id)

        try:
            # Read after taking the lease so the cursor is the latest one
            connection = self._db.get_bank_connection(connection_id, user_id=user_id)
            if connection is None:
                raise NotFoundError("Bank connection not found or access denied")
            return self._run_pass(connection, token)
        finally:
            # Release also moves a row left in "syncing" to "error"
            try:
                self._db.release_sync_lease(connection_id, token=token)
            except DatabaseError as e:
                self._logger.lease_release_failed(connection_id, e)

    def _raise_lease_refusal(self, connection_id: int, user_id: str) -> NoReturn:
        connection = self._db.get_bank_connection(connection_id, user_id=user_id)
        if connection is None:
            raise NotFoundError("Bank connection not found or access denied")
        if connection.status == ConnectionStatus.DISCONNECTED.value:
            raise ConnectionInactiveError("Bank connection is not active")
        self._logger.lease_busy(connection_id)
        raise SyncInProgressError(
            f"A sync is already running for bank connection {connection_id}"
        )

    def _run_pass(self, connection: BankConnection, token: str) -> SyncCounts:
        self._logger.pass_start(connection.id, connection.cursor)

        try:
            delta = self._provider.sync_transactions(
                connection.access_token,
                cursor=connection.cursor,
                count=self._page_size,
            )
        except PlaidClientError as e:
            code = e.error_code or ProviderError.code
            self._fail(connection, token, code, e.error_message)
            raise ProviderError(
                f"Failed to sync transactions: {e.error_message}", error_code=code
            ) from e
        except OSError as e:
            self._fail(connection, token, "NETWORK_ERROR", str(e))
            raise ProviderError(
                f"Failed to sync transactions: {e}", error_code="NETWORK_ERROR"
            ) from e
        except Exception as e:
            self._fail(connection, token, UNKNOWN_ERROR_CODE, str(e))
            raise ProviderError(
                f"Failed to sync transactions: {e}", error_code=UNKNOWN_ERROR_CODE
            ) from e

        self._logger.delta_received(
            connection.id,
            len(delta.added),
            len(delta.modified),
            len(delta.removed),
            delta.has_more,
        )

        try:
            counts = self._apply_delta(connection, delta)
            if counts.failed:
                self._fail(
                    connection,
                    token,
                    PARTIAL_FAILURE_CODE,
                    f"{counts.failed} transaction(s) could not be saved; "
                    "the next sync will retry them",
                )
                self._logger.pass_partial(connection.id, counts)
                return counts
            advanced = self._db.record_sync_success(
                connection.id,
                user_id=connection.user_id,
                token=token,
                cursor=delta.next_cursor,
                synced_at=self._clock(),
            )
        except DatabaseError as e:
            self._fail(connection, token, DatabaseError.code, e.message)
            raise

        if not advanced:
            self._logger.lease_lost(connection.id)
            return counts

        counts.cursor_advanced = True
        self._logger.pass_complete(connection.id, counts)
        return counts

    def _apply_delta(self, connection: BankConnection, delta: SyncDelta) -> SyncCounts:
        # A provider item may span several accounts; a connection is one account
        account_id = connection.external_account_id
        counts = SyncCounts(has_more=delta.has_more)

        for record in delta.added:
            if record.external_account_id == account_id:
                self._apply_added(connection, record, counts)

        for record in delta.modified:
            if record.external_account_id == account_id:
                self._apply_modified(connection, record, counts)

        for removed in delta.removed:
            if removed.external_account_id in (None, account_id):
                self._apply_removed(connection, removed, counts)

        return counts

    def _apply_added(
        self,
        connection: BankConnection,
        record: ExternalTransaction,
        counts: SyncCounts,
    ) -> None:
        match = self._guard.classify(
            record, user_id=connection.user_id, bank_connection_id=connection.id
        )

        if match.kind is MatchKind.PRIMARY:
            counts.skipped += 1
            return

        if match.kind is MatchKind.SECONDARY and match.transaction is not None:
            try:
                attached = self._db.attach_external_id(
                    match.transaction.id,
                    user_id=connection.user_id,
                    external_transaction_id=record.external_transaction_id,
                    external_account_id=record.external_account_id,
                )
            except ConflictError:
                counts.skipped += 1
                return
            except DatabaseError as e:
                self._logger.record_failed(record.external_transaction_id, "link", e)
                counts.failed += 1
                return
            if attached:
                self._logger.record_backfilled(
                    match.transaction.id, record.external_transaction_id
                )
                counts.backfilled += 1
            else:
                counts.skipped += 1
            return

        try:
            self._db.insert_transaction(self._new_transaction_data(connection, record))
        except ConflictError:
            # Unique (owner, external ID) backstop: a primary match found late
            counts.skipped += 1
            return
        except DatabaseError as e:
            self._logger.record_failed(record.external_transaction_id, "insert", e)
            counts.failed += 1
            return
        counts.added += 1

    def _apply_modified(
        self,
        connection: BankConnection,
        record: ExternalTransaction,
        counts: SyncCounts,
    ) -> None:
        try:
            updated = self._db.update_transaction_by_external_id(
                user_id=connection.user_id,
                external_transaction_id=record.external_transaction_id,
                data={
                    "amount_cents": self._cents(record),
                    "description": record.name,
                    "merchant": record.merchant_name,
                    "date": record.date,
                },
            )
        except DatabaseError as e:
            self._logger.record_failed(record.external_transaction_id, "update", e)
            counts.failed += 1
            return

        if updated:
            counts.modified += 1
        else:
            self._logger.modified_unknown(connection.id, record.external_transaction_id)

    def _apply_removed(
        self,
        connection: BankConnection,
        removed: RemovedTransaction,
        counts: SyncCounts,
    ) -> None:
        try:
            if self._removed_policy == "tombstone":
                affected = self._db.tombstone_transaction_by_external_id(
                    user_id=connection.user_id,
                    external_transaction_id=removed.external_transaction_id,
                    removed_at=self._clock(),
                )
            else:
                affected = self._db.delete_transaction_by_external_id(
                    user_id=connection.user_id,
                    external_transaction_id=removed.external_transaction_id,
                )
        except DatabaseError as e:
            self._logger.record_failed(removed.external_transaction_id, "remove", e)
            counts.failed += 1
            return
        counts.removed += affected

    def _new_transaction_data(
        self, connection: BankConnection, record: ExternalTransaction
    ) -> dict[str, Any]:
        tags = ["bank-import", "pending" if record.pending else "completed"]
        if record.payment_channel:
            tags.append(record.payment_channel)
        return {
            "user_id": connection.user_id,
            "date": record.date,
            "amount_cents": self._cents(record),
            "description": record.name,
            "merchant": record.merchant_name,
            "tags": tags,
            "status": TransactionStatus.PENDING.value,
            "external_transaction_id": record.external_transaction_id,
            "external_account_id": record.external_account_id,
            "bank_connection_id": connection.id,
        }

    def _cents(self, record: ExternalTransaction) -> int:
        cents = amount_to_cents(record.amount)
        if cents_to_amount(cents) != record.amount:
            self._logger.amount_rounded(
                record.external_transaction_id, record.amount, cents
            )
        return cents

    def _fail(
        self,
        connection: BankConnection,
        token: str,
        error_code: str,
        message: str,
    ) -> None:
        """Record the error on the connection, best-effort."""
        self._logger.pass_failed(connection.id, error_code, message)
        try:
            recorded = self._db.record_sync_error(
                connection.id,
                user_id=connection.user_id,
                token=token,
                error_code=error_code,
                error_message=message,
            )
        except DatabaseError as e:
            self._logger.error_state_not_persisted(connection.id, e)
            return
        if not recorded:
            self._logger.lease_lost(connection.id)
