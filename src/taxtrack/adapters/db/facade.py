from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any
import uuid

from sqlalchemy import case, create_engine, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from taxtrack.adapters.db.models import (
    DEFAULT_CATEGORIES,
    AutoCategorizeRule,
    BankConnection,
    Base,
    Category,
    ConnectionStatus,
    Transaction,
    TransactionStatus,
)
from taxtrack.errors import ConflictError, DatabaseError

# Fields a provider "modified" delta is allowed to overwrite
_PROVIDER_MUTABLE_FIELDS = ("amount_cents", "description", "merchant", "date")
_CATEGORY_MUTABLE_FIELDS = ("name", "color", "icon", "description")
_RULE_MUTABLE_FIELDS = ("name", "pattern", "category_id", "enabled", "priority")
_TRANSACTION_MUTABLE_FIELDS = (
    "date",
    "amount_cents",
    "description",
    "merchant",
    "category_id",
    "tags",
    "notes",
    "is_deductible",
    "status",
)

SYNC_INTERRUPTED_CODE = "SYNC_INTERRUPTED"


class DB:
    """Database service layer providing ORM models and helper methods.

    Every method touching owner data takes ``user_id`` and filters on it;
    no query in this class reads or writes across owners.
    """

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///taxtrack.db")
        """
        self._url = url
        self._engine = create_engine(url, echo=False)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions.

        Unique-constraint violations surface as ConflictError, every other
        SQLAlchemy failure as DatabaseError.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise ConflictError(f"Unique constraint violated: {e.orig}") from e
        except SQLAlchemyError as e:
            session.rollback()
            raise DatabaseError(f"Database operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to create schema: {e}") from e

    # Bank connections ---------------------------------------------------

    def create_bank_connection(self, data: dict[str, Any]) -> BankConnection:
        """Insert a new bank connection with ``status=connected``.

        Args:
            data: Connection fields: user_id, external_item_id,
                external_account_id, access_token and optional institution
                and account metadata

        Returns:
            Created BankConnection instance

        Raises:
            ConflictError: If the owner already linked this account
        """
        with self.session() as session:  # type: Session
            connection = BankConnection(
                user_id=data["user_id"],
                external_item_id=data["external_item_id"],
                external_account_id=data["external_account_id"],
                access_token=data["access_token"],
                institution_id=data.get("institution_id"),
                institution_name=data.get("institution_name"),
                institution_logo=data.get("institution_logo"),
                account_name=data.get("account_name"),
                account_type=data.get("account_type"),
                account_subtype=data.get("account_subtype"),
                account_mask=data.get("account_mask"),
                status=ConnectionStatus.CONNECTED.value,
            )
            session.add(connection)
            session.flush()
            session.refresh(connection)
            session.expunge(connection)
            return connection

    def get_bank_connection(
        self, connection_id: int, *, user_id: str
    ) -> BankConnection | None:
        with self.session() as session:  # type: Session
            connection = session.scalars(
                select(BankConnection).where(
                    BankConnection.id == connection_id,
                    BankConnection.user_id == user_id,
                )
            ).first()
            if connection:
                session.expunge(connection)
            return connection

    def find_bank_connection_by_account(
        self, *, user_id: str, external_account_id: str
    ) -> BankConnection | None:
        with self.session() as session:  # type: Session
            connection = session.scalars(
                select(BankConnection).where(
                    BankConnection.user_id == user_id,
                    BankConnection.external_account_id == external_account_id,
                )
            ).first()
            if connection:
                session.expunge(connection)
            return connection

    def list_bank_connections(self, *, user_id: str) -> list[BankConnection]:
        """List the owner's connections, newest first."""
        with self.session() as session:  # type: Session
            connections = list(
                session.scalars(
                    select(BankConnection)
                    .where(BankConnection.user_id == user_id)
                    .order_by(
                        BankConnection.created_at.desc(), BankConnection.id.desc()
                    )
                )
            )
            for connection in connections:
                session.expunge(connection)
            return connections

    def disconnect_bank_connection(self, connection_id: int, *, user_id: str) -> bool:
        """Mark a connection disconnected. The row is kept for history."""
        with self.session() as session:  # type: Session
            result = session.execute(
                update(BankConnection)
                .where(
                    BankConnection.id == connection_id,
                    BankConnection.user_id == user_id,
                )
                .values(
                    status=ConnectionStatus.DISCONNECTED.value,
                    sync_lease_token=None,
                    sync_lease_expires_at=None,
                    updated_at=datetime.now(),
                )
            )
            return result.rowcount == 1

    def acquire_sync_lease(
        self,
        connection_id: int,
        *,
        user_id: str,
        lease_seconds: int,
        now: datetime | None = None,
    ) -> str | None:
        """Atomically take the single-flight sync lease and mark the row syncing.

        The check and the set happen in one conditional UPDATE, so two
        concurrent callers can never both succeed. An expired lease (e.g.
        left behind by a crashed process) may be taken over.

        Args:
            connection_id: Bank connection ID
            user_id: Owner of the connection
            lease_seconds: How long the lease stays valid
            now: Current time (injectable for tests)

        Returns:
            Lease token on success, None if the connection is missing,
            disconnected, or already leased
        """
        now = now or datetime.now()
        token = uuid.uuid4().hex
        with self.session() as session:  # type: Session
            result = session.execute(
                update(BankConnection)
                .where(
                    BankConnection.id == connection_id,
                    BankConnection.user_id == user_id,
                    BankConnection.status != ConnectionStatus.DISCONNECTED.value,
                    or_(
                        BankConnection.sync_lease_token.is_(None),
                        BankConnection.sync_lease_expires_at.is_(None),
                        BankConnection.sync_lease_expires_at < now,
                    ),
                )
                .values(
                    status=ConnectionStatus.SYNCING.value,
                    sync_lease_token=token,
                    sync_lease_expires_at=now + timedelta(seconds=lease_seconds),
                    updated_at=now,
                )
            )
            return token if result.rowcount == 1 else None

    def release_sync_lease(self, connection_id: int, *, token: str) -> bool:
        """Release the lease if ``token`` still owns it.

        A row still marked ``syncing`` at release time belongs to a pass that
        ended without recording an outcome; it is moved to ``error`` with
        code ``SYNC_INTERRUPTED`` so no connection stays ``syncing`` unleased.
        """
        still_syncing = BankConnection.status == ConnectionStatus.SYNCING.value
        with self.session() as session:  # type: Session
            result = session.execute(
                update(BankConnection)
                .where(
                    BankConnection.id == connection_id,
                    BankConnection.sync_lease_token == token,
                )
                .values(
                    sync_lease_token=None,
                    sync_lease_expires_at=None,
                    status=case(
                        (still_syncing, ConnectionStatus.ERROR.value),
                        else_=BankConnection.status,
                    ),
                    error_code=case(
                        (still_syncing, SYNC_INTERRUPTED_CODE),
                        else_=BankConnection.error_code,
                    ),
                    error_message=case(
                        (still_syncing, "Sync ended without recording an outcome"),
                        else_=BankConnection.error_message,
                    ),
                )
            )
            return result.rowcount == 1

    def record_sync_success(
        self,
        connection_id: int,
        *,
        user_id: str,
        token: str,
        cursor: str,
        synced_at: datetime | None = None,
    ) -> bool:
        """Advance the cursor and mark the connection connected.

        Only the holder of the live lease may write, and never onto a
        disconnected row.

        Returns:
            False when the lease was lost or the connection was disconnected
            mid-pass; nothing is written in that case
        """
        synced_at = synced_at or datetime.now()
        with self.session() as session:  # type: Session
            result = session.execute(
                update(BankConnection)
                .where(
                    BankConnection.id == connection_id,
                    BankConnection.user_id == user_id,
                    BankConnection.sync_lease_token == token,
                    BankConnection.status != ConnectionStatus.DISCONNECTED.value,
                )
                .values(
                    status=ConnectionStatus.CONNECTED.value,
                    cursor=cursor,
                    last_sync_date=synced_at,
                    error_code=None,
                    error_message=None,
                    updated_at=synced_at,
                )
            )
            return result.rowcount == 1

    def record_sync_error(
        self,
        connection_id: int,
        *,
        user_id: str,
        token: str,
        error_code: str,
        error_message: str,
    ) -> bool:
        """Mark the connection errored. The cursor is left untouched.

        Same lease and disconnect guard as ``record_sync_success``.
        """
        with self.session() as session:  # type: Session
            result = session.execute(
                update(BankConnection)
                .where(
                    BankConnection.id == connection_id,
                    BankConnection.user_id == user_id,
                    BankConnection.sync_lease_token == token,
                    BankConnection.status != ConnectionStatus.DISCONNECTED.value,
                )
                .values(
                    status=ConnectionStatus.ERROR.value,
                    error_code=error_code,
                    error_message=error_message,
                    updated_at=datetime.now(),
                )
            )
            return result.rowcount == 1

    # Transactions -------------------------------------------------------

    def insert_transaction(self, data: dict[str, Any]) -> Transaction:
        """Insert a new transaction.

        Args:
            data: Transaction data dictionary with fields:
                - user_id, date, amount_cents, description
                - merchant, category_id, tags, notes, is_deductible, status
                  (optional)
                - external_transaction_id, external_account_id,
                  bank_connection_id (optional, set by sync)

        Returns:
            Created Transaction instance

        Raises:
            ConflictError: If the owner already has this external_transaction_id
        """
        with self.session() as session:  # type: Session
            transaction = _new_transaction(data)
            session.add(transaction)
            session.flush()
            session.refresh(transaction)
            session.expunge(transaction)
            return transaction

    def insert_transactions(self, rows: Sequence[dict[str, Any]]) -> list[Transaction]:
        """Insert several transactions in one unit of work; all or nothing."""
        with self.session() as session:  # type: Session
            transactions = [_new_transaction(data) for data in rows]
            session.add_all(transactions)
            session.flush()
            for transaction in transactions:
                session.refresh(transaction)
                session.expunge(transaction)
            return transactions

    def update_transaction(
        self, transaction_id: int, *, user_id: str, data: dict[str, Any]
    ) -> Transaction | None:
        """Apply a user edit. Keys outside the editable fields are ignored.

        Returns:
            The updated transaction, or None if the owner has no such row
        """
        values = {k: v for k, v in data.items() if k in _TRANSACTION_MUTABLE_FIELDS}
        with self.session() as session:  # type: Session
            transaction = session.scalars(
                select(Transaction).where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == user_id,
                )
            ).first()
            if transaction is None:
                return None
            for key, value in values.items():
                setattr(transaction, key, value)
            transaction.updated_at = datetime.now()
            session.flush()
            session.refresh(transaction)
            session.expunge(transaction)
            return transaction

    def update_transactions(
        self,
        transaction_ids: Sequence[int],
        *,
        user_id: str,
        data: dict[str, Any],
    ) -> list[Transaction]:
        """Apply the same edit to many of the owner's transactions.

        Returns:
            The rows that were updated; IDs the owner does not have are skipped
        """
        values = {k: v for k, v in data.items() if k in _TRANSACTION_MUTABLE_FIELDS}
        with self.session() as session:  # type: Session
            transactions = list(
                session.scalars(
                    select(Transaction)
                    .where(
                        Transaction.id.in_(list(transaction_ids)),
                        Transaction.user_id == user_id,
                    )
                    .order_by(Transaction.id)
                )
            )
            now = datetime.now()
            for transaction in transactions:
                for key, value in values.items():
                    setattr(transaction, key, value)
                transaction.updated_at = now
            session.flush()
            for transaction in transactions:
                session.refresh(transaction)
                session.expunge(transaction)
            return transactions

    def delete_transaction(self, transaction_id: int, *, user_id: str) -> bool:
        with self.session() as session:  # type: Session
            result = session.execute(
                delete(Transaction).where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == user_id,
                )
            )
            return result.rowcount == 1

    def delete_transactions(
        self, transaction_ids: Sequence[int], *, user_id: str
    ) -> list[int]:
        """Delete the owner's rows among ``transaction_ids``.

        Returns:
            IDs actually deleted, ascending
        """
        with self.session() as session:  # type: Session
            owned = list(
                session.scalars(
                    select(Transaction.id)
                    .where(
                        Transaction.id.in_(list(transaction_ids)),
                        Transaction.user_id == user_id,
                    )
                    .order_by(Transaction.id)
                )
            )
            if owned:
                session.execute(
                    delete(Transaction).where(
                        Transaction.id.in_(owned),
                        Transaction.user_id == user_id,
                    )
                )
            return owned

    def list_transactions_in_period(
        self,
        *,
        user_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> list[Transaction]:
        """Live (not removed) transactions dated within [start, end]."""
        with self.session() as session:  # type: Session
            query = select(Transaction).where(
                Transaction.user_id == user_id,
                Transaction.removed_at.is_(None),
            )
            if start is not None:
                query = query.where(Transaction.date >= start)
            if end is not None:
                query = query.where(Transaction.date <= end)
            transactions = list(
                session.scalars(query.order_by(Transaction.date, Transaction.id))
            )
            for transaction in transactions:
                session.expunge(transaction)
            return transactions

    def get_transaction(
        self, transaction_id: int, *, user_id: str
    ) -> Transaction | None:
        with self.session() as session:  # type: Session
            transaction = session.scalars(
                select(Transaction).where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == user_id,
                )
            ).first()
            if transaction:
                session.expunge(transaction)
            return transaction

    def list_transactions(
        self, *, user_id: str, include_removed: bool = False
    ) -> list[Transaction]:
        with self.session() as session:  # type: Session
            query = select(Transaction).where(Transaction.user_id == user_id)
            if not include_removed:
                query = query.where(Transaction.removed_at.is_(None))
            transactions = list(
                session.scalars(query.order_by(Transaction.date, Transaction.id))
            )
            for transaction in transactions:
                session.expunge(transaction)
            return transactions

    def find_transaction_by_external_id(
        self, *, user_id: str, external_transaction_id: str
    ) -> Transaction | None:
        """Primary dedup lookup: owner + external transaction ID."""
        with self.session() as session:  # type: Session
            transaction = session.scalars(
                select(Transaction).where(
                    Transaction.user_id == user_id,
                    Transaction.external_transaction_id == external_transaction_id,
                )
            ).first()
            if transaction:
                session.expunge(transaction)
            return transaction

    def find_unlinked_transaction_by_details(
        self,
        *,
        user_id: str,
        bank_connection_id: int,
        posted_on: date,
        amount_cents: int,
        description: str,
    ) -> Transaction | None:
        """Secondary dedup lookup: same business fields, no external ID yet."""
        with self.session() as session:  # type: Session
            transaction = session.scalars(
                select(Transaction)
                .where(
                    Transaction.user_id == user_id,
                    Transaction.bank_connection_id == bank_connection_id,
                    Transaction.date == posted_on,
                    Transaction.amount_cents == amount_cents,
                    Transaction.description == description,
                    Transaction.external_transaction_id.is_(None),
                    Transaction.removed_at.is_(None),
                )
                .order_by(Transaction.id)
            ).first()
            if transaction:
                session.expunge(transaction)
            return transaction

    def attach_external_id(
        self,
        transaction_id: int,
        *,
        user_id: str,
        external_transaction_id: str,
        external_account_id: str,
    ) -> bool:
        """Backfill external IDs on a row that does not have one yet."""
        with self.session() as session:  # type: Session
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == user_id,
                    Transaction.external_transaction_id.is_(None),
                )
                .values(
                    external_transaction_id=external_transaction_id,
                    external_account_id=external_account_id,
                    updated_at=datetime.now(),
                )
            )
            return result.rowcount == 1

    def update_transaction_by_external_id(
        self,
        *,
        user_id: str,
        external_transaction_id: str,
        data: dict[str, Any],
    ) -> int:
        """Overwrite provider-owned fields of a synced transaction.

        Only amount_cents, description, merchant and date are written; other
        keys in ``data`` are ignored.

        Returns:
            Number of rows updated (0 when the transaction is unknown)
        """
        values = {k: v for k, v in data.items() if k in _PROVIDER_MUTABLE_FIELDS}
        if not values:
            return 0
        values["updated_at"] = datetime.now()
        with self.session() as session:  # type: Session
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.user_id == user_id,
                    Transaction.external_transaction_id == external_transaction_id,
                )
                .values(**values)
            )
            return result.rowcount

    def delete_transaction_by_external_id(
        self, *, user_id: str, external_transaction_id: str
    ) -> int:
        """Hard-delete a synced transaction. Missing rows are not an error."""
        with self.session() as session:  # type: Session
            transaction = session.scalars(
                select(Transaction).where(
                    Transaction.user_id == user_id,
                    Transaction.external_transaction_id == external_transaction_id,
                )
            ).first()
            if transaction is None:
                return 0
            session.delete(transaction)
            return 1

    def tombstone_transaction_by_external_id(
        self,
        *,
        user_id: str,
        external_transaction_id: str,
        removed_at: datetime | None = None,
    ) -> int:
        """Mark a synced transaction removed without deleting the row."""
        with self.session() as session:  # type: Session
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.user_id == user_id,
                    Transaction.external_transaction_id == external_transaction_id,
                    Transaction.removed_at.is_(None),
                )
                .values(removed_at=removed_at or datetime.now())
            )
            return result.rowcount

    def fetch_rule_targets(
        self,
        *,
        user_id: str,
        transaction_ids: Sequence[int] | None = None,
    ) -> list[Transaction]:
        """Fetch transactions for rule evaluation.

        With explicit IDs, those transactions are returned whatever their
        current category; otherwise only uncategorized ones.
        """
        with self.session() as session:  # type: Session
            query = select(Transaction).where(
                Transaction.user_id == user_id,
                Transaction.removed_at.is_(None),
            )
            if transaction_ids:
                query = query.where(Transaction.id.in_(list(transaction_ids)))
            else:
                query = query.where(Transaction.category_id.is_(None))
            transactions = list(session.scalars(query.order_by(Transaction.id)))
            for transaction in transactions:
                session.expunge(transaction)
            return transactions

    def set_transaction_category(
        self, transaction_id: int, *, user_id: str, category_id: int
    ) -> bool:
        """Assign a category and move the transaction to ``categorized``."""
        with self.session() as session:  # type: Session
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.id == transaction_id,
                    Transaction.user_id == user_id,
                )
                .values(
                    category_id=category_id,
                    status=TransactionStatus.CATEGORIZED.value,
                    updated_at=datetime.now(),
                )
            )
            return result.rowcount == 1

    def bulk_set_category(
        self, transaction_ids: Sequence[int], *, user_id: str, category_id: int
    ) -> int:
        if not transaction_ids:
            return 0
        with self.session() as session:  # type: Session
            result = session.execute(
                update(Transaction)
                .where(
                    Transaction.id.in_(list(transaction_ids)),
                    Transaction.user_id == user_id,
                )
                .values(
                    category_id=category_id,
                    status=TransactionStatus.CATEGORIZED.value,
                    updated_at=datetime.now(),
                )
            )
            return result.rowcount

    def count_transactions_with_category(
        self, category_id: int, *, user_id: str
    ) -> int:
        with self.session() as session:  # type: Session
            count = session.scalar(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category_id,
                    Transaction.user_id == user_id,
                )
            )
            return int(count or 0)

    # Categories ---------------------------------------------------------

    def seed_default_categories(self) -> int:
        """Insert the global default categories that are missing.

        Returns:
            Number of categories inserted
        """
        with self.session() as session:  # type: Session
            existing = set(
                session.scalars(select(Category.name).where(Category.is_default))
            )
            inserted = 0
            for seed in DEFAULT_CATEGORIES:
                if seed["name"] in existing:
                    continue
                session.add(
                    Category(
                        user_id=None,
                        name=seed["name"],
                        color=seed["color"],
                        description=seed["description"],
                        is_default=True,
                    )
                )
                inserted += 1
            return inserted

    def list_categories(self, *, user_id: str) -> list[Category]:
        """Default categories first, then the owner's, each sorted by name."""
        with self.session() as session:  # type: Session
            categories = list(
                session.scalars(
                    select(Category)
                    .where(or_(Category.user_id == user_id, Category.is_default))
                    .order_by(Category.is_default.desc(), Category.name)
                )
            )
            for category in categories:
                session.expunge(category)
            return categories

    def get_visible_category(
        self, category_id: int, *, user_id: str
    ) -> Category | None:
        """Resolve a category the owner may reference: a default or their own."""
        with self.session() as session:  # type: Session
            category = session.scalars(
                select(Category).where(
                    Category.id == category_id,
                    or_(Category.user_id == user_id, Category.is_default),
                )
            ).first()
            if category:
                session.expunge(category)
            return category

    def find_category_by_name(self, *, user_id: str, name: str) -> Category | None:
        with self.session() as session:  # type: Session
            category = session.scalars(
                select(Category).where(
                    Category.user_id == user_id,
                    Category.name == name,
                )
            ).first()
            if category:
                session.expunge(category)
            return category

    def insert_category(self, data: dict[str, Any]) -> Category:
        """Insert a custom (owner) category."""
        with self.session() as session:  # type: Session
            category = Category(
                user_id=data["user_id"],
                name=data["name"],
                color=data["color"],
                icon=data.get("icon"),
                description=data.get("description"),
                is_default=False,
            )
            session.add(category)
            session.flush()
            session.refresh(category)
            session.expunge(category)
            return category

    def update_category(
        self, category_id: int, *, user_id: str, data: dict[str, Any]
    ) -> Category | None:
        """Update a custom category. Default categories never match."""
        with self.session() as session:  # type: Session
            category = session.scalars(
                select(Category).where(
                    Category.id == category_id,
                    Category.user_id == user_id,
                    ~Category.is_default,
                )
            ).first()
            if category is None:
                return None
            for key, value in data.items():
                if key in _CATEGORY_MUTABLE_FIELDS:
                    setattr(category, key, value)
            session.flush()
            session.refresh(category)
            session.expunge(category)
            return category

    def delete_category(self, category_id: int, *, user_id: str) -> bool:
        with self.session() as session:  # type: Session
            category = session.scalars(
                select(Category).where(
                    Category.id == category_id,
                    Category.user_id == user_id,
                    ~Category.is_default,
                )
            ).first()
            if category is None:
                return False
            session.delete(category)
            return True

    # Rules --------------------------------------------------------------

    def list_rules(
        self, *, user_id: str, enabled_only: bool = False
    ) -> list[AutoCategorizeRule]:
        """List rules by priority descending, ties in creation order."""
        with self.session() as session:  # type: Session
            query = select(AutoCategorizeRule).where(
                AutoCategorizeRule.user_id == user_id
            )
            if enabled_only:
                query = query.where(AutoCategorizeRule.enabled)
            rules = list(
                session.scalars(
                    query.order_by(
                        AutoCategorizeRule.priority.desc(), AutoCategorizeRule.id
                    )
                )
            )
            for rule in rules:
                session.expunge(rule)
            return rules

    def get_rule(self, rule_id: int, *, user_id: str) -> AutoCategorizeRule | None:
        with self.session() as session:  # type: Session
            rule = session.scalars(
                select(AutoCategorizeRule).where(
                    AutoCategorizeRule.id == rule_id,
                    AutoCategorizeRule.user_id == user_id,
                )
            ).first()
            if rule:
                session.expunge(rule)
            return rule

    def insert_rule(self, data: dict[str, Any]) -> AutoCategorizeRule:
        with self.session() as session:  # type: Session
            rule = AutoCategorizeRule(
                user_id=data["user_id"],
                name=data["name"],
                pattern=data["pattern"],
                category_id=data["category_id"],
                enabled=data.get("enabled", True),
                priority=data.get("priority", 0),
            )
            session.add(rule)
            session.flush()
            session.refresh(rule)
            session.expunge(rule)
            return rule

    def update_rule(
        self, rule_id: int, *, user_id: str, data: dict[str, Any]
    ) -> AutoCategorizeRule | None:
        with self.session() as session:  # type: Session
            rule = session.scalars(
                select(AutoCategorizeRule).where(
                    AutoCategorizeRule.id == rule_id,
                    AutoCategorizeRule.user_id == user_id,
                )
            ).first()
            if rule is None:
                return None
            for key, value in data.items():
                if key in _RULE_MUTABLE_FIELDS:
                    setattr(rule, key, value)
            session.flush()
            session.refresh(rule)
            session.expunge(rule)
            return rule

    def delete_rule(self, rule_id: int, *, user_id: str) -> bool:
        with self.session() as session:  # type: Session
            rule = session.scalars(
                select(AutoCategorizeRule).where(
                    AutoCategorizeRule.id == rule_id,
                    AutoCategorizeRule.user_id == user_id,
                )
            ).first()
            if rule is None:
                return False
            session.delete(rule)
            return True


def _new_transaction(data: dict[str, Any]) -> Transaction:
    return Transaction(
        user_id=data["user_id"],
        date=data["date"],
        amount_cents=data["amount_cents"],
        description=data["description"],
        merchant=data.get("merchant"),
        category_id=data.get("category_id"),
        tags=list(data.get("tags") or []),
        notes=data.get("notes"),
        is_deductible=data.get("is_deductible", False),
        status=data.get("status", TransactionStatus.PENDING.value),
        external_transaction_id=data.get("external_transaction_id"),
        external_account_id=data.get("external_account_id"),
        bank_connection_id=data.get("bank_connection_id"),
    )
