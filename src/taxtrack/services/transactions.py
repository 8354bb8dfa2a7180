from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import Category, Transaction
from taxtrack.errors import NotFoundError
from taxtrack.schemas.transaction import (
    BulkCategorizeInput,
    BulkCreateTransactionsInput,
    BulkDeleteTransactionsInput,
    BulkUpdateTransactionsInput,
    CreateTransactionInput,
    UpdateTransactionInput,
)
from taxtrack.services.rules.matching import suggest_category


class TransactionService:
    """Manual transaction entry, edits and categorization."""

    def __init__(self, db: DB) -> None:
        self._db = db

    def create_transaction(self, user_id: str, data: dict[str, Any]) -> Transaction:
        """
        Store a manually entered transaction.

        Manual rows carry no external ID. When ``bank_connection_id`` names one
        of the owner's connections, a later sync of that account backfills the
        external ID onto this row if the same date, amount and description
        arrive, instead of inserting a second copy.

        Raises:
            ValidationError: Malformed payload
            NotFoundError: ``category_id`` or ``bank_connection_id`` does not
                resolve for the owner
        """
        payload = CreateTransactionInput.validate_input(data)
        self._check_references(user_id, payload)
        return self._db.insert_transaction(payload.to_row(user_id))

    def bulk_create(
        self, user_id: str, transactions: Sequence[dict[str, Any]]
    ) -> list[Transaction]:
        """Create up to 100 manual transactions; none are stored if any is invalid."""
        payload = BulkCreateTransactionsInput.validate_input(
            {"transactions": list(transactions)}
        )
        for item in payload.transactions:
            self._check_references(user_id, item)
        return self._db.insert_transactions(
            [item.to_row(user_id) for item in payload.transactions]
        )

    def get_transaction(self, user_id: str, transaction_id: int) -> Transaction:
        transaction = self._db.get_transaction(transaction_id, user_id=user_id)
        if transaction is None:
            raise NotFoundError("Transaction not found")
        return transaction

    def list_transactions(self, user_id: str) -> list[Transaction]:
        return self._db.list_transactions(user_id=user_id)

    def update_transaction(
        self, user_id: str, transaction_id: int, data: dict[str, Any]
    ) -> Transaction:
        """
        Edit the fields present in ``data``.

        Raises:
            ValidationError: Malformed payload
            NotFoundError: Transaction or category not found for the owner
        """
        payload = UpdateTransactionInput.validate_input(data)
        changes = payload.to_changes()
        if changes.get("category_id") is not None:
            self._require_category(user_id, changes["category_id"])

        updated = self._db.update_transaction(
            transaction_id, user_id=user_id, data=changes
        )
        if updated is None:
            raise NotFoundError("Transaction not found or access denied")
        return updated

    def bulk_update(
        self, user_id: str, transaction_ids: Sequence[int], updates: dict[str, Any]
    ) -> list[Transaction]:
        """Apply one edit to many transactions; other owners' IDs are skipped."""
        payload = BulkUpdateTransactionsInput.validate_input(
            {"transaction_ids": list(transaction_ids), "updates": updates}
        )
        changes = payload.updates.to_changes()
        if changes.get("category_id") is not None:
            self._require_category(user_id, changes["category_id"])
        return self._db.update_transactions(
            payload.transaction_ids, user_id=user_id, data=changes
        )

    def delete_transaction(self, user_id: str, transaction_id: int) -> None:
        if not self._db.delete_transaction(transaction_id, user_id=user_id):
            raise NotFoundError("Transaction not found or access denied")

    def bulk_delete(self, user_id: str, transaction_ids: Sequence[int]) -> list[int]:
        """Returns the IDs actually deleted."""
        payload = BulkDeleteTransactionsInput.validate_input(
            {"transaction_ids": list(transaction_ids)}
        )
        return self._db.delete_transactions(payload.transaction_ids, user_id=user_id)

    def bulk_categorize(
        self, user_id: str, transaction_ids: Sequence[int], category_id: int
    ) -> int:
        """
        Assign one category to many transactions and mark them categorized.

        Returns:
            Number of the owner's transactions updated
        """
        payload = BulkCategorizeInput.validate_input(
            {"transaction_ids": list(transaction_ids), "category_id": category_id}
        )
        self._require_category(user_id, payload.category_id)
        return self._db.bulk_set_category(
            payload.transaction_ids, user_id=user_id, category_id=payload.category_id
        )

    def suggest_category(self, user_id: str, name: str) -> Category | None:
        """Resolve a free-text category name (e.g. from receipt OCR)."""
        return suggest_category(name, self._db.list_categories(user_id=user_id))

    def _check_references(self, user_id: str, payload: CreateTransactionInput) -> None:
        if payload.category_id is not None:
            self._require_category(user_id, payload.category_id)
        if payload.bank_connection_id is not None:
            connection = self._db.get_bank_connection(
                payload.bank_connection_id, user_id=user_id
            )
            if connection is None:
                raise NotFoundError("Bank connection not found or access denied")

    def _require_category(self, user_id: str, category_id: int) -> None:
        if self._db.get_visible_category(category_id, user_id=user_id) is None:
            raise NotFoundError("Category not found")
