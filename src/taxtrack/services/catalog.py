"""Owner-scoped management of categories and auto-categorization rules."""

from __future__ import annotations

from typing import Any

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import AutoCategorizeRule, Category
from taxtrack.errors import ConflictError, ForbiddenError, NotFoundError
from taxtrack.schemas.category import CreateCategoryInput, UpdateCategoryInput
from taxtrack.schemas.rule import CreateRuleInput, UpdateRuleInput


class CategoryService:
    def __init__(self, db: DB) -> None:
        self._db = db

    def list_categories(self, user_id: str) -> list[Category]:
        """Default categories first, then the owner's, each sorted by name."""
        return self._db.list_categories(user_id=user_id)

    def create_category(self, user_id: str, data: dict[str, Any]) -> Category:
        """
        Raises:
            ValidationError: Invalid name or color
            ConflictError: The owner already has a category with this name
        """
        payload = CreateCategoryInput.validate_input(data)
        if self._db.find_category_by_name(user_id=user_id, name=payload.name):
            raise ConflictError("Category with this name already exists")
        return self._db.insert_category({"user_id": user_id, **payload.model_dump()})

    def update_category(
        self, user_id: str, category_id: int, data: dict[str, Any]
    ) -> Category:
        payload = UpdateCategoryInput.validate_input(data)
        self._require_custom(user_id, category_id, action="modify")

        changes = payload.provided()
        new_name = changes.get("name")
        if new_name is not None:
            clash = self._db.find_category_by_name(user_id=user_id, name=new_name)
            if clash is not None and clash.id != category_id:
                raise ConflictError("Category with this name already exists")

        updated = self._db.update_category(category_id, user_id=user_id, data=changes)
        if updated is None:
            raise NotFoundError("Category not found")
        return updated

    def delete_category(self, user_id: str, category_id: int) -> None:
        """
        Raises:
            NotFoundError: Category missing or owned by someone else
            ForbiddenError: Category is a default one
            ConflictError: Transactions still reference the category
        """
        self._require_custom(user_id, category_id, action="delete")

        in_use = self._db.count_transactions_with_category(category_id, user_id=user_id)
        if in_use:
            raise ConflictError(
                f"Cannot delete category that is assigned to {in_use} "
                "transaction(s). Please reassign those transactions first."
            )
        if not self._db.delete_category(category_id, user_id=user_id):
            raise NotFoundError("Category not found")

    def _require_custom(self, user_id: str, category_id: int, *, action: str) -> None:
        category = self._db.get_visible_category(category_id, user_id=user_id)
        if category is None:
            raise NotFoundError("Category not found")
        if category.is_default:
            raise ForbiddenError(f"Cannot {action} default categories")


class RuleService:
    def __init__(self, db: DB) -> None:
        self._db = db

    def list_rules(self, user_id: str) -> list[AutoCategorizeRule]:
        return self._db.list_rules(user_id=user_id)

    def create_rule(self, user_id: str, data: dict[str, Any]) -> AutoCategorizeRule:
        """
        Validate and store a rule.

        The pattern must compile before anything is written, so the engine
        never sees a rule that was invalid at creation time.

        Raises:
            ValidationError: Invalid name, pattern or priority
            NotFoundError: Category is neither a default nor the owner's
        """
        payload = CreateRuleInput.validate_input(data)
        self._require_category(user_id, payload.category_id)
        return self._db.insert_rule({"user_id": user_id, **payload.model_dump()})

    def update_rule(
        self, user_id: str, rule_id: int, data: dict[str, Any]
    ) -> AutoCategorizeRule:
        payload = UpdateRuleInput.validate_input(data)
        changes = payload.provided()
        if changes.get("category_id") is not None:
            self._require_category(user_id, changes["category_id"])

        updated = self._db.update_rule(rule_id, user_id=user_id, data=changes)
        if updated is None:
            raise NotFoundError("Rule not found")
        return updated

    def delete_rule(self, user_id: str, rule_id: int) -> None:
        if not self._db.delete_rule(rule_id, user_id=user_id):
            raise NotFoundError("Rule not found")

    def _require_category(self, user_id: str, category_id: int) -> None:
        if self._db.get_visible_category(category_id, user_id=user_id) is None:
            raise NotFoundError("Category not found")
