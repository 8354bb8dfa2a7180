from __future__ import annotations

from datetime import date

import pytest

from taxtrack.adapters.db.facade import DB
from taxtrack.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from taxtrack.services.catalog import CategoryService, RuleService


def _default_id(db: DB, name: str) -> int:
    for category in db.list_categories(user_id="user-1"):
        if category.name == name:
            return category.id
    raise AssertionError(f"missing default category {name}")


class TestCategoryService:
    def test_list_puts_defaults_first(self, db: DB) -> None:
        # input
        service = CategoryService(db)
        service.create_category("user-1", {"name": "Aardvark Care", "color": "#000000"})

        # act
        categories = service.list_categories("user-1")

        # assert
        assert categories[0].is_default
        assert categories[-1].name == "Aardvark Care"
        assert not categories[-1].is_default

    def test_other_owner_categories_are_hidden(self, db: DB) -> None:
        # input
        service = CategoryService(db)
        service.create_category("user-2", {"name": "Private", "color": "#000000"})

        # act
        names = [c.name for c in service.list_categories("user-1")]

        # assert
        assert "Private" not in names

    def test_duplicate_name_conflicts(self, db: DB) -> None:
        # input
        service = CategoryService(db)
        service.create_category("user-1", {"name": "Coworking", "color": "#112233"})

        # act / assert
        with pytest.raises(ConflictError):
            service.create_category("user-1", {"name": "Coworking", "color": "#445566"})

    def test_invalid_color_is_rejected(self, db: DB) -> None:
        with pytest.raises(ValidationError) as exc_info:
            CategoryService(db).create_category(
                "user-1", {"name": "Coworking", "color": "blue"}
            )
        assert exc_info.value.code == "VALIDATION_ERROR"
        assert exc_info.value.details

    def test_default_categories_are_read_only(self, db: DB) -> None:
        # input
        service = CategoryService(db)
        travel = _default_id(db, "Travel")

        # act / assert
        with pytest.raises(ForbiddenError):
            service.update_category("user-1", travel, {"name": "Trips"})
        with pytest.raises(ForbiddenError):
            service.delete_category("user-1", travel)

    def test_update_custom_category(self, db: DB) -> None:
        # input
        service = CategoryService(db)
        created = service.create_category(
            "user-1", {"name": "Coworking", "color": "#112233"}
        )

        # act
        updated = service.update_category("user-1", created.id, {"color": "#FFFFFF"})

        # assert
        assert updated.color == "#FFFFFF"
        assert updated.name == "Coworking"

    def test_delete_in_use_category_conflicts(self, db: DB) -> None:
        # input
        service = CategoryService(db)
        created = service.create_category(
            "user-1", {"name": "Coworking", "color": "#112233"}
        )
        db.insert_transaction(
            {
                "user_id": "user-1",
                "date": date(2024, 3, 1),
                "amount_cents": 2500,
                "description": "WeWork",
                "category_id": created.id,
            }
        )

        # act / assert
        with pytest.raises(ConflictError):
            service.delete_category("user-1", created.id)

    def test_delete_other_owner_category_is_not_found(self, db: DB) -> None:
        # input
        service = CategoryService(db)
        theirs = service.create_category(
            "user-2", {"name": "Coworking", "color": "#112233"}
        )

        # act / assert
        with pytest.raises(NotFoundError):
            service.delete_category("user-1", theirs.id)


class TestRuleService:
    def test_create_rule_with_default_category(self, db: DB) -> None:
        # input
        service = RuleService(db)
        software = _default_id(db, "Software & Subscriptions")

        # act
        rule = service.create_rule(
            "user-1",
            {"name": "Adobe", "pattern": "adobe", "category_id": software},
        )

        # assert
        assert rule.enabled is True
        assert rule.priority == 0
        assert rule.category_id == software

    def test_uncompilable_pattern_is_rejected(self, db: DB) -> None:
        with pytest.raises(ValidationError):
            RuleService(db).create_rule(
                "user-1",
                {
                    "name": "Broken",
                    "pattern": "uber(",
                    "category_id": _default_id(db, "Travel"),
                },
            )
        assert db.list_rules(user_id="user-1") == []

    def test_category_from_other_owner_is_not_found(self, db: DB) -> None:
        # input
        theirs = CategoryService(db).create_category(
            "user-2", {"name": "Private", "color": "#000000"}
        )

        # act / assert
        with pytest.raises(NotFoundError):
            RuleService(db).create_rule(
                "user-1",
                {"name": "Sneaky", "pattern": "x", "category_id": theirs.id},
            )

    def test_list_orders_by_priority(self, db: DB) -> None:
        # input
        service = RuleService(db)
        travel = _default_id(db, "Travel")
        service.create_rule(
            "user-1", {"name": "low", "pattern": "a", "category_id": travel}
        )
        service.create_rule(
            "user-1",
            {"name": "high", "pattern": "b", "category_id": travel, "priority": 10},
        )

        # act
        names = [rule.name for rule in service.list_rules("user-1")]

        # assert
        assert names == ["high", "low"]

    def test_update_and_delete(self, db: DB) -> None:
        # input
        service = RuleService(db)
        travel = _default_id(db, "Travel")
        rule = service.create_rule(
            "user-1", {"name": "uber", "pattern": "uber", "category_id": travel}
        )

        # act
        updated = service.update_rule("user-1", rule.id, {"enabled": False})
        stored = db.get_rule(rule.id, user_id="user-1")
        service.delete_rule("user-1", rule.id)

        # assert
        assert updated.enabled is False
        assert updated.pattern == "uber"
        assert stored is not None
        assert stored.enabled is False
        assert db.get_rule(rule.id, user_id="user-1") is None
        with pytest.raises(NotFoundError):
            service.delete_rule("user-1", rule.id)

    def test_update_rejects_invalid_pattern(self, db: DB) -> None:
        # input
        service = RuleService(db)
        travel = _default_id(db, "Travel")
        rule = service.create_rule(
            "user-1", {"name": "uber", "pattern": "uber", "category_id": travel}
        )

        # act / assert
        with pytest.raises(ValidationError):
            service.update_rule("user-1", rule.id, {"pattern": "(("})
