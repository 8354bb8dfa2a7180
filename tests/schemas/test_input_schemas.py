from __future__ import annotations

from datetime import date

import pytest

from taxtrack.errors import ValidationError
from taxtrack.schemas.category import CreateCategoryInput, UpdateCategoryInput
from taxtrack.schemas.rule import CreateRuleInput, UpdateRuleInput
from taxtrack.schemas.transaction import ReportPeriodInput, UpdateTransactionInput


class TestRuleInput:
    def test_defaults(self) -> None:
        payload = CreateRuleInput.validate_input(
            {"name": "Adobe", "pattern": "adobe", "category_id": 3}
        )
        assert payload.enabled is True
        assert payload.priority == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"name": ""},
            {"name": "n" * 101},
            {"pattern": ""},
            {"pattern": "p" * 501},
            {"pattern": "(unclosed"},
            {"unknown_field": True},
        ],
    )
    def test_rejects_invalid_payloads(self, overrides: dict) -> None:
        data = {"name": "Adobe", "pattern": "adobe", "category_id": 3, **overrides}
        with pytest.raises(ValidationError) as exc_info:
            CreateRuleInput.validate_input(data)
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_update_reports_only_provided_fields(self) -> None:
        payload = UpdateRuleInput.validate_input({"priority": 7})
        assert payload.provided() == {"priority": 7}


class TestCategoryInput:
    def test_accepts_hex_color(self) -> None:
        payload = CreateCategoryInput.validate_input(
            {"name": " Coworking ", "color": "#a1B2c3"}
        )
        assert payload.name == "Coworking"

    @pytest.mark.parametrize("color", ["#12345", "123456", "#GGGGGG", "red"])
    def test_rejects_bad_color(self, color: str) -> None:
        with pytest.raises(ValidationError):
            UpdateCategoryInput.validate_input({"color": color})


class TestTransactionInput:
    def test_update_converts_to_column_values(self) -> None:
        # act
        changes = UpdateTransactionInput.validate_input(
            {"date": "2024-03-02", "amount": "12.30", "tags": None}
        ).to_changes()

        # assert
        assert changes == {
            "date": date(2024, 3, 2),
            "amount_cents": 1230,
            "tags": [],
        }

    def test_update_may_clear_category_but_not_amount(self) -> None:
        cleared = UpdateTransactionInput.validate_input({"category_id": None})
        assert cleared.to_changes() == {"category_id": None}
        with pytest.raises(ValidationError):
            UpdateTransactionInput.validate_input({"amount": None})

    def test_report_period_bounds(self) -> None:
        period = ReportPeriodInput.validate_input({"from_date": "2024-01-01"})
        assert period.bounds() == (date(2024, 1, 1), None)
        with pytest.raises(ValidationError):
            ReportPeriodInput.validate_input({"to_date": "2024-02-30"})
