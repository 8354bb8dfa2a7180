from __future__ import annotations

from pydantic import Field, field_validator

from taxtrack.schemas.base import InputSchema
from taxtrack.services.rules.matching import MAX_PATTERN_LENGTH, validate_pattern


def _check_pattern(value: str) -> str:
    problem = validate_pattern(value)
    if problem is not None:
        raise ValueError(problem)
    return value


class CreateRuleInput(InputSchema):
    name: str = Field(min_length=1, max_length=100)
    pattern: str = Field(min_length=1, max_length=MAX_PATTERN_LENGTH)
    category_id: int
    enabled: bool = True
    priority: int = 0

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str) -> str:
        return _check_pattern(value)


class UpdateRuleInput(InputSchema):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    pattern: str | None = Field(
        default=None, min_length=1, max_length=MAX_PATTERN_LENGTH
    )
    category_id: int | None = None
    enabled: bool | None = None
    priority: int | None = None

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str | None) -> str | None:
        return None if value is None else _check_pattern(value)


class ApplyRulesInput(InputSchema):
    transaction_ids: list[int] | None = None
