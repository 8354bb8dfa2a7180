from __future__ import annotations

from pydantic import Field

from taxtrack.schemas.base import InputSchema

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class CreateCategoryInput(InputSchema):
    name: str = Field(min_length=1, max_length=100)
    color: str = Field(pattern=HEX_COLOR_PATTERN)
    icon: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=500)


class UpdateCategoryInput(InputSchema):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    color: str | None = Field(default=None, pattern=HEX_COLOR_PATTERN)
    icon: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=500)
