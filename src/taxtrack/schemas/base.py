from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from taxtrack.errors import ValidationError


class InputSchema(BaseModel):
    """Base for caller-supplied payloads.

    ``validate_input`` turns pydantic failures into the taxtrack
    ``ValidationError`` so callers only handle one error hierarchy.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @classmethod
    def validate_input(cls, data: Any) -> Self:
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid request data",
                details=e.errors(include_url=False, include_context=False),
            ) from e

    def provided(self) -> dict[str, Any]:
        """Only the fields the caller actually set (for partial updates)."""
        return self.model_dump(exclude_unset=True)
