"""Text matching shared by rule evaluation and category suggestion."""

from __future__ import annotations

from collections.abc import Sequence
import re
from typing import Protocol, TypeVar

MAX_PATTERN_LENGTH = 500


class _Named(Protocol):
    name: str


NamedT = TypeVar("NamedT", bound=_Named)


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a rule pattern for case-insensitive search.

    Raises:
        re.error: If the pattern is not a valid regular expression
    """
    return re.compile(pattern, re.IGNORECASE)


def validate_pattern(pattern: str) -> str | None:
    """Return a human-readable problem with ``pattern``, or None if usable."""
    if not pattern:
        return "Pattern is required"
    if len(pattern) > MAX_PATTERN_LENGTH:
        return f"Pattern must be at most {MAX_PATTERN_LENGTH} characters"
    try:
        compile_pattern(pattern)
    except re.error as e:
        return f"Invalid regex pattern: {e}"
    return None


def build_search_text(description: str, merchant: str | None) -> str:
    return f"{description} {merchant or ''}".casefold()


class PatternCache:
    """Compiles each distinct pattern once; invalid patterns map to None."""

    def __init__(self) -> None:
        self._compiled: dict[str, re.Pattern[str] | None] = {}
        self._errors: dict[str, str] = {}

    def get(self, pattern: str) -> re.Pattern[str] | None:
        if pattern not in self._compiled:
            problem = validate_pattern(pattern)
            if problem is None:
                self._compiled[pattern] = compile_pattern(pattern)
            else:
                self._compiled[pattern] = None
                self._errors[pattern] = problem
        return self._compiled[pattern]

    def error_for(self, pattern: str) -> str | None:
        return self._errors.get(pattern)


def suggest_category(name: str, categories: Sequence[NamedT]) -> NamedT | None:
    """
    Map a free-text category name (e.g. from OCR) onto a known category.

    Tried in order, first hit wins:
    1. case-insensitive exact match
    2. a category name containing the input ("office" -> "Office Supplies")
    3. the input containing a category name
       ("Software & Subscriptions" -> "Software")

    Returns:
        The matching category, or None
    """
    needle = name.strip().casefold()
    if not needle:
        return None

    for category in categories:
        if category.name.casefold() == needle:
            return category

    for category in categories:
        if needle in category.name.casefold():
            return category

    for category in categories:
        candidate = category.name.casefold()
        if candidate and candidate in needle:
            return category

    return None
