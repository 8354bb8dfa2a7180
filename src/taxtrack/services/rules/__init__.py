"""Pattern-rule categorization and category-name suggestion."""

from taxtrack.services.rules.engine import RuleApplyResult, RuleEngine, RuleMatch
from taxtrack.services.rules.matching import (
    MAX_PATTERN_LENGTH,
    build_search_text,
    suggest_category,
    validate_pattern,
)

__all__ = [
    "MAX_PATTERN_LENGTH",
    "RuleApplyResult",
    "RuleEngine",
    "RuleMatch",
    "build_search_text",
    "suggest_category",
    "validate_pattern",
]
