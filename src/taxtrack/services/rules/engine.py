from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
import re
from typing import Any

import loguru
from loguru import logger

from taxtrack.adapters.db.facade import DB
from taxtrack.adapters.db.models import AutoCategorizeRule, Transaction
from taxtrack.errors import DatabaseError
from taxtrack.services.rules.matching import PatternCache, build_search_text


@dataclass(frozen=True)
class RuleMatch:
    transaction_id: int
    category_id: int
    rule_name: str


@dataclass
class RuleApplyResult:
    categorized_count: int = 0
    total_processed: int = 0
    failed: int = 0
    details: list[RuleMatch] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RuleEngineLogger:
    """Handles all logging for RuleEngine with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def no_rules(self, user_id: str) -> None:
        self._logger.bind(user_id=user_id).info("No enabled rules found")

    def apply_start(self, user_id: str, rule_count: int, target_count: int) -> None:
        self._logger.bind(
            user_id=user_id, rule_count=rule_count, target_count=target_count
        ).info("Applying {} rule(s) to {} transaction(s)", rule_count, target_count)

    def invalid_pattern(self, rule_id: int, rule_name: str, problem: str) -> None:
        self._logger.bind(rule_id=rule_id, rule_name=rule_name).warning(
            "Skipping rule {} ({!r}): {}", rule_id, rule_name, problem
        )

    def write_failed(self, transaction_id: int, error: Exception) -> None:
        self._logger.bind(transaction_id=transaction_id).warning(
            "Failed to categorize transaction {}: {}", transaction_id, error
        )

    def apply_complete(self, user_id: str, result: RuleApplyResult) -> None:
        self._logger.bind(
            user_id=user_id,
            categorized=result.categorized_count,
            processed=result.total_processed,
            failed=result.failed,
        ).info(
            "Categorized {}/{} transaction(s), {} failed",
            result.categorized_count,
            result.total_processed,
            result.failed,
        )


class RuleEngine:
    """
    Assigns categories to transactions using the owner's pattern rules.

    Rules are evaluated in priority order (highest first, ties in creation
    order) and the first rule whose pattern is found anywhere in
    ``description + " " + merchant`` wins. Persistence failures on single
    transactions are counted in the result and never raised.
    """

    def __init__(self, db: DB) -> None:
        self._db = db
        self._logger = RuleEngineLogger()

    def apply(
        self,
        user_id: str,
        transaction_ids: Sequence[int] | None = None,
    ) -> RuleApplyResult:
        """
        Run the owner's enabled rules.

        Args:
            user_id: Owner whose rules and transactions are used
            transaction_ids: Explicit targets (categorized ones included);
                when omitted, every uncategorized transaction

        Raises:
            DatabaseError: If rules or target transactions cannot be read
        """
        rules = self._db.list_rules(user_id=user_id, enabled_only=True)
        if not rules:
            self._logger.no_rules(user_id)
            return RuleApplyResult()

        targets = self._db.fetch_rule_targets(
            user_id=user_id, transaction_ids=transaction_ids
        )
        self._logger.apply_start(user_id, len(rules), len(targets))

        compiled = self._compile(rules)
        result = RuleApplyResult(total_processed=len(targets))
        for transaction in targets:
            rule = self._first_match(compiled, transaction)
            if rule is None:
                continue
            try:
                updated = self._db.set_transaction_category(
                    transaction.id, user_id=user_id, category_id=rule.category_id
                )
            except DatabaseError as e:
                self._logger.write_failed(transaction.id, e)
                result.failed += 1
                continue
            if not updated:
                result.failed += 1
                continue
            result.categorized_count += 1
            result.details.append(
                RuleMatch(
                    transaction_id=transaction.id,
                    category_id=rule.category_id,
                    rule_name=rule.name,
                )
            )

        self._logger.apply_complete(user_id, result)
        return result

    def _compile(
        self, rules: Sequence[AutoCategorizeRule]
    ) -> list[tuple[AutoCategorizeRule, re.Pattern[str]]]:
        cache = PatternCache()
        compiled: list[tuple[AutoCategorizeRule, re.Pattern[str]]] = []
        for rule in rules:
            pattern = cache.get(rule.pattern)
            if pattern is None:
                problem = cache.error_for(rule.pattern) or "invalid pattern"
                self._logger.invalid_pattern(rule.id, rule.name, problem)
                continue
            compiled.append((rule, pattern))
        return compiled

    @staticmethod
    def _first_match(
        compiled: Sequence[tuple[AutoCategorizeRule, re.Pattern[str]]],
        transaction: Transaction,
    ) -> AutoCategorizeRule | None:
        text = build_search_text(transaction.description, transaction.merchant)
        for rule, pattern in compiled:
            if pattern.search(text):
                return rule
        return None
