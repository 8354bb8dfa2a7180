"""Validated input payloads for the catalog services."""

from taxtrack.schemas.base import InputSchema
from taxtrack.schemas.category import CreateCategoryInput, UpdateCategoryInput
from taxtrack.schemas.rule import ApplyRulesInput, CreateRuleInput, UpdateRuleInput
from taxtrack.schemas.transaction import (
    BulkCategorizeInput,
    BulkCreateTransactionsInput,
    BulkDeleteTransactionsInput,
    BulkUpdateTransactionsInput,
    CreateTransactionInput,
    ReportPeriodInput,
    UpdateTransactionInput,
)

__all__ = [
    "ApplyRulesInput",
    "BulkCategorizeInput",
    "BulkCreateTransactionsInput",
    "BulkDeleteTransactionsInput",
    "BulkUpdateTransactionsInput",
    "CreateCategoryInput",
    "CreateRuleInput",
    "CreateTransactionInput",
    "InputSchema",
    "ReportPeriodInput",
    "UpdateCategoryInput",
    "UpdateRuleInput",
    "UpdateTransactionInput",
]
