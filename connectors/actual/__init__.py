"""Actual Budget (ledger) connector."""

from connectors.actual.actual_client import ActualClient, ActualConfig
from connectors.actual.actual_models import (
    ActualBudgetFile,
    ActualCategory,
    ActualCategoryGroup,
    ActualTransaction,
)

__all__ = [
    "ActualBudgetFile",
    "ActualCategory",
    "ActualCategoryGroup",
    "ActualClient",
    "ActualConfig",
    "ActualTransaction",
]
