"""Core data models - system-neutral sync types."""

from core.models.sync import (
    AccountingDocumentRef,
    LedgerTransaction,
    RetryItem,
    RetryState,
    RunOutcome,
    RunState,
    RunStatus,
    RunSummary,
    Stage,
    StageCompletion,
    StagedRecord,
    StagedStatus,
    SyncWindow,
)

__all__ = [
    "AccountingDocumentRef",
    "LedgerTransaction",
    "RetryItem",
    "RetryState",
    "RunOutcome",
    "RunState",
    "RunStatus",
    "RunSummary",
    "Stage",
    "StageCompletion",
    "StagedRecord",
    "StagedStatus",
    "SyncWindow",
]
