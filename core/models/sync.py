"""Sync engine data models.

Ledger transactions, staged records, retry items and run summaries. These are
system-neutral: connector-specific payloads are parsed into these types by the
clients in /connectors/.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import AbstractSet, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.markers import parse_markers


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class Stage(str, Enum):
    """Pipeline stages, in execution order."""
    MAPPING = "mapping"
    STAGING = "staging"
    POSTING = "posting"

    @classmethod
    def ordered(cls) -> list:
        return [cls.MAPPING, cls.STAGING, cls.POSTING]

    def downstream(self) -> list:
        """This stage and every stage after it."""
        stages = Stage.ordered()
        return stages[stages.index(self):]


class StagedStatus(str, Enum):
    """Status of a record in the middleware store."""
    STAGED = "staged"
    POSTED = "posted"
    FAILED = "failed"


class RetryState(str, Enum):
    """Lifecycle state of a RetryItem."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ABANDONED = "abandoned"
    ACKNOWLEDGED = "acknowledged"


class RunState(str, Enum):
    """Run lock states."""
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"


class RunOutcome(str, Enum):
    """Final status of a run."""
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


# =============================================================================
# Ledger
# =============================================================================

class LedgerTransaction(BaseModel):
    """A transaction as recorded in the ledger.

    `notes` is the free-text annotation field on the source record. Completed
    pipeline stages are appended to it as `#marker` tokens; the engine never
    removes them.
    """
    id: str
    date: date
    amount: Decimal = Field(..., description="Signed amount in currency units; negative = outflow")
    payee_id: Optional[str] = None
    payee_name: Optional[str] = None
    category_id: Optional[str] = None
    notes: str = ""
    cleared: bool = False
    reconciled: bool = False

    @property
    def markers(self) -> FrozenSet[str]:
        return parse_markers(self.notes)

    def has_marker(self, token: str) -> bool:
        return token.lower() in self.markers

    def in_scope(self, category_ids: Optional[AbstractSet[str]] = None) -> bool:
        """Cleared, reconciled and, when restricted, in one of `category_ids`."""
        if not (self.cleared and self.reconciled):
            return False
        return category_ids is None or self.category_id in category_ids


class SyncWindow(BaseModel):
    """Inclusive date range of transactions considered by a run."""
    since: date
    until: date

    @model_validator(mode="after")
    def _check_order(self) -> "SyncWindow":
        if self.since > self.until:
            raise ValueError(f"window start {self.since} is after window end {self.until}")
        return self

    @classmethod
    def trailing(cls, days_back: int, today: Optional[date] = None) -> "SyncWindow":
        """Window covering the last `days_back` days up to today."""
        end = today or utcnow().date()
        return cls(since=end - timedelta(days=days_back), until=end)


# =============================================================================
# Middleware store / accounting
# =============================================================================

class StagedRecord(BaseModel):
    """Middleware-store representation of a transaction queued for posting."""
    transaction_id: str
    date: date
    amount: Decimal
    payee_name: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    destination_account_id: str
    destination_account_code: Optional[str] = None
    status: StagedStatus = StagedStatus.STAGED
    accounting_ref: Optional[str] = None


class AccountingDocumentRef(BaseModel):
    """Reference to an invoice/bill created in the accounting system."""
    model_config = ConfigDict(frozen=True)

    document_id: str
    document_type: str
    reference: str
    document_number: Optional[str] = None
    status: Optional[str] = None


# =============================================================================
# Reprocessing
# =============================================================================

class RetryItem(BaseModel):
    """Queued, bounded-retry record of a failed pipeline stage.

    Unique per (transaction_id, stage).
    """
    id: Optional[int] = None
    transaction_id: str
    stage: Stage
    attempts: int = 0
    last_error: Optional[str] = None
    next_eligible_at: datetime = Field(default_factory=utcnow)
    state: RetryState = RetryState.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.state in (RetryState.PENDING, RetryState.IN_PROGRESS)


class StageCompletion(BaseModel):
    """Durable record that a stage finished for a transaction."""
    transaction_id: str
    stage: Stage
    completed_at: datetime = Field(default_factory=utcnow)
    detail: Optional[str] = None


# =============================================================================
# Reporting
# =============================================================================

class RunSummary(BaseModel):
    """Counts for one run. Immutable once the run completes."""
    model_config = ConfigDict(frozen=True)

    run_id: str
    window_start: date
    window_end: date
    processed: int = 0
    posted: int = 0
    failed: int = 0
    retried: int = 0
    abandoned: int = 0
    skipped: int = 0
    duration_ms: int = 0
    status: RunOutcome = RunOutcome.RUNNING
    error: Optional[str] = None


class RunStatus(BaseModel):
    """Snapshot answer to get_run_status()."""
    state: RunState
    last_summary: Optional[RunSummary] = None
    current: Optional[RunSummary] = None
