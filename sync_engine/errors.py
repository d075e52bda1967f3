"""Engine-level errors.

Client errors (authentication, rate limiting, transport) live in
connectors.base. The errors here describe what went wrong for a transaction
or a run.
"""

from typing import Optional

from connectors.base import SyncError
from core.config import ConfigurationError
from core.models.sync import Stage


class EngineBusy(SyncError):
    """A run is already in progress and the busy policy is `reject`."""


class LedgerContextMissing(SyncError):
    """The ledger budget (or another run precondition) could not be found. Fatal."""


class StageFailure(SyncError):
    """A pipeline stage failed for one transaction.

    Carries the stage so the failure can be routed to a RetryItem.
    """

    stage: Stage = Stage.MAPPING

    def __init__(self, transaction_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.transaction_id = transaction_id
        self.cause = cause


class MappingUnresolved(StageFailure):
    """Zero or several accounting accounts match the category name."""

    stage = Stage.MAPPING

    def __init__(self, category_id: Optional[str], message: str, candidates: int = 0, transaction_id: str = ""):
        super().__init__(transaction_id, message)
        self.category_id = category_id
        self.candidates = candidates


class StagingFailure(StageFailure):
    """The middleware store rejected or failed to stage the record."""

    stage = Stage.STAGING


class PostingFailure(StageFailure):
    """The accounting system rejected or failed to create the document."""

    stage = Stage.POSTING


__all__ = [
    "ConfigurationError",
    "EngineBusy",
    "LedgerContextMissing",
    "MappingUnresolved",
    "PostingFailure",
    "StageFailure",
    "StagingFailure",
]
