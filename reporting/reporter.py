"""Run Reporter.

Folds pipeline outcome events into a RunSummary. Pure aggregation: the
reporter never touches clients or storage.

Counting rules:
- processed: main-pass transactions dispatched into the pipeline
- skipped: selected but owned by the retry queue or already posted
- failed: main-pass transactions that ended with a new RetryItem
- retried: reprocessing attempts
- posted: successful postings from both passes
- abandoned: RetryItems that became abandoned during this run
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.models.sync import RunOutcome, RunSummary, Stage, SyncWindow
from core.observability.logging import get_logger

logger = get_logger(__name__)


class OutcomeKind(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    POSTED = "posted"
    FAILED = "failed"
    RETRIED = "retried"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class OutcomeEvent:
    kind: OutcomeKind
    transaction_id: str
    stage: Optional[Stage] = None
    detail: Optional[str] = None


class RunReporter:
    """Accumulates outcome events for one run.

    summarize() may be called at any time; finish() freezes the result and
    further events are rejected.
    """

    def __init__(
        self,
        run_id: str,
        window: SyncWindow,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.run_id = run_id
        self.window = window
        self._clock = clock
        self._started = clock()
        self._counts: Dict[OutcomeKind, int] = {kind: 0 for kind in OutcomeKind}
        self._events: List[OutcomeEvent] = []
        self._final: Optional[RunSummary] = None

    @property
    def events(self) -> List[OutcomeEvent]:
        return list(self._events)

    @property
    def finished(self) -> bool:
        return self._final is not None

    def record(
        self,
        kind: OutcomeKind,
        transaction_id: str,
        stage: Optional[Stage] = None,
        detail: Optional[str] = None,
    ) -> None:
        if self._final is not None:
            raise RuntimeError(f"run {self.run_id} already finished")
        self._events.append(OutcomeEvent(kind, transaction_id, stage, detail))
        self._counts[kind] += 1

    def count(self, kind: OutcomeKind) -> int:
        return self._counts[kind]

    def summarize(self, status: RunOutcome = RunOutcome.RUNNING, error: Optional[str] = None) -> RunSummary:
        if self._final is not None:
            return self._final
        return RunSummary(
            run_id=self.run_id,
            window_start=self.window.since,
            window_end=self.window.until,
            processed=self._counts[OutcomeKind.PROCESSED],
            posted=self._counts[OutcomeKind.POSTED],
            failed=self._counts[OutcomeKind.FAILED],
            retried=self._counts[OutcomeKind.RETRIED],
            abandoned=self._counts[OutcomeKind.ABANDONED],
            skipped=self._counts[OutcomeKind.SKIPPED],
            duration_ms=int((self._clock() - self._started) * 1000),
            status=status,
            error=error,
        )

    def finish(self, status: RunOutcome, error: Optional[str] = None) -> RunSummary:
        """Freeze and return the final summary. Idempotent."""
        if self._final is None:
            self._final = self.summarize(status, error)
            s = self._final
            logger.info(
                f"Run {s.run_id} {s.status.value}: processed={s.processed} posted={s.posted} "
                f"failed={s.failed} retried={s.retried} abandoned={s.abandoned} "
                f"skipped={s.skipped} ({s.duration_ms}ms)",
                extra_fields=s.model_dump(mode="json"),
            )
        return self._final
