"""Sync Orchestrator: the main pass of a run.

Selects eligible transactions in a window and feeds them through the
TransactionPipeline on a bounded pool of asyncio workers. Per-transaction
failures become RetryItems; fatal errors abort the pass.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Optional, Protocol, Set, TypeVar

from connectors.base import Page, paginate
from core.markers import POSTED_TO_ACCOUNTING
from core.models.sync import LedgerTransaction, RetryState, Stage, SyncWindow, utcnow
from core.observability.logging import get_logger, with_correlation
from core.storage.retry_queue import RetryQueue
from reporting.reporter import OutcomeKind, RunReporter
from reprocessing.policy import RetryPolicy
from sync_engine.errors import StageFailure
from sync_engine.pipeline import TransactionPipeline

logger = get_logger(__name__)

T = TypeVar("T")


class TransactionSource(Protocol):
    async def list_transactions(
        self,
        since,
        until,
        cleared: Optional[bool] = None,
        reconciled: Optional[bool] = None,
        cursor: Optional[str] = None,
    ) -> Page[LedgerTransaction]:
        ...


def is_eligible(tx: LedgerTransaction, category_ids: Optional[Set[str]] = None) -> bool:
    """In scope and not yet posted."""
    return tx.in_scope(category_ids) and not tx.has_marker(POSTED_TO_ACCOUNTING)


class WorkerPool:
    """Bounded asyncio worker pool with graceful shutdown.

    Workers take items from a queue until it is empty or `shutdown` is set.
    On shutdown, in-flight items get `grace_seconds` to finish; stragglers
    are cancelled. The first exception raised by a handler cancels the pool
    and propagates.
    """

    def __init__(self, concurrency: int, grace_seconds: float):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.grace_seconds = grace_seconds

    async def run(
        self,
        items: Iterable[T],
        handle: Callable[[T], Awaitable[None]],
        shutdown: asyncio.Event,
    ) -> bool:
        """Process every item. Returns False when shutdown cut the work short."""
        queue: asyncio.Queue = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)
        if queue.empty():
            return True

        async def worker() -> None:
            while not shutdown.is_set():
                try:
                    item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await handle(item)

        size = min(self.concurrency, queue.qsize())
        workers = [asyncio.create_task(worker(), name=f"sync-worker-{i}") for i in range(size)]
        stop_wait = asyncio.create_task(shutdown.wait())
        try:
            pending = set(workers)
            while pending and not stop_wait.done():
                done, _ = await asyncio.wait(pending | {stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                self._raise_first_error(done - {stop_wait})
                pending = {w for w in workers if not w.done()}

            if not pending:
                return queue.empty()

            logger.info(f"Shutdown requested, waiting up to {self.grace_seconds}s for {len(pending)} in-flight")
            done, stragglers = await asyncio.wait(pending, timeout=self.grace_seconds)
            self._raise_first_error(done)
            if stragglers:
                logger.warning(f"Cancelling {len(stragglers)} transactions still in flight after grace period")
            return queue.empty() and not stragglers
        finally:
            stop_wait.cancel()
            unfinished = [w for w in workers if not w.done()]
            for w in unfinished:
                w.cancel()
            await asyncio.gather(stop_wait, *unfinished, return_exceptions=True)

    @staticmethod
    def _raise_first_error(done) -> None:
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()


class SyncOrchestrator:
    """Main pass over one window.

    Usage:
        orchestrator = SyncOrchestrator(ledger, pipeline, retry_queue, policy)
        completed = await orchestrator.main_pass(window, reporter, shutdown)
    """

    def __init__(
        self,
        ledger: TransactionSource,
        pipeline: TransactionPipeline,
        retry_queue: RetryQueue,
        policy: RetryPolicy,
        concurrency: int = 4,
        shutdown_grace_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.pipeline = pipeline
        self.retry_queue = retry_queue
        self.policy = policy
        self.pool = WorkerPool(concurrency, shutdown_grace_seconds)
        self._clock = clock

    async def select(self, window: SyncWindow, category_ids: Optional[Set[str]] = None) -> List[LedgerTransaction]:
        """Eligible transactions in the window."""
        transactions = await paginate(
            self.ledger.list_transactions,
            since=window.since,
            until=window.until,
            cleared=True,
            reconciled=True,
        )
        eligible = [tx for tx in transactions if is_eligible(tx, category_ids)]
        logger.info(
            f"Selected {len(eligible)} of {len(transactions)} transactions "
            f"between {window.since} and {window.until}"
        )
        return eligible

    async def main_pass(
        self,
        window: SyncWindow,
        reporter: RunReporter,
        shutdown: Optional[asyncio.Event] = None,
        category_ids: Optional[Set[str]] = None,
    ) -> bool:
        """Process every eligible transaction. Returns False if interrupted."""
        shutdown = shutdown or asyncio.Event()
        transactions = await self.select(window, category_ids)
        owned = self.retry_queue.transaction_ids()

        async def handle(tx: LedgerTransaction) -> None:
            with with_correlation(transaction_id=tx.id):
                await self.process(tx, reporter, owned)

        return await self.pool.run(transactions, handle, shutdown)

    async def process(self, tx: LedgerTransaction, reporter: RunReporter, owned: Set[str]) -> None:
        """Run one transaction through the pipeline and record the outcome."""
        if tx.id in owned:
            logger.debug(f"Transaction {tx.id} is owned by the retry queue")
            reporter.record(OutcomeKind.SKIPPED, tx.id, detail="retry queue")
            return

        if self.pipeline.is_posted(tx):
            await self.pipeline.repair_markers(tx)
            reporter.record(OutcomeKind.SKIPPED, tx.id, detail="already posted")
            return

        reporter.record(OutcomeKind.PROCESSED, tx.id)
        try:
            result = await self.pipeline.run(tx)
        except StageFailure as e:
            logger.warning(f"Transaction {tx.id} failed at {e.stage.value}: {e}")
            item = self.retry_queue.add(self.policy.new_item(tx.id, e.stage, str(e), self._clock()))
            reporter.record(OutcomeKind.FAILED, tx.id, stage=e.stage, detail=str(e))
            if item.state is RetryState.ABANDONED:
                reporter.record(OutcomeKind.ABANDONED, tx.id, stage=e.stage)
            return

        if result.posted:
            reporter.record(OutcomeKind.POSTED, tx.id, stage=Stage.POSTING)
