"""Reprocessing Engine.

Re-attempts RetryItems whose next_eligible_at has passed:

    pending -> in_progress -> deleted    (pipeline succeeded)
                           -> pending    (same stage failed, attempts + 1, backed off)
                           -> abandoned  (attempts reached max, or transaction gone)
                           -> deleted    (transaction left the sync scope)

A failure at a later stage replaces the item with a fresh one for that stage.
Runs inside the run lock, before the main pass.
"""

import asyncio
from datetime import datetime
from typing import AbstractSet, Callable, Optional, Protocol

from connectors.base import AuthenticationFailure, ClientError, NotFound
from core.models.sync import LedgerTransaction, RetryItem, RetryState, Stage, utcnow
from core.observability.logging import get_logger, with_correlation
from core.storage.retry_queue import RetryQueue
from reporting.reporter import OutcomeKind, RunReporter
from reprocessing.policy import RetryPolicy
from sync_engine.errors import LedgerContextMissing, StageFailure
from sync_engine.pipeline import TransactionPipeline

logger = get_logger(__name__)


class TransactionLookup(Protocol):
    async def get_transaction(self, transaction_id: str) -> LedgerTransaction:
        ...


class ReprocessingEngine:
    """Drives due RetryItems back through the pipeline.

    Usage:
        engine = ReprocessingEngine(ledger, pipeline, retry_queue, policy)
        await engine.run_pass(reporter)
    """

    def __init__(
        self,
        ledger: TransactionLookup,
        pipeline: TransactionPipeline,
        retry_queue: RetryQueue,
        policy: RetryPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.pipeline = pipeline
        self.retry_queue = retry_queue
        self.policy = policy
        self._clock = clock

    async def run_pass(
        self,
        reporter: RunReporter,
        shutdown: Optional[asyncio.Event] = None,
        category_ids: Optional[AbstractSet[str]] = None,
    ) -> int:
        """Re-attempt every due item. Returns the number of items attempted.

        Items whose transaction has left the sync scope (no longer cleared and
        reconciled, or moved out of `category_ids`) are dropped unposted.
        """
        reset = self.retry_queue.reset_in_progress()
        if reset:
            logger.warning(f"Returned {reset} stranded in-progress retry items to pending")

        due = self.retry_queue.list_due(self._clock(), self.policy.max_attempts)
        if due:
            logger.info(f"Reprocessing {len(due)} retry items")

        attempted = 0
        for item in due:
            if shutdown is not None and shutdown.is_set():
                logger.info("Shutdown requested, leaving remaining retry items pending")
                break
            with with_correlation(transaction_id=item.transaction_id, stage=item.stage.value):
                await self.reprocess(item, reporter, category_ids)
            attempted += 1
        return attempted

    async def reprocess(
        self,
        item: RetryItem,
        reporter: RunReporter,
        category_ids: Optional[AbstractSet[str]] = None,
    ) -> None:
        item = self.retry_queue.update(item.model_copy(update={"state": RetryState.IN_PROGRESS}))
        reporter.record(OutcomeKind.RETRIED, item.transaction_id, stage=item.stage)

        try:
            tx = await self.ledger.get_transaction(item.transaction_id)
            if not tx.in_scope(category_ids):
                self._drop(item, reporter)
                return
            result = await self.pipeline.run(tx, start_stage=item.stage)
        except (AuthenticationFailure, LedgerContextMissing):
            self.retry_queue.update(item.model_copy(update={"state": RetryState.PENDING}))
            raise
        except NotFound as e:
            self._abandon(item, f"transaction no longer exists in the ledger: {e}", reporter)
            return
        except StageFailure as e:
            self._on_failure(item, e.stage, str(e), reporter)
            return
        except ClientError as e:
            self._on_failure(item, item.stage, f"could not load transaction: {e}", reporter)
            return

        self.retry_queue.delete(item.id)
        if result.posted:
            reporter.record(OutcomeKind.POSTED, item.transaction_id, stage=Stage.POSTING)
        logger.info(f"Retry of {item.transaction_id} at {item.stage.value} succeeded")

    def _on_failure(self, item: RetryItem, stage: Stage, error: str, reporter: RunReporter) -> None:
        now = self._clock()
        if stage is not item.stage:
            logger.warning(f"Transaction {item.transaction_id} moved on and failed at {stage.value}: {error}")
            self.retry_queue.delete(item.id)
            replacement = self.retry_queue.add(self.policy.new_item(item.transaction_id, stage, error, now))
            if replacement.state is RetryState.ABANDONED:
                reporter.record(OutcomeKind.ABANDONED, item.transaction_id, stage=stage)
            return

        updated = self.retry_queue.update(self.policy.after_failure(item, error, now))
        if updated.state is RetryState.ABANDONED:
            logger.error(
                f"Abandoning {item.transaction_id} at {stage.value} after {updated.attempts} attempts: {error}"
            )
            reporter.record(OutcomeKind.ABANDONED, item.transaction_id, stage=stage, detail=error)
        else:
            logger.warning(
                f"Retry {updated.attempts}/{self.policy.max_attempts} of {item.transaction_id} failed, "
                f"next attempt at {updated.next_eligible_at.isoformat()}: {error}"
            )

    def _drop(self, item: RetryItem, reporter: RunReporter) -> None:
        self.retry_queue.delete(item.id)
        logger.info(f"Dropped retry of {item.transaction_id}: transaction is no longer in sync scope")
        reporter.record(OutcomeKind.SKIPPED, item.transaction_id, stage=item.stage, detail="out of scope")

    def _abandon(self, item: RetryItem, error: str, reporter: RunReporter) -> None:
        self.retry_queue.update(item.model_copy(update={
            "state": RetryState.ABANDONED,
            "last_error": error,
        }))
        logger.error(f"Abandoning {item.transaction_id}: {error}")
        reporter.record(OutcomeKind.ABANDONED, item.transaction_id, stage=item.stage, detail=error)
