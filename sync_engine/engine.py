"""Sync Engine facade.

Owns the run lock and composes one run:

1. load the ledger budget (and the business category group, when configured)
2. reprocessing pass over due RetryItems
3. main pass over the window

Every run, including one aborted by a fatal error, ends with a RunSummary.
"""

import asyncio
import uuid
from typing import Optional, Set

from connectors.actual import ActualClient, ActualConfig
from connectors.base import NotFound, SyncError
from connectors.resilience import RetryConfig
from connectors.xano import XanoClient, XanoConfig
from connectors.xero import XeroApiConfig, XeroAuthConfig, XeroClient
from core.config import SyncSettings
from core.models.sync import RetryItem, RetryState, RunOutcome, RunStatus, RunSummary, SyncWindow
from core.observability.logging import get_logger, with_correlation
from core.storage.idempotency_store import IdempotencyStore
from core.storage.retry_queue import RetryQueue
from core.storage.run_lease import RunLease
from mapping_resolver.resolver import MappingResolver
from reporting.reporter import RunReporter
from reprocessing.engine import ReprocessingEngine
from reprocessing.policy import RetryPolicy
from sync_engine.errors import EngineBusy, LedgerContextMissing
from sync_engine.marker_writer import MarkerWriter
from sync_engine.orchestrator import SyncOrchestrator
from sync_engine.pipeline import TransactionPipeline
from sync_engine.run_lock import RunLock

logger = get_logger(__name__)


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


class SyncEngine:
    """Produced interface of the sync engine.

    Usage:
        engine = SyncEngine.from_settings(SyncSettings.from_env().validate())
        summary = await engine.trigger_sync()
        status = engine.get_run_status()
    """

    def __init__(
        self,
        settings: SyncSettings,
        ledger,
        store,
        accounting,
        retry_queue: Optional[RetryQueue] = None,
        completions: Optional[IdempotencyStore] = None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.store = store
        self.accounting = accounting
        self.retry_queue = retry_queue or RetryQueue(settings.db_path)
        self.completions = completions or IdempotencyStore(settings.db_path)
        self.policy = RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )
        self.lock = RunLock(RunLease(settings.db_path, ttl_seconds=settings.run_lease_seconds))
        self.markers = MarkerWriter(ledger)
        self._shutdown = asyncio.Event()
        self._reporter: Optional[RunReporter] = None
        self._last_summary: Optional[RunSummary] = None

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> "SyncEngine":
        """Engine wired to the real ledger, store and accounting clients."""
        retry = RetryConfig()
        ledger = ActualClient(ActualConfig(
            base_url=settings.actual_budget_url,
            password=settings.actual_budget_password,
            budget_id=settings.actual_budget_sync_id,
            timeout_seconds=settings.request_timeout_seconds,
            retry=retry,
        ))
        store = XanoClient(XanoConfig(
            base_url=settings.xano_api_url,
            api_key=settings.xano_api_key,
            rate_limit_per_minute=settings.xano_rate_limit,
            timeout_seconds=settings.request_timeout_seconds,
            retry=retry,
        ))
        accounting = XeroClient(
            XeroAuthConfig(
                client_id=settings.xero_client_id,
                client_secret=settings.xero_client_secret,
                tenant_id=settings.xero_tenant_id,
                retry=retry,
            ),
            XeroApiConfig(timeout_seconds=settings.request_timeout_seconds, retry=retry),
        )
        return cls(settings, ledger, store, accounting)

    async def close(self) -> None:
        for client in (self.ledger, self.store, self.accounting):
            await client.close()

    # =========================================================================
    # Produced interface
    # =========================================================================

    async def trigger_sync(self, window: Optional[SyncWindow] = None, trigger: str = "manual") -> RunSummary:
        """Run one sync.

        Raises:
            EngineBusy: a run is active and busy_policy is `reject`
        """
        if self.settings.busy_policy == "queue":
            if not self.lock.is_idle:
                logger.info("A run is in progress, queueing trigger")
            await self.lock.acquire()
        elif not self.lock.try_acquire():
            raise EngineBusy(f"a sync run is already {self.lock.state.value}")

        try:
            window = window or SyncWindow.trailing(self.settings.sync_days_back)
            async with self.lock.keep_alive():
                return await self._run(window, trigger)
        finally:
            await self.lock.release()

    def get_run_status(self) -> RunStatus:
        current = self._reporter.summarize() if self._reporter is not None else None
        return RunStatus(state=self.lock.state, last_summary=self._last_summary, current=current)

    def list_abandoned_retries(self) -> list:
        return self.retry_queue.list_by_state(RetryState.ABANDONED)

    def acknowledge_abandoned(self, item_id: int) -> bool:
        acknowledged = self.retry_queue.acknowledge(item_id)
        if acknowledged:
            logger.info(f"Retry item {item_id} acknowledged")
        return acknowledged

    def get_retry_item(self, item_id: int) -> Optional[RetryItem]:
        return self.retry_queue.get(item_id)

    def request_shutdown(self) -> bool:
        """Stop dispatching new work; in-flight work gets the grace period.

        Returns False when no run is active.
        """
        if not self.lock.begin_drain():
            return False
        logger.info("Shutdown requested, draining current run")
        self._shutdown.set()
        return True

    # =========================================================================
    # Run
    # =========================================================================

    async def _run(self, window: SyncWindow, trigger: str) -> RunSummary:
        run_id = new_run_id()
        reporter = RunReporter(run_id, window)
        self._reporter = reporter
        self._shutdown = asyncio.Event()

        with with_correlation(run_id=run_id, trigger=trigger):
            logger.info(f"Sync run started for {window.since}..{window.until} (trigger: {trigger})")
            try:
                category_ids = await self._prepare()

                pipeline = TransactionPipeline(
                    resolver=MappingResolver(self.ledger, self.accounting),
                    store=self.store,
                    accounting=self.accounting,
                    markers=self.markers,
                    completions=self.completions,
                )
                reprocessing = ReprocessingEngine(self.ledger, pipeline, self.retry_queue, self.policy)
                orchestrator = SyncOrchestrator(
                    self.ledger,
                    pipeline,
                    self.retry_queue,
                    self.policy,
                    concurrency=self.settings.worker_concurrency,
                    shutdown_grace_seconds=self.settings.shutdown_grace_seconds,
                )

                await reprocessing.run_pass(reporter, self._shutdown, category_ids)
                completed = False
                if not self._shutdown.is_set():
                    completed = await orchestrator.main_pass(window, reporter, self._shutdown, category_ids)
                summary = reporter.finish(RunOutcome.COMPLETED if completed else RunOutcome.PARTIAL)

            except SyncError as e:
                logger.error(f"Sync run failed: {type(e).__name__}: {e}")
                summary = reporter.finish(RunOutcome.FAILED, f"{type(e).__name__}: {e}")
            except Exception as e:
                logger.exception("Sync run crashed")
                self._last_summary = reporter.finish(RunOutcome.FAILED, f"{type(e).__name__}: {e}")
                raise
            finally:
                self._reporter = None

        self._last_summary = summary
        return summary

    async def _prepare(self) -> Optional[Set[str]]:
        """Load the budget; return the business category ids, if restricted."""
        try:
            await self.ledger.load_budget(self.settings.actual_budget_sync_id)
        except NotFound as e:
            raise LedgerContextMissing(f"ledger budget could not be loaded: {e}") from e

        group_id = self.settings.business_category_group_id
        if not group_id and self.settings.business_category_group_name:
            group = await self.ledger.find_category_group(self.settings.business_category_group_name)
            if group is None:
                raise LedgerContextMissing(
                    f"category group {self.settings.business_category_group_name!r} not found"
                )
            group_id = group.id

        if not group_id:
            return None
        category_ids = set(await self.ledger.category_ids_in_group(group_id))
        logger.info(f"Restricting sync to {len(category_ids)} categories in group {group_id}")
        return category_ids
