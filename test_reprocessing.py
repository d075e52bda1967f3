"""Retry policy and the reprocessing pass."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import account, make_tx
from connectors.base import ServerError
from core.models.sync import RetryState, RunOutcome, Stage, StagedStatus
from reprocessing import RetryPolicy
from sync_engine.engine import SyncEngine

NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


class TestRetryPolicy:
    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(max_attempts=10, base_delay_seconds=60, max_delay_seconds=300)
        delays = [policy.delay_for(n).total_seconds() for n in range(1, 6)]
        assert delays == [60, 120, 240, 300, 300]

    def test_new_item(self):
        item = RetryPolicy(base_delay_seconds=60).new_item("tx-1", Stage.STAGING, "boom", NOW)
        assert item.attempts == 1
        assert item.state is RetryState.PENDING
        assert item.next_eligible_at == NOW + timedelta(seconds=60)
        assert item.last_error == "boom"

    def test_single_attempt_policy_abandons_immediately(self):
        item = RetryPolicy(max_attempts=1).new_item("tx-1", Stage.POSTING, "boom", NOW)
        assert item.state is RetryState.ABANDONED

    def test_after_failure(self):
        policy = RetryPolicy(max_attempts=3, base_delay_seconds=60)
        item = policy.new_item("tx-1", Stage.POSTING, "first", NOW)

        second = policy.after_failure(item, "second", NOW)
        assert second.attempts == 2
        assert second.state is RetryState.PENDING
        assert second.next_eligible_at == NOW + timedelta(seconds=120)
        assert second.last_error == "second"

        third = policy.after_failure(second, "third", NOW)
        assert third.attempts == 3
        assert third.state is RetryState.ABANDONED


@pytest.fixture
def eager_settings(settings):
    """Retry items are due as soon as they are created."""
    settings.retry_base_delay_seconds = 0.0
    return settings


@pytest.fixture
def engine(eager_settings, ledger, store, accounting):
    return SyncEngine(eager_settings, ledger, store, accounting)


class TestReprocessingPass:
    @pytest.mark.asyncio
    async def test_fixed_mapping_is_posted_on_next_run(self, engine, ledger, accounting, january_window):
        accounting.accounts.append(account("Travel", "494"))
        ledger.transactions["tx-1"] = make_tx("tx-1", category_id="cat-travel")
        first = await engine.trigger_sync(january_window)
        assert first.failed == 1

        accounting.accounts.pop()
        summary = await engine.trigger_sync(january_window)

        assert (summary.retried, summary.posted, summary.processed) == (1, 1, 0)
        assert engine.retry_queue.for_transaction("tx-1") == []
        assert ledger.transactions["tx-1"].has_marker("posted-to-accounting")

    @pytest.mark.asyncio
    async def test_items_not_yet_due_are_left_alone(self, settings, ledger, store, accounting, january_window):
        engine = SyncEngine(settings, ledger, store, accounting)
        store.fail_upsert["tx-1"] = ServerError("store down", 503)
        ledger.transactions["tx-1"] = make_tx("tx-1")
        await engine.trigger_sync(january_window)
        del store.fail_upsert["tx-1"]

        summary = await engine.trigger_sync(january_window)

        assert summary.retried == 0
        assert summary.skipped == 1
        assert engine.retry_queue.for_transaction("tx-1")[0].attempts == 1

    @pytest.mark.asyncio
    async def test_repeated_failure_backs_off_then_abandons(self, engine, ledger, store, january_window):
        store.fail_upsert["tx-1"] = ServerError("store down", 503)
        ledger.transactions["tx-1"] = make_tx("tx-1")

        await engine.trigger_sync(january_window)
        second = await engine.trigger_sync(january_window)
        item = engine.retry_queue.for_transaction("tx-1")[0]
        assert second.retried == 1
        assert item.attempts == 2
        assert item.state is RetryState.PENDING

        third = await engine.trigger_sync(january_window)
        item = engine.retry_queue.for_transaction("tx-1")[0]
        assert third.retried == 1
        assert third.abandoned == 1
        assert item.attempts == 3
        assert item.state is RetryState.ABANDONED

        fourth = await engine.trigger_sync(january_window)
        assert fourth.retried == 0
        assert fourth.skipped == 1

    @pytest.mark.asyncio
    async def test_abandoned_items_can_be_acknowledged(self, engine, ledger, store, january_window):
        store.fail_upsert["tx-1"] = ServerError("store down", 503)
        ledger.transactions["tx-1"] = make_tx("tx-1")
        for _ in range(3):
            await engine.trigger_sync(january_window)

        abandoned = engine.list_abandoned_retries()
        assert [i.transaction_id for i in abandoned] == ["tx-1"]

        assert engine.acknowledge_abandoned(abandoned[0].id)
        assert engine.list_abandoned_retries() == []
        assert engine.get_retry_item(abandoned[0].id).state is RetryState.ACKNOWLEDGED
        assert not engine.acknowledge_abandoned(abandoned[0].id)

    @pytest.mark.asyncio
    async def test_failure_at_later_stage_replaces_item(self, engine, ledger, store, accounting, january_window):
        accounting.accounts.append(account("Travel", "494"))
        ledger.transactions["tx-1"] = make_tx("tx-1", category_id="cat-travel")
        await engine.trigger_sync(january_window)

        accounting.accounts.pop()
        store.fail_upsert["tx-1"] = ServerError("store down", 503)
        await engine.trigger_sync(january_window)

        items = engine.retry_queue.for_transaction("tx-1")
        assert len(items) == 1
        assert items[0].stage is Stage.STAGING
        assert items[0].attempts == 1

    @pytest.mark.asyncio
    async def test_posting_retry_reuses_staged_record(self, engine, ledger, store, accounting, january_window):
        ledger.transactions["tx-1"] = make_tx("tx-1")
        accounting.fail_create["tx-1"] = ServerError("accounting down", 503)
        await engine.trigger_sync(january_window)

        del accounting.fail_create["tx-1"]
        summary = await engine.trigger_sync(january_window)

        assert (summary.retried, summary.posted) == (1, 1)
        assert store.upserts == ["tx-1"]
        assert store.records["tx-1"].status is StagedStatus.POSTED

    @pytest.mark.asyncio
    async def test_deleted_transaction_is_abandoned(self, engine, ledger, store, january_window):
        store.fail_upsert["tx-1"] = ServerError("store down", 503)
        ledger.transactions["tx-1"] = make_tx("tx-1")
        await engine.trigger_sync(january_window)

        del ledger.transactions["tx-1"]
        summary = await engine.trigger_sync(january_window)

        item = engine.retry_queue.for_transaction("tx-1")[0]
        assert summary.abandoned == 1
        assert item.state is RetryState.ABANDONED
        assert "no longer exists" in item.last_error

    @pytest.mark.asyncio
    async def test_transaction_no_longer_reconciled_is_dropped(self, engine, ledger, accounting, january_window):
        accounting.accounts.append(account("Travel", "494"))
        ledger.transactions["tx-1"] = make_tx("tx-1", category_id="cat-travel")
        await engine.trigger_sync(january_window)

        accounting.accounts.pop()
        ledger.transactions["tx-1"] = make_tx("tx-1", category_id="cat-travel", cleared=False, reconciled=False)
        summary = await engine.trigger_sync(january_window)

        assert (summary.retried, summary.posted) == (1, 0)
        assert accounting.created == []
        assert engine.retry_queue.for_transaction("tx-1") == []

    @pytest.mark.asyncio
    async def test_transaction_moved_out_of_business_group_is_dropped(
        self, eager_settings, ledger, store, accounting, january_window
    ):
        eager_settings.business_category_group_name = "Business"
        engine = SyncEngine(eager_settings, ledger, store, accounting)
        store.fail_upsert["tx-1"] = ServerError("store down", 503)
        ledger.transactions["tx-1"] = make_tx("tx-1")
        await engine.trigger_sync(january_window)

        del store.fail_upsert["tx-1"]
        ledger.transactions["tx-1"] = make_tx("tx-1", category_id="cat-groceries")
        summary = await engine.trigger_sync(january_window)

        assert summary.posted == 0
        assert store.upserts == ["tx-1"]
        assert accounting.created == []
        assert engine.retry_queue.for_transaction("tx-1") == []

    @pytest.mark.asyncio
    async def test_shutdown_stops_between_items(self, engine, ledger, store, january_window):
        for tx_id in ("tx-1", "tx-2"):
            store.fail_upsert[tx_id] = ServerError("store down", 503)
            ledger.transactions[tx_id] = make_tx(tx_id)
        await engine.trigger_sync(january_window)
        store.fail_upsert.clear()

        original = engine.ledger.get_transaction

        async def get_and_shut_down(transaction_id):
            engine.request_shutdown()
            return await original(transaction_id)

        engine.ledger.get_transaction = get_and_shut_down
        summary = await engine.trigger_sync(january_window)

        assert summary.status is RunOutcome.PARTIAL
        assert summary.retried == 1
        assert summary.processed == 0
        assert len(engine.retry_queue.list_by_state(RetryState.PENDING)) == 1
