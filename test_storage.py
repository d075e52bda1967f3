"""SQLite idempotency store and retry queue."""

from datetime import datetime, timedelta, timezone

import pytest

from core.models.sync import RetryItem, RetryState, Stage, StageCompletion
from core.storage import IdempotencyStore, RetryQueue

NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


def item(tx_id="tx-1", stage=Stage.POSTING, attempts=1, due=NOW, state=RetryState.PENDING) -> RetryItem:
    return RetryItem(
        transaction_id=tx_id,
        stage=stage,
        attempts=attempts,
        last_error="boom",
        next_eligible_at=due,
        state=state,
        created_at=NOW,
        updated_at=NOW,
    )


class TestIdempotencyStore:
    @pytest.fixture
    def store(self, tmp_path):
        return IdempotencyStore(tmp_path / "sync.db")

    def test_record_is_write_once(self, store):
        assert store.record(StageCompletion(transaction_id="tx-1", stage=Stage.POSTING, detail="inv-1"))
        assert not store.record(StageCompletion(transaction_id="tx-1", stage=Stage.POSTING, detail="inv-2"))
        assert store.get("tx-1", Stage.POSTING).detail == "inv-1"

    def test_completed_stages(self, store):
        store.record(StageCompletion(transaction_id="tx-1", stage=Stage.STAGING))
        store.record(StageCompletion(transaction_id="tx-1", stage=Stage.POSTING))
        store.record(StageCompletion(transaction_id="tx-2", stage=Stage.STAGING))
        assert store.completed_stages("tx-1") == {Stage.STAGING, Stage.POSTING}
        assert store.completed_stages("tx-3") == set()
        assert store.is_complete("tx-2", Stage.STAGING)
        assert not store.is_complete("tx-2", Stage.POSTING)

    def test_survives_reopen(self, tmp_path):
        IdempotencyStore(tmp_path / "sync.db").record(StageCompletion(transaction_id="tx-1", stage=Stage.STAGING))
        assert IdempotencyStore(tmp_path / "sync.db").is_complete("tx-1", Stage.STAGING)


class TestRetryQueue:
    @pytest.fixture
    def queue(self, tmp_path):
        return RetryQueue(tmp_path / "sync.db")

    def test_add_assigns_id_and_round_trips_times(self, queue):
        added = queue.add(item())
        assert added.id is not None
        assert added.next_eligible_at == NOW
        assert added.next_eligible_at.tzinfo is not None
        assert queue.get(added.id) == added

    def test_one_item_per_transaction_and_stage(self, queue):
        first = queue.add(item(attempts=1))
        second = queue.add(item(attempts=2))
        queue.add(item(stage=Stage.STAGING))

        assert second.id == first.id
        assert second.attempts == 2
        assert len(queue.for_transaction("tx-1")) == 2

    def test_list_due(self, queue):
        queue.add(item("due"))
        queue.add(item("later", due=NOW + timedelta(minutes=5)))
        queue.add(item("exhausted", attempts=3))
        queue.add(item("abandoned", state=RetryState.ABANDONED))

        due = queue.list_due(NOW, max_attempts=3)
        assert [i.transaction_id for i in due] == ["due"]
        assert len(queue.list_due(NOW + timedelta(minutes=5), max_attempts=3)) == 2

    def test_update_and_delete(self, queue):
        added = queue.add(item())
        queue.update(added.model_copy(update={"attempts": 2, "state": RetryState.IN_PROGRESS}))
        stored = queue.get(added.id)
        assert stored.attempts == 2
        assert stored.state is RetryState.IN_PROGRESS

        assert queue.delete(added.id)
        assert not queue.delete(added.id)
        assert queue.get(added.id) is None

    def test_update_requires_id(self, queue):
        with pytest.raises(ValueError):
            queue.update(item())

    def test_acknowledge_only_abandoned(self, queue):
        pending = queue.add(item("tx-1"))
        abandoned = queue.add(item("tx-2", state=RetryState.ABANDONED))

        assert not queue.acknowledge(pending.id)
        assert queue.acknowledge(abandoned.id)
        assert not queue.acknowledge(abandoned.id)
        assert queue.get(abandoned.id).state is RetryState.ACKNOWLEDGED
        assert queue.list_by_state(RetryState.ABANDONED) == []

    def test_reset_in_progress(self, queue):
        queue.add(item("tx-1", state=RetryState.IN_PROGRESS))
        queue.add(item("tx-2"))
        assert queue.reset_in_progress() == 1
        assert {i.transaction_id for i in queue.list_by_state(RetryState.PENDING)} == {"tx-1", "tx-2"}

    def test_transaction_ids_cover_every_state(self, queue):
        queue.add(item("tx-1"))
        queue.add(item("tx-2", state=RetryState.ABANDONED))
        queue.add(item("tx-3", state=RetryState.ACKNOWLEDGED))
        assert queue.transaction_ids() == {"tx-1", "tx-2", "tx-3"}
