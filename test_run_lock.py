"""Run lock state machine and the shared run lease."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.models.sync import RunState
from core.storage.run_lease import RunLease
from sync_engine.run_lock import RunLock


class TestRunLock:
    @pytest.mark.asyncio
    async def test_lifecycle(self):
        lock = RunLock()
        assert lock.state is RunState.IDLE
        assert lock.try_acquire()
        assert lock.state is RunState.RUNNING
        assert not lock.try_acquire()

        assert lock.begin_drain()
        assert lock.state is RunState.DRAINING
        assert not lock.begin_drain()
        assert not lock.try_acquire()

        await lock.release()
        assert lock.is_idle

    def test_drain_needs_a_running_run(self):
        assert not RunLock().begin_drain()

    @pytest.mark.asyncio
    async def test_acquire_waits_for_release(self):
        lock = RunLock()
        assert lock.try_acquire()

        waiter = asyncio.create_task(lock.acquire())
        await asyncio.sleep(0)
        assert not waiter.done()

        await lock.release()
        await asyncio.wait_for(waiter, timeout=1)
        assert lock.state is RunState.RUNNING


class Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "sync.db"


class TestRunLease:
    def test_one_holder_at_a_time(self, db_path):
        first, second = RunLease(db_path), RunLease(db_path)

        assert first.try_acquire()
        assert not second.try_acquire()
        assert second.current_state() is RunState.RUNNING

        first.release()
        assert second.current_state() is RunState.IDLE
        assert second.try_acquire()

    def test_state_is_visible_to_other_holders(self, db_path):
        first, second = RunLease(db_path), RunLease(db_path)
        first.try_acquire()
        first.set_state(RunState.DRAINING)
        assert second.current_state() is RunState.DRAINING

    def test_expired_lease_is_taken_over(self, db_path):
        clock = Clock()
        crashed = RunLease(db_path, ttl_seconds=60, clock=clock)
        other = RunLease(db_path, ttl_seconds=60, clock=clock)
        assert crashed.try_acquire()

        clock.now += timedelta(seconds=61)
        assert other.current_state() is RunState.IDLE
        assert other.try_acquire()
        assert not crashed.renew()

    def test_renewal_keeps_the_lease(self, db_path):
        clock = Clock()
        holder = RunLease(db_path, ttl_seconds=60, clock=clock)
        other = RunLease(db_path, ttl_seconds=60, clock=clock)
        holder.try_acquire()

        clock.now += timedelta(seconds=50)
        assert holder.renew()
        clock.now += timedelta(seconds=50)
        assert not other.try_acquire()

    def test_release_only_drops_own_lease(self, db_path):
        first, second = RunLease(db_path), RunLease(db_path)
        first.try_acquire()
        second.release()
        assert not second.try_acquire()


class TestSharedRunLock:
    @pytest.mark.asyncio
    async def test_locks_on_one_database_exclude_each_other(self, db_path):
        a, b = RunLock(RunLease(db_path)), RunLock(RunLease(db_path))

        assert a.try_acquire()
        assert not b.try_acquire()
        assert b.state is RunState.RUNNING

        a.begin_drain()
        assert b.state is RunState.DRAINING

        await a.release()
        assert b.is_idle
        assert b.try_acquire()
        await b.release()

    @pytest.mark.asyncio
    async def test_acquire_polls_until_other_lock_releases(self, db_path):
        a = RunLock(RunLease(db_path))
        b = RunLock(RunLease(db_path), poll_seconds=0.01)
        assert a.try_acquire()

        waiter = asyncio.create_task(b.acquire())
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await a.release()
        await asyncio.wait_for(waiter, timeout=1)
        assert a.state is RunState.RUNNING
        await b.release()

    @pytest.mark.asyncio
    async def test_keep_alive_holds_the_lease_through_a_long_run(self, db_path):
        a = RunLock(RunLease(db_path, ttl_seconds=0.3))
        other = RunLease(db_path, ttl_seconds=0.3)
        assert a.try_acquire()

        async with a.keep_alive():
            await asyncio.sleep(0.5)
            assert not other.try_acquire()

        await a.release()
        assert other.try_acquire()
