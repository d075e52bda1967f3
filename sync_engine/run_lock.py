"""Run lock: at most one sync run at a time.

    idle --acquire--> running --begin_drain--> draining --release--> idle
                         \\__________________release_________________/

With a RunLease the lock also covers other processes on the same database
(the API server and the Temporal worker): acquiring takes the lease, and
while idle locally `state` reports the run another engine holds.
"""

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from core.models.sync import RunState
from core.observability.logging import get_logger
from core.storage.run_lease import RunLease

logger = get_logger(__name__)


class RunLock:
    """Explicit run state machine. `state` is safe to read at any time."""

    def __init__(self, lease: Optional[RunLease] = None, poll_seconds: float = 1.0):
        self.lease = lease
        self.poll_seconds = poll_seconds
        self._state = RunState.IDLE
        self._condition = asyncio.Condition()

    @property
    def state(self) -> RunState:
        if self._state is RunState.IDLE and self.lease is not None:
            return self.lease.current_state()
        return self._state

    @property
    def is_idle(self) -> bool:
        return self.state is RunState.IDLE

    def try_acquire(self) -> bool:
        """idle -> running. False when a run is already active here or elsewhere."""
        if self._state is not RunState.IDLE:
            return False
        if self.lease is not None and not self.lease.try_acquire():
            return False
        self._state = RunState.RUNNING
        return True

    async def acquire(self) -> None:
        """Wait until idle, then idle -> running."""
        async with self._condition:
            await self._condition.wait_for(lambda: self._state is RunState.IDLE)
            while self.lease is not None and not self.lease.try_acquire():
                await asyncio.sleep(self.poll_seconds)
            self._state = RunState.RUNNING

    def begin_drain(self) -> bool:
        """running -> draining. False when there is nothing to drain."""
        if self._state is not RunState.RUNNING:
            return False
        self._state = RunState.DRAINING
        if self.lease is not None:
            self.lease.set_state(RunState.DRAINING)
        return True

    async def release(self) -> None:
        """running|draining -> idle, waking one queued trigger."""
        async with self._condition:
            if self.lease is not None:
                self.lease.release()
            self._state = RunState.IDLE
            self._condition.notify()

    @asynccontextmanager
    async def keep_alive(self) -> AsyncIterator[None]:
        """Renew the lease in the background while the block runs."""
        if self.lease is None:
            yield
            return
        heartbeat = asyncio.create_task(self._renew_lease(), name="run-lease-heartbeat")
        try:
            yield
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)

    async def _renew_lease(self) -> None:
        interval = self.lease.ttl_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = self.lease.renew()
            except sqlite3.Error as e:
                logger.warning(f"Could not renew run lease: {e}")
                continue
            if not renewed:
                logger.error("Run lease was lost to another engine; the current run is no longer exclusive")
                return
