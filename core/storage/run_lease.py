"""Durable run lease shared by every engine on the same database.

One row in `run_lease` names the engine that owns the current run. The row is
taken under `BEGIN IMMEDIATE`, so two processes cannot both see it free, and
it expires unless the holder renews it. An engine that crashed mid-run
therefore blocks others for at most `ttl_seconds`.
"""

import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.config import DEFAULT_DB_PATH
from core.models.sync import RunState, utcnow
from core.storage.db import DbPath, connect, init_sync_db, to_db_time

LEASE_NAME = "sync-run"


class RunLease:
    """run_lease table.

    Usage:
        lease = RunLease(db_path, ttl_seconds=300)
        if lease.try_acquire():
            try:
                ...            # call lease.renew() at least every ttl_seconds
            finally:
                lease.release()
    """

    def __init__(
        self,
        db_path: DbPath = DEFAULT_DB_PATH,
        ttl_seconds: float = 300.0,
        holder: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self.holder = holder or f"engine-{uuid.uuid4().hex[:12]}"
        self._clock = clock
        init_sync_db(db_path)

    def _expiry(self, now: datetime) -> str:
        return to_db_time(now + timedelta(seconds=self.ttl_seconds))

    def try_acquire(self) -> bool:
        """Take the lease unless another holder has a live one."""
        now = self._clock()
        conn = connect(self.db_path)
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT holder, expires_at FROM run_lease WHERE name = ?", (LEASE_NAME,)
            ).fetchone()
            if row is not None and row["holder"] != self.holder and row["expires_at"] > to_db_time(now):
                conn.execute("ROLLBACK")
                return False
            conn.execute(
                """
                INSERT OR REPLACE INTO run_lease (name, holder, state, acquired_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (LEASE_NAME, self.holder, RunState.RUNNING.value, to_db_time(now), self._expiry(now)),
            )
            conn.execute("COMMIT")
            return True
        finally:
            conn.close()

    def _update(self, sql: str, params: tuple) -> bool:
        conn = connect(self.db_path)
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def renew(self) -> bool:
        """Push the expiry forward. False when the lease is no longer ours."""
        return self._update(
            "UPDATE run_lease SET expires_at = ? WHERE name = ? AND holder = ?",
            (self._expiry(self._clock()), LEASE_NAME, self.holder),
        )

    def set_state(self, state: RunState) -> bool:
        return self._update(
            "UPDATE run_lease SET state = ? WHERE name = ? AND holder = ?",
            (state.value, LEASE_NAME, self.holder),
        )

    def release(self) -> None:
        self._update("DELETE FROM run_lease WHERE name = ? AND holder = ?", (LEASE_NAME, self.holder))

    def current_state(self) -> RunState:
        """State of the live lease, whoever holds it; IDLE when none."""
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT state, expires_at FROM run_lease WHERE name = ?", (LEASE_NAME,)
            ).fetchone()
        finally:
            conn.close()
        if row is None or row["expires_at"] <= to_db_time(self._clock()):
            return RunState.IDLE
        return RunState(row["state"])
