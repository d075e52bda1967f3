"""Durable queue of RetryItems.

At most one item exists per (transaction_id, stage). Items move
pending -> in_progress -> (deleted | pending | abandoned), and abandoned
items can be acknowledged by an operator.
"""

from datetime import datetime
from typing import List, Optional, Set

from core.config import DEFAULT_DB_PATH
from core.models.sync import RetryItem, RetryState, Stage, utcnow
from core.storage.db import DbPath, connect, from_db_time, init_sync_db, to_db_time


def _row_to_item(row) -> RetryItem:
    return RetryItem(
        id=row["id"],
        transaction_id=row["transaction_id"],
        stage=Stage(row["stage"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
        next_eligible_at=from_db_time(row["next_eligible_at"]),
        state=RetryState(row["state"]),
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


class RetryQueue:
    """retry_items table."""

    def __init__(self, db_path: DbPath = DEFAULT_DB_PATH):
        self.db_path = db_path
        init_sync_db(db_path)

    def add(self, item: RetryItem) -> RetryItem:
        """Insert an item, replacing any existing item for the same (transaction, stage).

        Returns the item with its id populated.
        """
        now = utcnow()
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO retry_items
                (transaction_id, stage, attempts, last_error, next_eligible_at,
                 state, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(transaction_id, stage) DO UPDATE SET
                    attempts = excluded.attempts,
                    last_error = excluded.last_error,
                    next_eligible_at = excluded.next_eligible_at,
                    state = excluded.state,
                    updated_at = excluded.updated_at
                """,
                (
                    item.transaction_id,
                    item.stage.value,
                    item.attempts,
                    item.last_error,
                    to_db_time(item.next_eligible_at),
                    item.state.value,
                    to_db_time(item.created_at),
                    to_db_time(now),
                ),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM retry_items WHERE transaction_id = ? AND stage = ?",
                (item.transaction_id, item.stage.value),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_item(row)

    def get(self, item_id: int) -> Optional[RetryItem]:
        conn = connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM retry_items WHERE id = ?", (item_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_item(row) if row else None

    def for_transaction(self, transaction_id: str) -> List[RetryItem]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM retry_items WHERE transaction_id = ? ORDER BY id",
                (transaction_id,),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_item(row) for row in rows]

    def transaction_ids(self) -> Set[str]:
        """Every transaction that currently has an item, in any state."""
        conn = connect(self.db_path)
        try:
            rows = conn.execute("SELECT DISTINCT transaction_id FROM retry_items").fetchall()
        finally:
            conn.close()
        return {row["transaction_id"] for row in rows}

    def list_due(self, now: datetime, max_attempts: int, limit: Optional[int] = None) -> List[RetryItem]:
        """Pending items eligible at `now` with attempts below `max_attempts`."""
        query = """
            SELECT * FROM retry_items
            WHERE state = ? AND next_eligible_at <= ? AND attempts < ?
            ORDER BY next_eligible_at, id
        """
        params: list = [RetryState.PENDING.value, to_db_time(now), max_attempts]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        conn = connect(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_item(row) for row in rows]

    def list_by_state(self, state: RetryState) -> List[RetryItem]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM retry_items WHERE state = ? ORDER BY updated_at, id",
                (state.value,),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_item(row) for row in rows]

    def update(self, item: RetryItem) -> RetryItem:
        """Persist attempts, error, eligibility and state of an existing item."""
        if item.id is None:
            raise ValueError("cannot update a RetryItem without an id")
        now = utcnow()
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                UPDATE retry_items
                SET attempts = ?, last_error = ?, next_eligible_at = ?, state = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    item.attempts,
                    item.last_error,
                    to_db_time(item.next_eligible_at),
                    item.state.value,
                    to_db_time(now),
                    item.id,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return item.model_copy(update={"updated_at": now})

    def delete(self, item_id: int) -> bool:
        conn = connect(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM retry_items WHERE id = ?", (item_id,))
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def acknowledge(self, item_id: int) -> bool:
        """Mark an abandoned item as acknowledged. False if it is not abandoned."""
        conn = connect(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE retry_items SET state = ?, updated_at = ? WHERE id = ? AND state = ?",
                (
                    RetryState.ACKNOWLEDGED.value,
                    to_db_time(utcnow()),
                    item_id,
                    RetryState.ABANDONED.value,
                ),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def reset_in_progress(self) -> int:
        """Return items stranded in_progress (e.g. by a crash) to pending."""
        conn = connect(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE retry_items SET state = ?, updated_at = ? WHERE state = ?",
                (RetryState.PENDING.value, to_db_time(utcnow()), RetryState.IN_PROGRESS.value),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()
