"""Durable record of completed pipeline stages.

A stage recorded here is never executed again for the same transaction,
whatever the notes markers say.
"""

from typing import Optional, Set

from core.config import DEFAULT_DB_PATH
from core.models.sync import Stage, StageCompletion
from core.storage.db import DbPath, connect, from_db_time, init_sync_db, to_db_time


class IdempotencyStore:
    """stage_completions table, keyed by (transaction_id, stage)."""

    def __init__(self, db_path: DbPath = DEFAULT_DB_PATH):
        self.db_path = db_path
        init_sync_db(db_path)

    def record(self, completion: StageCompletion) -> bool:
        """Record a completion. Returns False if it was already recorded."""
        conn = connect(self.db_path)
        try:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO stage_completions
                (transaction_id, stage, completed_at, detail)
                VALUES (?, ?, ?, ?)
                """,
                (
                    completion.transaction_id,
                    completion.stage.value,
                    to_db_time(completion.completed_at),
                    completion.detail,
                ),
            )
            conn.commit()
            return cursor.rowcount == 1
        finally:
            conn.close()

    def get(self, transaction_id: str, stage: Stage) -> Optional[StageCompletion]:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM stage_completions WHERE transaction_id = ? AND stage = ?",
                (transaction_id, stage.value),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return StageCompletion(
            transaction_id=row["transaction_id"],
            stage=Stage(row["stage"]),
            completed_at=from_db_time(row["completed_at"]),
            detail=row["detail"],
        )

    def is_complete(self, transaction_id: str, stage: Stage) -> bool:
        return self.get(transaction_id, stage) is not None

    def completed_stages(self, transaction_id: str) -> Set[Stage]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT stage FROM stage_completions WHERE transaction_id = ?",
                (transaction_id,),
            ).fetchall()
        finally:
            conn.close()
        return {Stage(row["stage"]) for row in rows}
