"""SQLite schema for the engine's durable state.

Keyed by (transaction_id, stage):
- stage_completions: idempotency store, the source of truth for finished stages
- retry_items: reprocessing queue

Plus run_lease, the single row naming the engine that owns the current run.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from core.config import DEFAULT_DB_PATH

DbPath = Union[str, Path]


def to_db_time(value: datetime) -> str:
    """UTC timestamp with fixed precision so stored values compare as strings."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def connect(db_path: DbPath = DEFAULT_DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_sync_db(db_path: DbPath = DEFAULT_DB_PATH) -> None:
    """Create the engine tables if they do not exist."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = connect(path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stage_completions (
                transaction_id TEXT NOT NULL,
                stage TEXT NOT NULL,
                completed_at TEXT NOT NULL,
                detail TEXT,
                PRIMARY KEY (transaction_id, stage)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS retry_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                transaction_id TEXT NOT NULL,
                stage TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                next_eligible_at TEXT NOT NULL,
                state TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(transaction_id, stage)
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_retry_items_due
            ON retry_items(state, next_eligible_at)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS run_lease (
                name TEXT PRIMARY KEY,
                holder TEXT NOT NULL,
                state TEXT NOT NULL,
                acquired_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
        """)

        conn.commit()
    finally:
        conn.close()
