"""Core storage - SQLite-backed idempotency store, retry queue and run lease."""

from core.storage.db import init_sync_db
from core.storage.idempotency_store import IdempotencyStore
from core.storage.retry_queue import RetryQueue
from core.storage.run_lease import RunLease

__all__ = [
    "IdempotencyStore",
    "RetryQueue",
    "RunLease",
    "init_sync_db",
]
