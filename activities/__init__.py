"""Activity definitions module."""

from activities.sync import (
    NON_RETRYABLE_ERRORS,
    SyncWindowInput,
    get_engine,
    run_sync_window,
    set_engine,
)

__all__ = [
    "NON_RETRYABLE_ERRORS",
    "SyncWindowInput",
    "get_engine",
    "run_sync_window",
    "set_engine",
]
