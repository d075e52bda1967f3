"""Sync engine - orchestration of ledger -> store -> accounting runs.

Import the facade from sync_engine.engine:

    from sync_engine.engine import SyncEngine
"""

from sync_engine.errors import (
    ConfigurationError,
    EngineBusy,
    LedgerContextMissing,
    MappingUnresolved,
    PostingFailure,
    StageFailure,
    StagingFailure,
)

__all__ = [
    "ConfigurationError",
    "EngineBusy",
    "LedgerContextMissing",
    "MappingUnresolved",
    "PostingFailure",
    "StageFailure",
    "StagingFailure",
]
