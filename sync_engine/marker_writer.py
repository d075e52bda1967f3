"""Append-only marker writes, serialized per transaction id."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Protocol

from core.markers import merge_markers
from core.models.sync import LedgerTransaction
from core.observability.logging import get_logger

logger = get_logger(__name__)


class NotesLedger(Protocol):
    async def get_transaction(self, transaction_id: str) -> LedgerTransaction:
        ...

    async def update_notes(self, transaction_id: str, notes: str) -> None:
        ...


class MarkerWriter:
    """Appends `#markers` to a transaction's notes.

    Each write re-reads the current notes and merges into them, so text or
    markers added since the transaction was selected are preserved. Writes for
    the same transaction never interleave. A transaction's lock lives only
    while some write holds or waits for it.
    """

    def __init__(self, ledger: NotesLedger):
        self.ledger = ledger
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def _locked(self, transaction_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(transaction_id, asyncio.Lock())
        self._users[transaction_id] = self._users.get(transaction_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[transaction_id] -= 1
            if not self._users[transaction_id]:
                del self._users[transaction_id]
                del self._locks[transaction_id]

    async def append(self, transaction_id: str, tokens: Iterable[str]) -> str:
        """Merge `tokens` into the notes and return the resulting notes."""
        tokens = list(tokens)
        async with self._locked(transaction_id):
            current = await self.ledger.get_transaction(transaction_id)
            merged = merge_markers(current.notes, tokens)
            if merged == current.notes:
                return merged
            await self.ledger.update_notes(transaction_id, merged)
            logger.debug(f"Appended markers {tokens} to transaction {transaction_id}")
            return merged
