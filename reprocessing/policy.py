"""Bounded-retry policy for RetryItems."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from core.models.sync import RetryItem, RetryState, Stage


@dataclass
class RetryPolicy:
    """Backoff is base * 2^(attempts-1), capped at max_delay_seconds.

    An item is abandoned once its attempts reach max_attempts.
    """
    max_attempts: int = 5
    base_delay_seconds: float = 300.0
    max_delay_seconds: float = 86400.0

    def delay_for(self, attempts: int) -> timedelta:
        exponent = max(attempts - 1, 0)
        seconds = min(self.base_delay_seconds * (2 ** exponent), self.max_delay_seconds)
        return timedelta(seconds=seconds)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def new_item(self, transaction_id: str, stage: Stage, error: str, now: datetime) -> RetryItem:
        """Item for a first failure (attempts=1)."""
        item = RetryItem(
            transaction_id=transaction_id,
            stage=stage,
            attempts=1,
            last_error=error,
            next_eligible_at=now + self.delay_for(1),
            state=RetryState.PENDING,
            created_at=now,
            updated_at=now,
        )
        if self.exhausted(item.attempts):
            item.state = RetryState.ABANDONED
        return item

    def after_failure(self, item: RetryItem, error: Optional[str], now: datetime) -> RetryItem:
        """Next state of an item whose re-attempt failed at the same stage."""
        attempts = item.attempts + 1
        state = RetryState.ABANDONED if self.exhausted(attempts) else RetryState.PENDING
        return item.model_copy(update={
            "attempts": attempts,
            "last_error": error,
            "next_eligible_at": now + self.delay_for(attempts),
            "state": state,
            "updated_at": now,
        })
