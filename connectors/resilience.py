"""Retry, re-authentication and rate limiting for external clients.

These are plain higher-order functions so each client can compose exactly the
behaviour it needs:

    send = rate_limited(bucket, attempt)
    result = await call_with_retries(send, config, reauthenticate=client.authenticate)

`send` is a zero-argument coroutine factory performing ONE HTTP attempt and
raising the typed errors from connectors.base.
"""

import asyncio
import random
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Optional

from connectors.base import (
    AuthExpired,
    AuthenticationFailure,
    RateLimited,
    ServerError,
    Timeout,
)
from core.observability.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Send = Callable[[], Awaitable[Any]]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    jitter: float = 0.25  # fraction of the delay added at random

    def get_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter for the given retry attempt (0-based)."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        return delay + random.uniform(0, delay * self.jitter)


async def call_with_retries(
    send: Send,
    config: RetryConfig,
    reauthenticate: Optional[Callable[[], Awaitable[Any]]] = None,
    sleep: Sleep = asyncio.sleep,
    operation: str = "request",
) -> Any:
    """Run `send` until it succeeds or fails non-transiently.

    - 401 (AuthExpired): re-authenticate once and retry. A second 401, or no
      way to re-authenticate, raises AuthenticationFailure. Errors raised by
      `reauthenticate` propagate unchanged.
    - 429 with Retry-After: sleep exactly that long and retry once. A second
      Retry-After 429 propagates RateLimited.
    - Timeout, 5xx, 429 without Retry-After: up to config.max_retries retries
      with exponential backoff and jitter.
    - Everything else propagates immediately.
    """
    retries = 0
    reauthenticated = False
    honored_retry_after = False

    while True:
        try:
            return await send()

        except AuthExpired as e:
            if reauthenticate is None or reauthenticated:
                raise AuthenticationFailure(
                    f"{operation}: credential rejected after re-authentication",
                    e.status_code,
                    e.response_body,
                ) from e
            reauthenticated = True
            logger.warning(f"{operation}: credential expired, re-authenticating")
            await reauthenticate()

        except RateLimited as e:
            if e.retry_after is not None:
                if honored_retry_after:
                    raise
                honored_retry_after = True
                logger.warning(
                    f"{operation}: rate limited, waiting {e.retry_after}s (Retry-After)",
                    extra_fields={"retry_after": e.retry_after},
                )
                await sleep(e.retry_after)
                continue
            if retries >= config.max_retries:
                raise
            delay = config.get_delay(retries)
            retries += 1
            logger.warning(
                f"{operation}: rate limited, retrying in {delay:.1f}s "
                f"(attempt {retries}/{config.max_retries})"
            )
            await sleep(delay)

        except (Timeout, ServerError) as e:
            if retries >= config.max_retries:
                raise
            delay = config.get_delay(retries)
            retries += 1
            logger.warning(
                f"{operation}: {type(e).__name__} ({e}), retrying in {delay:.1f}s "
                f"(attempt {retries}/{config.max_retries})"
            )
            await sleep(delay)


# =============================================================================
# Rate limiting
# =============================================================================

class TokenBucket:
    """Request-rate limiter sized to a per-minute quota.

    The bucket holds `capacity` tokens. A token taken at time t returns to the
    bucket at t + period, so the number of grants in any rolling `period`
    window never exceeds `capacity`. When the bucket is empty, acquire()
    suspends the caller until the oldest token returns.
    """

    def __init__(
        self,
        capacity: int,
        period: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.period = period
        self._clock = clock
        self._sleep = sleep
        self._grants: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        while self._grants and now - self._grants[0] >= self.period:
            self._grants.popleft()

    @property
    def available(self) -> int:
        """Tokens available right now."""
        self._expire(self._clock())
        return self.capacity - len(self._grants)

    async def acquire(self) -> None:
        """Take one token, waiting for one to return if the bucket is empty."""
        async with self._lock:
            while True:
                now = self._clock()
                self._expire(now)
                if len(self._grants) < self.capacity:
                    self._grants.append(now)
                    return
                wait = self.period - (now - self._grants[0])
                logger.debug(f"Rate limiter full, waiting {wait:.2f}s")
                await self._sleep(wait)


def rate_limited(bucket: TokenBucket, send: Send) -> Send:
    """Wrap `send` so every attempt first takes a token from `bucket`."""

    async def limited() -> Any:
        await bucket.acquire()
        return await send()

    return limited
