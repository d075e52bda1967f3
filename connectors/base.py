"""Connector capability interface and error taxonomy.

Every external system (ledger, middleware store, accounting) is wrapped by a
client that exposes the same small capability surface:

- authenticate(): obtain a credential or raise AuthenticationFailure
- request(): perform one logical API call, returning decoded JSON
- paginated list operations returning Page(items, next_cursor)

Clients implement this independently. Shared retry, re-authentication and
rate limiting behaviour lives in connectors.resilience and is composed into
each client rather than inherited.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, List, Optional, Protocol, TypeVar


T = TypeVar("T")


# =============================================================================
# Errors
# =============================================================================

class SyncError(Exception):
    """Base exception for every error raised by the sync engine."""


class ClientError(SyncError):
    """Base exception for external API errors."""

    transient = False

    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AuthenticationFailure(ClientError):
    """Credentials rejected. Fatal to the run."""


class AuthExpired(ClientError):
    """Credential no longer accepted (401). Triggers one re-authentication."""


class NotFound(ClientError):
    """Resource not found (404)."""


class RateLimited(ClientError):
    """Rate limit exceeded (429)."""

    transient = True

    def __init__(self, message: str, retry_after: Optional[float] = None, response_body: str = ""):
        super().__init__(message, 429, response_body)
        self.retry_after = retry_after


class Timeout(ClientError):
    """Request timed out or the connection dropped."""

    transient = True


class ServerError(ClientError):
    """5xx response from the remote system."""

    transient = True


class ClientRequestError(ClientError):
    """Non-transient 4xx or an unexpected response shape."""


# =============================================================================
# Capability types
# =============================================================================

@dataclass
class Credential:
    """Credential obtained from authenticate()."""
    token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    obtained_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def expires_at(self) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return self.obtained_at + timedelta(seconds=self.expires_in)

    @property
    def is_expired(self) -> bool:
        """Expired, with a 5-minute buffer. Non-expiring credentials never expire."""
        if self.expires_at is None:
            return False
        return datetime.now(timezone.utc) >= self.expires_at - timedelta(minutes=5)

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.token}"


@dataclass
class Page(Generic[T]):
    """One page of a cursor-paginated list operation."""
    items: List[T]
    next_cursor: Optional[str] = None


class SyncClient(Protocol):
    """Capability interface implemented by each external client."""

    async def authenticate(self) -> Credential:
        ...

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        ...

    async def close(self) -> None:
        ...


ListOperation = Callable[..., Awaitable[Page[T]]]


async def iterate_pages(list_op: ListOperation, **kwargs: Any) -> AsyncIterator[T]:
    """Yield every item of a paginated list operation.

    Calls list_op(cursor=..., **kwargs) until next_cursor is None.
    """
    cursor: Optional[str] = None
    seen: set = set()
    while True:
        page = await list_op(cursor=cursor, **kwargs)
        for item in page.items:
            yield item
        if page.next_cursor is None:
            return
        if page.next_cursor in seen:
            raise ClientRequestError(f"pagination cursor repeated: {page.next_cursor}")
        seen.add(page.next_cursor)
        cursor = page.next_cursor


async def paginate(list_op: ListOperation, **kwargs: Any) -> List[T]:
    """Collect the complete result set of a paginated list operation."""
    return [item async for item in iterate_pages(list_op, **kwargs)]
