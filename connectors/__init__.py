"""External system clients.

- connectors.actual: ledger (Actual Budget)
- connectors.xano: middleware staging store (Xano), rate limited
- connectors.xero: accounting system (Xero)

Each client implements the capability interface in connectors.base and
composes retry/rate-limit behaviour from connectors.resilience. The sync
engine depends only on their typed operations, never on raw HTTP.
"""

from connectors.base import (
    AuthExpired,
    AuthenticationFailure,
    ClientError,
    ClientRequestError,
    Credential,
    NotFound,
    Page,
    RateLimited,
    ServerError,
    SyncClient,
    SyncError,
    Timeout,
    iterate_pages,
    paginate,
)
from connectors.resilience import RetryConfig, TokenBucket, call_with_retries, rate_limited

__all__ = [
    "AuthExpired",
    "AuthenticationFailure",
    "ClientError",
    "ClientRequestError",
    "Credential",
    "NotFound",
    "Page",
    "RateLimited",
    "RetryConfig",
    "ServerError",
    "SyncClient",
    "SyncError",
    "Timeout",
    "TokenBucket",
    "call_with_retries",
    "iterate_pages",
    "paginate",
    "rate_limited",
]
