"""Xero Authentication Provider.

OAuth2 client-credentials flow for a Xero custom connection. The access token
is cached and reused until 5 minutes before it expires.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import aiohttp

from connectors.base import AuthenticationFailure, ClientRequestError, Credential
from connectors.http import HttpTransport
from connectors.resilience import RetryConfig, call_with_retries
from core.observability.logging import get_logger

logger = get_logger(__name__)

TOKEN_URL = "https://identity.xero.com/connect/token"
DEFAULT_SCOPE = "accounting.transactions accounting.settings.read accounting.contacts"


@dataclass
class XeroAuthConfig:
    """Configuration for Xero authentication.

    Attributes:
        client_id: Custom connection client ID
        client_secret: Custom connection client secret
        tenant_id: Organisation every API call is scoped to
        scope: OAuth2 scopes requested with the token
    """
    client_id: str
    client_secret: str
    tenant_id: str
    scope: str = DEFAULT_SCOPE
    token_url: str = TOKEN_URL
    timeout_seconds: float = 30.0
    retry: RetryConfig = field(default_factory=RetryConfig)


class XeroAuthProvider:
    """Fetches and caches Xero access tokens.

    Usage:
        auth = XeroAuthProvider(XeroAuthConfig(client_id=..., client_secret=..., tenant_id=...))
        credential = await auth.ensure_valid_token()
    """

    def __init__(
        self,
        config: XeroAuthConfig,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.transport = HttpTransport(
            config.token_url,
            timeout_seconds=config.timeout_seconds,
            session=session,
            name="xero-identity",
        )
        self._sleep = sleep
        self._credential: Optional[Credential] = None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def fetch_token(self) -> Credential:
        """Request a new access token, replacing any cached one."""
        basic = aiohttp.BasicAuth(self.config.client_id, self.config.client_secret)

        async def attempt():
            return await self.transport.send(
                "POST",
                self.config.token_url,
                headers={
                    "Authorization": basic.encode(),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials", "scope": self.config.scope},
            )

        try:
            token_data = await call_with_retries(
                attempt, self.config.retry, sleep=self._sleep, operation="xero token"
            )
        except ClientRequestError as e:
            # invalid_client / invalid_scope come back as 400
            raise AuthenticationFailure(
                f"xero: token request rejected ({e.status_code})", e.status_code, e.response_body
            ) from e

        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise AuthenticationFailure("xero: malformed token response")

        self._credential = Credential(
            token=token_data["access_token"],
            token_type=token_data.get("token_type", "Bearer"),
            expires_in=int(token_data.get("expires_in", 1800)),
        )
        logger.info(f"Obtained Xero access token (expires in {self._credential.expires_in}s)")
        return self._credential

    async def ensure_valid_token(self) -> Credential:
        """Cached token, refreshed when missing or within 5 minutes of expiry."""
        if self._credential is None or self._credential.is_expired:
            return await self.fetch_token()
        return self._credential

    async def close(self) -> None:
        await self.transport.close()
