"""HTTP transport shared by the external clients.

Performs a single HTTP attempt over an aiohttp session and translates the
outcome into the typed errors from connectors.base. Retries and rate limiting
are layered on top by connectors.resilience.
"""

import asyncio
import json as jsonlib
from typing import Any, Dict, Mapping, Optional

import aiohttp

from connectors.base import (
    AuthExpired,
    AuthenticationFailure,
    ClientRequestError,
    NotFound,
    RateLimited,
    ServerError,
    Timeout,
)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds. Other forms are ignored."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def encode_params(params: Optional[Mapping[str, Any]]) -> Optional[Dict[str, str]]:
    """aiohttp only accepts str/int/float query values; drop None, lower-case bools."""
    if not params:
        return None
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded


class HttpTransport:
    """One aiohttp session bound to a base URL.

    Usage:
        transport = HttpTransport("https://api.example.com", name="xano")
        data = await transport.send("GET", "/staged_records", headers=...)
        await transport.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
        name: str = "http",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.name = name
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """HTTP session (lazy initialization)."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def send(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """Perform one HTTP request and return the decoded JSON body.

        Raises:
            AuthExpired: 401
            AuthenticationFailure: 403
            NotFound: 404
            RateLimited: 429 (retry_after set when the header is present)
            ServerError: 5xx or a broken response
            Timeout: request timeout or connection failure
            ClientRequestError: other 4xx or a body that is not JSON
        """
        url = self.build_url(path)
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        try:
            async with session.request(
                method,
                url,
                headers=headers,
                params=encode_params(params),
                json=json,
                data=data,
                timeout=timeout,
            ) as response:
                status = response.status
                response_headers = response.headers
                body = await response.text()
        except asyncio.TimeoutError as e:
            raise Timeout(f"{self.name}: {method} {url} timed out") from e
        except aiohttp.ClientConnectionError as e:
            raise Timeout(f"{self.name}: {method} {url} connection failed: {e}") from e
        except aiohttp.ClientError as e:
            raise ServerError(f"{self.name}: {method} {url} failed: {e}") from e

        return self._interpret(method, url, status, response_headers, body)

    def _interpret(
        self,
        method: str,
        url: str,
        status: int,
        headers: Mapping[str, str],
        body: str,
    ) -> Any:
        if status < 400:
            if status == 204 or not body:
                return None
            try:
                return jsonlib.loads(body)
            except ValueError as e:
                raise ClientRequestError(
                    f"{self.name}: unexpected response shape from {method} {url}: not JSON",
                    status,
                    body,
                ) from e

        prefix = f"{self.name}: {method} {url} -> {status}"
        if status == 401:
            raise AuthExpired(f"{prefix}: unauthorized", status, body)
        if status == 403:
            raise AuthenticationFailure(f"{prefix}: forbidden", status, body)
        if status == 404:
            raise NotFound(f"{prefix}: not found", status, body)
        if status == 429:
            retry_after = parse_retry_after(headers.get("Retry-After"))
            raise RateLimited(f"{prefix}: rate limited", retry_after, body)
        if status >= 500:
            raise ServerError(f"{prefix}: {body[:200]}", status, body)
        raise ClientRequestError(f"{prefix}: {body[:200]}", status, body)
