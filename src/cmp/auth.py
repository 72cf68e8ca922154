"""OAuth2 client-credentials token provider for the CMP API.

Exchanges the configured client ID/secret for a bearer token at the CMP
authorization server and caches it until shortly before it expires.

The cache holds a single entry.  The read-check-refresh-write sequence is
owned by :class:`AccessTokenProvider` and serialized with an
``asyncio.Lock``: concurrent requests that find the cache empty or expired
wait for one token fetch instead of each issuing their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/o/oauth2/v1/token"

# Tokens are treated as expired this many seconds before the server says so.
DEFAULT_EXPIRY_BUFFER_SECONDS = 300


@dataclass(frozen=True)
class CachedToken:
    """A bearer token and the epoch time after which it must not be reused."""

    access_token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenCache:
    """Single-entry in-memory token store.

    Never persisted; a process restart simply triggers a new fetch.
    """

    def __init__(self) -> None:
        self._entry: CachedToken | None = None

    @property
    def entry(self) -> CachedToken | None:
        return self._entry

    def get(self, now: float) -> str | None:
        """Return the cached token if it is still valid at *now*."""
        if self._entry is not None and self._entry.is_valid(now):
            return self._entry.access_token
        return None

    def set(self, entry: CachedToken) -> None:
        self._entry = entry

    def clear(self) -> None:
        self._entry = None


class AccessTokenProvider:
    """Fetch and cache CMP access tokens.

    Args:
        auth_server_url: Base URL of the CMP authorization server.
        client_id: OAuth client ID.
        client_secret: OAuth client secret.
        http_client: Shared ``httpx.AsyncClient``; one is created when omitted.
        cache: Token store; a fresh :class:`TokenCache` when omitted.
        expiry_buffer_seconds: Safety margin subtracted from ``expires_in``.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        auth_server_url: str,
        client_id: str,
        client_secret: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        cache: TokenCache | None = None,
        expiry_buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token_url = auth_server_url.rstrip("/") + TOKEN_PATH
        self._client_id = client_id
        self._client_secret = client_secret
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = http_client is None
        self.cache = cache if cache is not None else TokenCache()
        self._expiry_buffer_seconds = expiry_buffer_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def get_access_token(self) -> str:
        """Return a valid bearer token, fetching a new one only when needed.

        Raises:
            AuthError: When the token endpoint is unreachable, answers
                non-2xx, or returns a body without ``access_token`` and
                ``expires_in``.
        """
        token = self.cache.get(self._clock())
        if token is not None:
            return token

        async with self._lock:
            # Another coroutine may have refreshed while we waited.
            token = self.cache.get(self._clock())
            if token is not None:
                return token
            return await self._fetch_token()

    def invalidate(self) -> None:
        """Drop the cached token so the next call fetches a new one."""
        self.cache.clear()

    async def _fetch_token(self) -> str:
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "grant_type": "client_credentials",
        }
        logger.info("Requesting CMP access token from %s", self._token_url)
        try:
            response = await self._client.post(
                self._token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning("CMP token request failed: %s", exc)
            raise AuthError(f"Token request failed: {exc}") from exc

        if not response.is_success:
            logger.warning("CMP token endpoint returned status=%d", response.status_code)
            raise AuthError(
                f"Token request failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise AuthError("Token response is not valid JSON") from exc

        if not isinstance(payload, dict):
            raise AuthError("Token response is not a JSON object")
        access_token = payload.get("access_token")
        expires_in = payload.get("expires_in")
        if not access_token or expires_in is None:
            raise AuthError("Token response missing access_token or expires_in")
        try:
            expires_in_seconds = float(expires_in)
        except (TypeError, ValueError) as exc:
            raise AuthError(f"Token response has invalid expires_in: {expires_in!r}") from exc

        now = self._clock()
        expires_at = now + expires_in_seconds - self._expiry_buffer_seconds
        self.cache.set(CachedToken(access_token=str(access_token), expires_at=expires_at))
        if expires_at <= now:
            logger.warning(
                "CMP token lifetime (%ss) is within the %ss refresh buffer; "
                "it will be re-fetched on every call",
                expires_in,
                self._expiry_buffer_seconds,
            )
        else:
            logger.info("CMP access token cached for %.0fs", expires_at - now)
        return str(access_token)
