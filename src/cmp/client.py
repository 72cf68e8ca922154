"""CMP structured-content preview API client using raw HTTP via httpx.

Implements the two outbound calls of the preview-with-push protocol:
``acknowledge`` (confirm receipt of a preview request) and ``complete``
(submit the generated preview URLs).  Every call fetches a bearer token from
the :class:`~src.cmp.auth.AccessTokenProvider`, which usually answers from
its cache.

Neither call is idempotent on the CMP side, so nothing here retries.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from .auth import AccessTokenProvider
from .errors import AcknowledgeError, CMPRequestError, CompletionError

logger = logging.getLogger(__name__)


class CMPClient:
    """Async client for the CMP v3 structured-content preview endpoints.

    Args:
        base_url: CMP API base URL (e.g. ``https://api.cmp.example.com``).
        token_provider: Source of bearer tokens.
        http_client: Shared ``httpx.AsyncClient``; one is created when omitted.
        timeout: Per-request timeout in seconds for an owned client.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: AccessTokenProvider,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    # -- Public API ----------------------------------------------------------

    async def acknowledge_preview(
        self,
        content_id: str,
        version_id: str,
        preview_id: str,
        acknowledged_by: str,
        content_hash: str,
    ) -> None:
        """Tell the CMP the preview request was received.

        Raises:
            AcknowledgeError: On non-2xx responses or a timeout.
            AuthError: When no access token can be obtained.
        """
        url = self._preview_url(content_id, version_id, preview_id, "acknowledge")
        logger.info(
            "Acknowledging preview content=%s version=%s preview=%s",
            content_id,
            version_id,
            preview_id,
        )
        await self._post(
            url,
            {"acknowledged_by": acknowledged_by, "content_hash": content_hash},
            AcknowledgeError,
        )

    async def submit_preview_completion(
        self,
        content_id: str,
        version_id: str,
        preview_id: str,
        keyed_previews: dict[str, str],
    ) -> None:
        """Submit the generated preview URLs for a previously acknowledged preview.

        Raises:
            CompletionError: On non-2xx responses or a timeout.
            AuthError: When no access token can be obtained.
        """
        url = self._preview_url(content_id, version_id, preview_id, "complete")
        logger.info(
            "Submitting preview completion content=%s preview=%s channels=%d",
            content_id,
            preview_id,
            len(keyed_previews),
        )
        await self._post(url, {"keyed_previews": keyed_previews}, CompletionError)

    # -- Helpers -------------------------------------------------------------

    def _preview_url(self, content_id: str, version_id: str, preview_id: str, action: str) -> str:
        return (
            f"{self._base_url}/v3/structured-content"
            f"/contents/{quote(content_id, safe='')}"
            f"/versions/{quote(version_id, safe='')}"
            f"/previews/{quote(preview_id, safe='')}/{action}"
        )

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        error_cls: type[CMPRequestError],
    ) -> None:
        token = await self._token_provider.get_access_token()
        try:
            response = await self._client.post(
                url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except httpx.TimeoutException as exc:
            logger.warning("CMP request timed out: %s", url)
            raise error_cls(None, f"timed out: {exc}") from exc

        if response.is_success:
            return

        if response.status_code == 401:
            # Rejected token: make the next request fetch a fresh one.
            self._token_provider.invalidate()
        logger.warning(
            "CMP request failed url=%s status=%d body=%s",
            url,
            response.status_code,
            response.text[:500],
        )
        raise error_cls(response.status_code, response.text)
