"""Tests for the OAuth client-credentials token provider (src/cmp/auth.py)."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from src.cmp.auth import AccessTokenProvider, CachedToken, TokenCache
from src.cmp.errors import AuthError


def _mock_client(*responses, side_effect=None):
    client = AsyncMock()
    if side_effect is not None:
        client.post = AsyncMock(side_effect=side_effect)
    else:
        client.post = AsyncMock(side_effect=list(responses))
    client.is_closed = False
    client.aclose = AsyncMock()
    return client


def _token_response(access_token="tok-1", expires_in=3600):
    return httpx.Response(200, json={"access_token": access_token, "expires_in": expires_in})


def _provider(client, *, now=1_000.0, cache=None, **kwargs):
    clock = kwargs.pop("clock", lambda: now)
    return AccessTokenProvider(
        "https://auth.test/",
        "client-id",
        "client-secret",
        http_client=client,
        cache=cache,
        clock=clock,
        **kwargs,
    )


class TestTokenCache:
    def test_empty_cache_returns_none(self):
        assert TokenCache().get(0.0) is None

    def test_valid_entry_returned_before_expiry(self):
        cache = TokenCache()
        cache.set(CachedToken("abc", expires_at=100.0))
        assert cache.get(99.9) == "abc"

    def test_entry_expired_at_boundary(self):
        cache = TokenCache()
        cache.set(CachedToken("abc", expires_at=100.0))
        assert cache.get(100.0) is None

    def test_clear(self):
        cache = TokenCache()
        cache.set(CachedToken("abc", expires_at=100.0))
        cache.clear()
        assert cache.entry is None


class TestGetAccessToken:
    @pytest.mark.asyncio
    async def test_cached_token_makes_no_request(self):
        cache = TokenCache()
        cache.set(CachedToken("cached", expires_at=5_000.0))
        client = _mock_client()
        provider = _provider(client, cache=cache)

        assert await provider.get_access_token() == "cached"
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_cache_fetches_once_and_populates(self):
        client = _mock_client(_token_response("fresh", 3600))
        provider = _provider(client, now=1_000.0)

        assert await provider.get_access_token() == "fresh"
        client.post.assert_called_once()
        assert provider.cache.entry == CachedToken("fresh", expires_at=1_000.0 + 3600 - 300)

    @pytest.mark.asyncio
    async def test_token_request_is_client_credentials_form(self):
        client = _mock_client(_token_response())
        provider = _provider(client)

        await provider.get_access_token()
        args, kwargs = client.post.call_args
        assert args[0] == "https://auth.test/o/oauth2/v1/token"
        assert kwargs["data"] == {
            "client_id": "client-id",
            "client_secret": "client-secret",
            "grant_type": "client_credentials",
        }

    @pytest.mark.asyncio
    async def test_expired_entry_triggers_refetch(self):
        cache = TokenCache()
        cache.set(CachedToken("stale", expires_at=999.0))
        client = _mock_client(_token_response("fresh"))
        provider = _provider(client, now=1_000.0, cache=cache)

        assert await provider.get_access_token() == "fresh"
        client.post.assert_called_once()

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self):
        client = _mock_client(_token_response("fresh"))
        provider = _provider(client)

        await provider.get_access_token()
        await provider.get_access_token()
        client.post.assert_called_once()

    @pytest.mark.asyncio
    async def test_short_lived_token_is_refetched_every_call(self):
        """expires_in <= buffer yields an already-expired entry, not a crash."""
        client = _mock_client(_token_response("a", 300), _token_response("b", 120))
        provider = _provider(client)

        assert await provider.get_access_token() == "a"
        assert await provider.get_access_token() == "b"
        assert client.post.call_count == 2

    @pytest.mark.asyncio
    async def test_custom_expiry_buffer(self):
        client = _mock_client(_token_response("t", 3600))
        provider = _provider(client, now=0.0, expiry_buffer_seconds=60)

        await provider.get_access_token()
        assert provider.cache.entry.expires_at == 3540.0

    @pytest.mark.asyncio
    async def test_string_expires_in_accepted(self):
        client = _mock_client(_token_response("t", "3600"))
        provider = _provider(client, now=0.0)

        await provider.get_access_token()
        assert provider.cache.entry.expires_at == 3300.0

    @pytest.mark.asyncio
    async def test_invalidate_forces_refetch(self):
        client = _mock_client(_token_response("a"), _token_response("b"))
        provider = _provider(client)

        assert await provider.get_access_token() == "a"
        provider.invalidate()
        assert await provider.get_access_token() == "b"


class TestConcurrentRefresh:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self):
        async def slow_post(*args, **kwargs):
            await asyncio.sleep(0.01)
            return _token_response("shared")

        client = _mock_client(side_effect=slow_post)
        provider = _provider(client)

        tokens = await asyncio.gather(*(provider.get_access_token() for _ in range(5)))
        assert tokens == ["shared"] * 5
        client.post.assert_called_once()


class TestAuthErrors:
    @pytest.mark.asyncio
    async def test_non_2xx_raises_auth_error(self):
        client = _mock_client(httpx.Response(401, text="invalid_client"))
        provider = _provider(client)

        with pytest.raises(AuthError) as exc_info:
            await provider.get_access_token()
        assert exc_info.value.status_code == 401
        assert "invalid_client" in str(exc_info.value)
        assert provider.cache.entry is None

    @pytest.mark.asyncio
    async def test_network_error_raises_auth_error(self):
        client = _mock_client(side_effect=httpx.ConnectError("connection refused"))
        provider = _provider(client)

        with pytest.raises(AuthError, match="connection refused"):
            await provider.get_access_token()

    @pytest.mark.asyncio
    async def test_timeout_raises_auth_error(self):
        client = _mock_client(side_effect=httpx.ReadTimeout("slow"))
        provider = _provider(client)

        with pytest.raises(AuthError):
            await provider.get_access_token()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"expires_in": 3600},
            {"access_token": "t"},
            {"access_token": "", "expires_in": 3600},
            {"access_token": "t", "expires_in": "soon"},
        ],
    )
    async def test_incomplete_payload_raises_auth_error(self, body):
        client = _mock_client(httpx.Response(200, json=body))
        provider = _provider(client)

        with pytest.raises(AuthError):
            await provider.get_access_token()
        assert provider.cache.entry is None

    @pytest.mark.asyncio
    async def test_non_json_body_raises_auth_error(self):
        client = _mock_client(httpx.Response(200, text="<html>oops</html>"))
        provider = _provider(client)

        with pytest.raises(AuthError, match="not valid JSON"):
            await provider.get_access_token()

    @pytest.mark.asyncio
    async def test_json_array_body_raises_auth_error(self):
        client = _mock_client(httpx.Response(200, json=["token"]))
        provider = _provider(client)

        with pytest.raises(AuthError, match="not a JSON object"):
            await provider.get_access_token()


class TestClientLifecycle:
    @pytest.mark.asyncio
    async def test_shared_client_not_closed(self):
        client = _mock_client()
        provider = _provider(client)

        await provider.close()
        client.aclose.assert_not_called()
