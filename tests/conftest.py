"""Shared test fixtures for the CMP preview webhook tests."""

import json
import os
from urllib.parse import parse_qs

import httpx
import pytest

# Required settings must exist before ``src.api.app`` is imported, because
# the module builds the app (and validates settings) at import time.
_TEST_ENV = {
    "CMP_API_BASE_URL": "https://cmp.test",
    "CMP_CLIENT_ID": "test-client",
    "CMP_CLIENT_SECRET": "test-secret",
    "CMP_AUTH_SERVER_URL": "https://auth.test",
    "PREVIEW_BASE_URL": "https://preview.test",
}
for _key, _value in _TEST_ENV.items():
    os.environ.setdefault(_key, _value)


@pytest.fixture(autouse=True)
def _clear_singleton_caches():
    """Reset the cached Settings between tests."""
    yield
    from src.config import get_settings

    get_settings.cache_clear()


def make_webhook_payload(
    *,
    content_id="c1",
    version_id="v1",
    preview_id="p1",
    updated_by="alice",
    content_hash="h1",
) -> dict:
    """Build a CMP preview webhook payload with the given identifiers."""
    return {
        "data": {
            "preview_id": preview_id,
            "assets": {
                "structured_contents": [
                    {
                        "id": content_id,
                        "version_id": version_id,
                        "content_body": {
                            "updated_by": updated_by,
                            "fields_version": {"content_hash": content_hash},
                        },
                    }
                ]
            },
        }
    }


@pytest.fixture
def make_payload():
    return make_webhook_payload


@pytest.fixture
def webhook_payload():
    return make_webhook_payload()


class FakeCMP:
    """httpx.MockTransport handler standing in for the CMP and its auth server.

    Records every request; set the ``*_status`` attributes to simulate
    upstream failures.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body: dict = {"access_token": "tok-1", "expires_in": 3600}
        self.ack_status = 200
        self.complete_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/o/oauth2/v1/token":
            return httpx.Response(self.token_status, json=self.token_body)
        if path.endswith("/acknowledge"):
            return httpx.Response(self.ack_status, text="ack-body")
        if path.endswith("/complete"):
            return httpx.Response(self.complete_status, text="complete-body")
        return httpx.Response(404, text="unknown route")

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def calls_to(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    @staticmethod
    def json(request: httpx.Request) -> dict:
        return json.loads(request.content)


@pytest.fixture
def fake_cmp():
    return FakeCMP()
