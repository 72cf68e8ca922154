"""FastAPI application for the CMP preview webhook receiver.

Uses a lifespan context manager to build the shared httpx client, token
provider, and CMP client once per process, and pure ASGI middleware (no
BaseHTTPMiddleware).
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.cmp import (
    AccessTokenProvider,
    CMPClient,
    StalledPreviewRegistry,
    TokenCache,
    handle_preview_webhook,
)
from src.config import get_settings

from .middleware import (
    ErrorHandlingMiddleware,
    FrameEmbeddingMiddleware,
    RequestBodyLimitMiddleware,
    RequestLoggingMiddleware,
)
from .models import (
    ErrorResponse,
    HealthResponse,
    LiveResponse,
    PreviewWebhookResponse,
    StalledPreviewsResponse,
)

# Settings are accessed via get_settings() at call sites rather than frozen
# at module level so tests can swap environment variables.
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build CMP collaborators on startup, close the HTTP client on shutdown."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    http_client: httpx.AsyncClient | None = app.state.http_client
    owns_client = http_client is None
    if owns_client:
        http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS))
        app.state.http_client = http_client

    app.state.token_provider = AccessTokenProvider(
        settings.CMP_AUTH_SERVER_URL,
        settings.CMP_CLIENT_ID,
        settings.CMP_CLIENT_SECRET.get_secret_value(),
        http_client=http_client,
        cache=TokenCache(),
        expiry_buffer_seconds=settings.TOKEN_EXPIRY_BUFFER_SECONDS,
    )
    app.state.cmp_client = CMPClient(
        settings.CMP_API_BASE_URL,
        app.state.token_provider,
        http_client=http_client,
    )
    app.state.stalled_previews = StalledPreviewRegistry()
    logger.info(
        "CMP preview webhook ready (api=%s, previews=%s)",
        settings.CMP_API_BASE_URL,
        settings.PREVIEW_BASE_URL,
    )

    app.state.ready = True
    yield
    app.state.ready = False
    if owns_client:
        await http_client.aclose()
        app.state.http_client = None
    logger.info("Application shutdown complete.")


def create_app(*, http_client: httpx.AsyncClient | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        http_client: Shared outbound client; the lifespan creates (and
            closes) one when omitted.
    """
    settings = get_settings()
    app = FastAPI(
        title="CMP Preview Webhook",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.http_client = http_client
    app.state.ready = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )

    # Pure ASGI middleware - Starlette executes in REVERSE add order.
    #   FrameEmbedding   (added 1st, executes last / innermost)
    #   Logging          (added 2nd)
    #   ErrorHandling    (added 3rd)
    #   BodyLimit        (added 4th, executes first / outermost)
    app.add_middleware(FrameEmbeddingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestBodyLimitMiddleware)

    # ------------------------------------------------------------------
    # POST /cmp-preview-webhook - CMP preview request notification
    # ------------------------------------------------------------------
    @app.post(
        "/cmp-preview-webhook",
        response_model=PreviewWebhookResponse,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def cmp_preview_webhook(request: Request):
        """Acknowledge the preview, generate URLs, and report them to the CMP.

        The body is read as raw bytes rather than bound to a model so that
        malformed JSON produces the protocol's own 400 body.
        """
        raw_body = await request.body()
        status_code, body = await handle_preview_webhook(
            raw_body,
            cmp_client=request.app.state.cmp_client,
            preview_base_url=get_settings().PREVIEW_BASE_URL,
            stalled_previews=request.app.state.stalled_previews,
        )
        return JSONResponse(content=body, status_code=status_code)

    # ------------------------------------------------------------------
    # GET /cmp-preview-webhook/stalled - acknowledged, never completed
    # ------------------------------------------------------------------
    @app.get("/cmp-preview-webhook/stalled", response_model=StalledPreviewsResponse)
    async def stalled_previews(request: Request):
        entries = request.app.state.stalled_previews.entries()
        return StalledPreviewsResponse(count=len(entries), previews=entries)

    # ------------------------------------------------------------------
    # GET /live - Liveness check
    # ------------------------------------------------------------------
    @app.get("/live", response_model=LiveResponse)
    async def liveness():
        return LiveResponse()

    # ------------------------------------------------------------------
    # GET /health - Readiness check
    # ------------------------------------------------------------------
    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        ready = getattr(request.app.state, "ready", False)
        token_provider = getattr(request.app.state, "token_provider", None)
        stalled = getattr(request.app.state, "stalled_previews", None)
        settings = get_settings()
        body = HealthResponse(
            status="healthy" if ready else "starting",
            version=settings.VERSION,
            environment=settings.ENVIRONMENT,
            token_cached=(
                token_provider is not None
                and token_provider.cache.get(time.time()) is not None
            ),
            stalled_previews=len(stalled) if stalled is not None else 0,
        )
        return JSONResponse(content=body.model_dump(), status_code=200 if ready else 503)

    return app


app = create_app()

if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(
        "src.api.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        reload=True,
    )
