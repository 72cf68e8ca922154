"""CMP preview-with-push protocol integration.

Provides the OAuth token provider, the acknowledge/complete API client,
preview URL generation, payload validation, and the webhook handler that
sequences them.
"""

from .auth import AccessTokenProvider, CachedToken, TokenCache
from .client import CMPClient
from .errors import (
    AcknowledgeError,
    AuthError,
    CMPError,
    CompletionError,
    PayloadParseError,
    PayloadValidationError,
)
from .payload import PreviewRequest, extract_preview_request, parse_webhook_body
from .previews import PREVIEW_CHANNELS, generate_preview_urls
from .responses import WebhookError, error_response
from .stalled import StalledPreviewRegistry
from .webhook import handle_preview_webhook

__all__ = [
    "AccessTokenProvider",
    "CachedToken",
    "TokenCache",
    "CMPClient",
    "CMPError",
    "PayloadParseError",
    "PayloadValidationError",
    "AuthError",
    "AcknowledgeError",
    "CompletionError",
    "PreviewRequest",
    "extract_preview_request",
    "parse_webhook_body",
    "PREVIEW_CHANNELS",
    "generate_preview_urls",
    "WebhookError",
    "error_response",
    "StalledPreviewRegistry",
    "handle_preview_webhook",
]
