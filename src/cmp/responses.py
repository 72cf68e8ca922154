"""Error response bodies for the CMP preview webhook.

The CMP displays ``error`` to editors and ``details`` to whoever debugs the
integration, so ``details`` echoes the upstream failure verbatim.

Usage::

    from src.cmp.responses import WebhookError, error_response

    return JSONResponse(
        status_code=500,
        content=error_response(WebhookError.ACKNOWLEDGE_FAILED, details=str(exc)),
    )
"""

from enum import Enum


class WebhookError(str, Enum):
    """Canonical ``error`` strings for API responses."""

    INVALID_JSON = "Invalid JSON payload"
    MISSING_FIELDS = "Missing required fields"
    ACKNOWLEDGE_FAILED = "Failed to acknowledge preview"
    COMPLETION_FAILED = "Failed to submit preview completion"
    PROCESSING_FAILED = "Failed to process webhook"
    PAYLOAD_TOO_LARGE = "Request body too large"
    INTERNAL_ERROR = "Internal server error"


def error_response(
    error: WebhookError,
    *,
    message: str | None = None,
    details: str | None = None,
) -> dict:
    """Build an error response body.

    Args:
        error: One of the ``WebhookError`` values.
        message: Replaces the canonical ``error`` text (e.g. to list fields).
        details: Upstream failure description, omitted when ``None``.

    Returns:
        Dict with an ``error`` string and, when given, ``details``.
    """
    body: dict = {"error": message or error.value}
    if details is not None:
        body["details"] = details
    return body
