"""CMP "preview with push strategy" webhook handler.

Receives the CMP's preview notification when an editor requests a content
preview, then runs the protocol in order:

    parse -> validate -> acknowledge -> generate URLs -> complete -> respond

Each step either advances or ends the request with a JSON error body.  No
step is retried, and completion is never attempted unless the acknowledge
call succeeded.
"""

from __future__ import annotations

import logging
from typing import Any

from .client import CMPClient
from .errors import (
    AcknowledgeError,
    AuthError,
    CompletionError,
    PayloadParseError,
    PayloadValidationError,
)
from .payload import (
    REQUIRED_FIELDS,
    PreviewRequest,
    extract_preview_request,
    parse_webhook_body,
)
from .previews import generate_preview_urls
from .responses import WebhookError, error_response
from .stalled import StalledPreviewRegistry

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Preview acknowledged and completed"


async def handle_preview_webhook(
    raw_body: bytes,
    *,
    cmp_client: CMPClient,
    preview_base_url: str,
    stalled_previews: StalledPreviewRegistry | None = None,
) -> tuple[int, dict[str, Any]]:
    """Process one CMP preview webhook delivery.

    Args:
        raw_body: Raw request body bytes.
        cmp_client: Client used for the acknowledge and complete calls.
        preview_base_url: Base URL of the preview renderer.
        stalled_previews: Where to record previews whose completion failed
            after a successful acknowledge.

    Returns:
        A ``(status_code, body)`` tuple::

            200 {"message", "acknowledged", "completed", "contentId",
                 "versionId", "previewId", "keyedPreviews"}
            400 {"error": "Invalid JSON payload"}
            400 {"error": "Missing required fields: ...", "missing": [...]}
            500 {"error": "Failed to acknowledge preview", "details"}
            500 {"error": "Failed to submit preview completion", "details"}
            500 {"error": "Failed to process webhook", "details"}
    """
    try:
        return await _run_protocol(
            raw_body,
            cmp_client=cmp_client,
            preview_base_url=preview_base_url,
            stalled_previews=stalled_previews,
        )
    except Exception as exc:
        logger.exception("Preview webhook processing failed")
        return 500, error_response(WebhookError.PROCESSING_FAILED, details=str(exc))


async def _run_protocol(
    raw_body: bytes,
    *,
    cmp_client: CMPClient,
    preview_base_url: str,
    stalled_previews: StalledPreviewRegistry | None,
) -> tuple[int, dict[str, Any]]:
    logger.info("Received CMP preview webhook (%d bytes)", len(raw_body))

    # Step 1: Parse
    try:
        payload = parse_webhook_body(raw_body)
    except PayloadParseError as exc:
        logger.warning("Preview webhook body is not valid JSON: %s", exc)
        return 400, error_response(WebhookError.INVALID_JSON)

    # Step 2: Validate
    try:
        preview = extract_preview_request(payload)
    except PayloadValidationError as exc:
        body = error_response(
            WebhookError.MISSING_FIELDS,
            message=f"{WebhookError.MISSING_FIELDS.value}: {', '.join(REQUIRED_FIELDS)}",
        )
        body["missing"] = exc.missing
        return 400, body

    # Step 3: Acknowledge
    try:
        await cmp_client.acknowledge_preview(
            preview.content_id,
            preview.version_id,
            preview.preview_id,
            preview.updated_by,
            preview.content_hash,
        )
    except (AcknowledgeError, AuthError) as exc:
        logger.warning("Preview acknowledge failed preview=%s: %s", preview.preview_id, exc)
        return 500, error_response(WebhookError.ACKNOWLEDGE_FAILED, details=str(exc))

    # Step 4: Generate URLs
    keyed_previews = generate_preview_urls(preview.content_id, preview_base_url)

    # Step 5: Complete
    try:
        await cmp_client.submit_preview_completion(
            preview.content_id,
            preview.version_id,
            preview.preview_id,
            keyed_previews,
        )
    except (CompletionError, AuthError) as exc:
        _record_stalled(stalled_previews, preview, exc)
        return 500, error_response(WebhookError.COMPLETION_FAILED, details=str(exc))
    except Exception as exc:
        # Acknowledged but not completed; the outer handler builds the 500.
        _record_stalled(stalled_previews, preview, exc)
        raise

    if stalled_previews is not None:
        stalled_previews.resolve(preview.preview_id)

    logger.info(
        "Preview completed content=%s version=%s preview=%s",
        preview.content_id,
        preview.version_id,
        preview.preview_id,
    )
    return 200, {
        "message": SUCCESS_MESSAGE,
        "acknowledged": True,
        "completed": True,
        "contentId": preview.content_id,
        "versionId": preview.version_id,
        "previewId": preview.preview_id,
        "keyedPreviews": keyed_previews,
    }


def _record_stalled(
    stalled_previews: StalledPreviewRegistry | None,
    preview: PreviewRequest,
    exc: Exception,
) -> None:
    if stalled_previews is not None:
        stalled_previews.record(
            preview.content_id,
            preview.version_id,
            preview.preview_id,
            str(exc),
        )
    else:
        logger.error(
            "Preview acknowledged but not completed: preview=%s error=%s",
            preview.preview_id,
            exc,
        )
