"""Decoding and validation of CMP preview webhook payloads.

The CMP nests the identifiers this service needs several levels deep::

    {
      "data": {
        "preview_id": "...",
        "assets": {
          "structured_contents": [
            {
              "id": "...",
              "version_id": "...",
              "content_body": {
                "updated_by": "...",
                "fields_version": {"content_hash": "..."}
              }
            }
          ]
        }
      }
    }

Only the first structured content is used.  Every field is looked up along
its own path so a rejection can name exactly which ones were absent.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from .errors import PayloadParseError, PayloadValidationError

logger = logging.getLogger(__name__)

# Field name -> path from the payload root.  Integers index into lists.
REQUIRED_FIELDS: dict[str, tuple[str | int, ...]] = {
    "contentId": ("data", "assets", "structured_contents", 0, "id"),
    "versionId": ("data", "assets", "structured_contents", 0, "version_id"),
    "previewId": ("data", "preview_id"),
    "updatedBy": ("data", "assets", "structured_contents", 0, "content_body", "updated_by"),
    "contentHash": (
        "data",
        "assets",
        "structured_contents",
        0,
        "content_body",
        "fields_version",
        "content_hash",
    ),
}


@dataclass(frozen=True)
class PreviewRequest:
    """The validated identifiers of one preview request."""

    content_id: str
    version_id: str
    preview_id: str
    updated_by: str
    content_hash: str


def parse_webhook_body(raw_body: bytes) -> Any:
    """Decode the raw request body as JSON.

    An empty body yields ``None`` (which then fails validation).

    Raises:
        PayloadParseError: If the body is not UTF-8 or not valid JSON.
    """
    try:
        text = raw_body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PayloadParseError("Request body is not valid UTF-8") from exc
    if not text:
        return None
    try:
        return json.loads(text)
    except (ValueError, RecursionError) as exc:
        # Deep nesting raises RecursionError, huge integer literals ValueError.
        raise PayloadParseError(str(exc)) from exc


def _lookup(payload: Any, path: tuple[str | int, ...]) -> Any:
    node = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(node, list) or len(node) <= key:
                return None
        elif not isinstance(node, dict):
            return None
        node = node[key] if isinstance(key, int) else node.get(key)
    return node


def _as_identifier(value: Any) -> str | None:
    # bool is an int subclass; neither True nor False is an identifier.
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value or None
    if isinstance(value, int):
        return str(value) if value else None
    return None


def extract_preview_request(payload: Any) -> PreviewRequest:
    """Pull the five required identifiers out of a decoded webhook payload.

    Raises:
        PayloadValidationError: If any field is missing, empty, or not a
            string/integer.  ``missing`` lists the absent field names.
    """
    found: dict[str, str] = {}
    missing: list[str] = []
    for name, path in REQUIRED_FIELDS.items():
        value = _as_identifier(_lookup(payload, path))
        if value is None:
            missing.append(name)
        else:
            found[name] = value

    if missing:
        logger.warning("Preview webhook missing fields=%s present=%s", missing, found)
        raise PayloadValidationError(missing)

    return PreviewRequest(
        content_id=found["contentId"],
        version_id=found["versionId"],
        preview_id=found["previewId"],
        updated_by=found["updatedBy"],
        content_hash=found["contentHash"],
    )
