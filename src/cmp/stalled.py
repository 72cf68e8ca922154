"""In-memory record of previews that were acknowledged but never completed.

When the completion call fails after a successful acknowledge, the CMP
believes the preview is in progress and nothing here compensates.  The
registry makes those previews visible to operators (``GET
/cmp-preview-webhook/stalled``) so they can be resolved from the CMP side.

Bounded via TTLCache: entries expire after 24 hours and the oldest are
evicted beyond ``maxsize``.  Lost on restart.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_STALLED_MAXSIZE = 1_000
_STALLED_TTL = 86400  # 24 hours


class StalledPreviewRegistry:
    """Track acknowledged-but-not-completed previews, keyed by preview ID."""

    def __init__(self, maxsize: int = _STALLED_MAXSIZE, ttl: float = _STALLED_TTL) -> None:
        self._entries: TTLCache[str, dict[str, Any]] = TTLCache(maxsize=maxsize, ttl=ttl)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, preview_id: object) -> bool:
        return preview_id in self._entries

    def record(
        self,
        content_id: str,
        version_id: str,
        preview_id: str,
        error: str,
    ) -> None:
        self._entries[preview_id] = {
            "content_id": content_id,
            "version_id": version_id,
            "preview_id": preview_id,
            "acknowledged_at": time.time(),
            "error": error,
        }
        logger.error(
            "Preview acknowledged but not completed: content=%s version=%s preview=%s error=%s",
            content_id,
            version_id,
            preview_id,
            error,
        )

    def resolve(self, preview_id: str) -> bool:
        """Forget a preview once it completes; ``True`` if it was stalled."""
        if self._entries.pop(preview_id, None) is None:
            return False
        logger.info("Stalled preview resolved: preview=%s", preview_id)
        return True

    def entries(self) -> list[dict[str, Any]]:
        """Return stalled previews, oldest first."""
        return sorted(
            (dict(entry) for entry in self._entries.values()),
            key=lambda entry: entry["acknowledged_at"],
        )

    def clear(self) -> None:
        self._entries.clear()
