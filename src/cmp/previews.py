"""Per-channel preview URL generation."""

from __future__ import annotations

from urllib.parse import quote

# Closed set of channels the CMP renders previews for.
PREVIEW_CHANNELS: tuple[str, ...] = ("default", "mobile", "desktop", "tablet", "signage")


def generate_preview_urls(content_id: str, preview_base_url: str) -> dict[str, str]:
    """Map every preview channel to ``{base}/preview/{channel}/{content_id}``.

    URLs are keyed by the content ID rather than the preview ID, so repeated
    preview requests for the same content share URLs.
    """
    base = preview_base_url.rstrip("/")
    segment = quote(content_id, safe="")
    return {channel: f"{base}/preview/{channel}/{segment}" for channel in PREVIEW_CHANNELS}
