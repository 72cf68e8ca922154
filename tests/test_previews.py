"""Tests for preview URL generation and the stalled-preview registry."""

from src.cmp.previews import PREVIEW_CHANNELS, generate_preview_urls
from src.cmp.stalled import StalledPreviewRegistry


class TestGeneratePreviewUrls:
    def test_all_channels_present(self):
        urls = generate_preview_urls("abc", "https://preview.test")
        assert set(urls) == {"default", "mobile", "desktop", "tablet", "signage"}

    def test_url_format(self):
        urls = generate_preview_urls("abc", "https://preview.test")
        for channel in PREVIEW_CHANNELS:
            assert urls[channel] == f"https://preview.test/preview/{channel}/abc"

    def test_deterministic(self):
        assert generate_preview_urls("abc", "https://p.test") == generate_preview_urls(
            "abc", "https://p.test"
        )

    def test_trailing_slash_on_base(self):
        urls = generate_preview_urls("abc", "https://preview.test/")
        assert urls["mobile"] == "https://preview.test/preview/mobile/abc"

    def test_content_id_is_path_quoted(self):
        urls = generate_preview_urls("a/b c", "https://preview.test")
        assert urls["default"] == "https://preview.test/preview/default/a%2Fb%20c"


class TestStalledPreviewRegistry:
    def test_record_and_entries(self):
        registry = StalledPreviewRegistry()
        registry.record("c1", "v1", "p1", "boom")

        assert "p1" in registry
        assert len(registry) == 1
        (entry,) = registry.entries()
        assert entry["content_id"] == "c1"
        assert entry["version_id"] == "v1"
        assert entry["error"] == "boom"

    def test_resolve(self):
        registry = StalledPreviewRegistry()
        registry.record("c1", "v1", "p1", "boom")

        assert registry.resolve("p1") is True
        assert registry.resolve("p1") is False
        assert len(registry) == 0

    def test_same_preview_recorded_once(self):
        registry = StalledPreviewRegistry()
        registry.record("c1", "v1", "p1", "first")
        registry.record("c1", "v1", "p1", "second")

        (entry,) = registry.entries()
        assert entry["error"] == "second"

    def test_bounded(self):
        registry = StalledPreviewRegistry(maxsize=3)
        for i in range(10):
            registry.record("c", "v", f"p{i}", "err")
        assert len(registry) == 3

    def test_record_logs_error(self, caplog):
        registry = StalledPreviewRegistry()
        with caplog.at_level("ERROR", logger="src.cmp.stalled"):
            registry.record("c1", "v1", "p1", "boom")
        assert "acknowledged but not completed" in caplog.text
