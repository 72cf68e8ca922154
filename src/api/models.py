"""Pydantic v2 response models for the CMP preview webhook API.

The webhook response uses camelCase keys because the CMP reads them.
"""

from pydantic import BaseModel, ConfigDict, Field


class PreviewWebhookResponse(BaseModel):
    """``200`` body of ``POST /cmp-preview-webhook``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    acknowledged: bool = True
    completed: bool = True
    content_id: str = Field(alias="contentId")
    version_id: str = Field(alias="versionId")
    preview_id: str = Field(alias="previewId")
    keyed_previews: dict[str, str] = Field(alias="keyedPreviews")


class ErrorResponse(BaseModel):
    """Error body for every non-200 webhook response."""

    error: str
    details: str | None = None
    missing: list[str] | None = None


class StalledPreview(BaseModel):
    content_id: str
    version_id: str
    preview_id: str
    acknowledged_at: float
    error: str


class StalledPreviewsResponse(BaseModel):
    count: int
    previews: list[StalledPreview]


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str = "development"
    token_cached: bool = False
    stalled_previews: int = 0


class LiveResponse(BaseModel):
    """Liveness check - always 200 if the process is running."""

    status: str = "ok"
