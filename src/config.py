"""Centralized configuration via pydantic-settings.

CMP endpoints, OAuth client credentials, and tuning knobs live here.
Override any value via environment variable (e.g., ``LOG_LEVEL=DEBUG``) or a
local ``.env`` file.  The five CMP settings have no defaults: the app refuses
to start without them.
"""

from functools import lru_cache

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # --- CMP (required) ---
    CMP_API_BASE_URL: str
    CMP_CLIENT_ID: str
    CMP_CLIENT_SECRET: SecretStr
    CMP_AUTH_SERVER_URL: str
    PREVIEW_BASE_URL: str

    # --- Outbound HTTP ---
    TOKEN_EXPIRY_BUFFER_SECONDS: int = 300  # refresh tokens 5 minutes early
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # --- API ---
    ALLOWED_ORIGINS: list[str] = ["*"]  # CMP embeds preview pages cross-origin
    MAX_REQUEST_BODY_SIZE: int = 1_048_576  # 1 MiB

    # --- Observability ---
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    VERSION: str = "0.1.0"

    model_config = {
        "env_prefix": "",
        "case_sensitive": True,
        "env_file": ".env",
        "extra": "ignore",
    }

    @field_validator("CMP_API_BASE_URL", "CMP_AUTH_SERVER_URL", "PREVIEW_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("URL setting must not be empty")
        return v

    @model_validator(mode="after")
    def validate_credentials(self) -> "Settings":
        """Reject blank OAuth credentials."""
        if not self.CMP_CLIENT_ID.strip():
            raise ValueError("CMP_CLIENT_ID must not be empty")
        if not self.CMP_CLIENT_SECRET.get_secret_value().strip():
            raise ValueError("CMP_CLIENT_SECRET must not be empty")
        if self.TOKEN_EXPIRY_BUFFER_SECONDS < 0:
            raise ValueError(
                f"TOKEN_EXPIRY_BUFFER_SECONDS ({self.TOKEN_EXPIRY_BUFFER_SECONDS}) "
                "must not be negative"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
