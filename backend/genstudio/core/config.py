"""Generation studio configuration (Gemini API + runtime knobs)."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root directory (parent of backend/)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent.resolve()

# Load .env file into environment variables
env_path = PROJECT_ROOT / ".env"
load_dotenv(env_path)


class Settings(BaseSettings):
    """Studio configuration with fail-loud validation at call sites."""

    model_config = SettingsConfigDict(env_file=str(env_path), extra="ignore")

    # Gemini API credential (read from API_KEY, same as the hosted studio)
    api_key: str | None = Field(default=None)
    gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")

    # Models
    image_model: str = Field(default="imagen-4.0-generate-001")
    video_model: str = Field(default="veo-3.1-fast-generate-preview")

    # Video poll loop
    video_poll_interval_s: float = Field(default=10.0, gt=0)
    # Optional ceiling on total poll time; None keeps polling until the provider settles
    video_max_wait_s: float | None = Field(default=None, gt=0)

    # HTTP timeouts
    http_timeout_s: float = Field(default=60.0, gt=0)
    download_timeout_s: float = Field(default=300.0, gt=0)

    # Credential fallback when no interactive key selector is wired in.
    # None derives the answer from whether API_KEY is set.
    credential_assume_usable: bool | None = Field(default=None)

    # Logging
    log_level: str = Field(default="INFO")
    log_file: str | None = Field(default=None)

    # API surface
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"]
    )
    media_store_max_items: int = Field(default=8, ge=1)
    rate_limit_enabled: bool = Field(default=True)

    def assume_credential_usable(self) -> bool:
        """Resolve the ambient credential fallback to a concrete answer."""
        if self.credential_assume_usable is not None:
            return self.credential_assume_usable
        return bool(self.api_key)


settings = Settings()
