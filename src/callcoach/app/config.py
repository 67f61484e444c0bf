"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./callcoach.db"

    # AI scoring engine
    gemini_api_key: str = ""
    scoring_model: str = "gemini-2.5-flash"
    scoring_timeout_seconds: int = 120

    # Transcription
    deepgram_api_key: str = ""
    deepgram_model: str = "nova-2"

    # Auth / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"

    # Usage limits: "enforced" or "bypassed" (testing / internal use)
    subscription_mode: str = "enforced"

    # Intake
    max_audio_upload_mb: int = 100

    # Figures: reference time zone for calendar-month attribution
    figures_timezone: str = "UTC"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def max_audio_upload_bytes(self) -> int:
        return self.max_audio_upload_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
