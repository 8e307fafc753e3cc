"""
Configuration settings for the price intelligence application.
"""

import os
import warnings
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Application settings and configuration."""

    # Google AI Studio Configuration (preferred over Vertex AI)
    GOOGLE_AI_API_KEY: Optional[str] = os.environ.get("GOOGLE_AI_API_KEY")

    # GCP Configuration - fallback to Vertex AI if Google AI Studio not available
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")

    # Gemini model and generation config
    GEMINI_MODEL: str = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash-lite")
    GEMINI_THINKING_BUDGET: int = int(os.environ.get("GEMINI_THINKING_BUDGET", "0"))
    GEMINI_ENABLE_SEARCH_TOOL: bool = _env_bool("GEMINI_ENABLE_SEARCH_TOOL", False)

    # Shared quota for the Gemini endpoint (all users of this process)
    GEMINI_RATE_LIMIT_PER_MINUTE: int = int(os.environ.get("GEMINI_RATE_LIMIT_PER_MINUTE", "60"))
    GEMINI_RATE_LIMIT_PER_DAY: int = int(os.environ.get("GEMINI_RATE_LIMIT_PER_DAY", "1000"))

    # Retry / timeout for a single generative request
    GEMINI_MAX_RETRIES: int = int(os.environ.get("GEMINI_MAX_RETRIES", "3"))
    GEMINI_RETRY_BASE_DELAY: float = float(os.environ.get("GEMINI_RETRY_BASE_DELAY", "1.0"))  # seconds
    GEMINI_REQUEST_TIMEOUT: float = float(os.environ.get("GEMINI_REQUEST_TIMEOUT", "30"))  # seconds, per attempt

    # Per-user search quotas
    SEARCH_LIMIT: int = int(os.environ.get("SEARCH_LIMIT", "3"))  # request-level gate
    SEARCH_LIMIT_WINDOW_HOURS: int = int(os.environ.get("SEARCH_LIMIT_WINDOW_HOURS", "24"))
    WEEKLY_SEARCH_LIMIT: int = int(os.environ.get("WEEKLY_SEARCH_LIMIT", "100"))  # workflow-level gate
    WEEKLY_SEARCH_WINDOW_DAYS: int = int(os.environ.get("WEEKLY_SEARCH_WINDOW_DAYS", "7"))

    # Recent searches for the same query are served from the database
    SEARCH_CACHE_HOURS: float = float(os.environ.get("SEARCH_CACHE_HOURS", "7"))

    # Database Configuration
    DB_FILE: str = os.environ.get("DB_FILE", "pricewatch.db")

    # Server
    HOST: str = os.environ.get("HOST", "0.0.0.0")
    PORT: int = int(os.environ.get("PORT", "7777"))
    RELOAD: bool = _env_bool("RELOAD", False)

    # API Configuration
    API_TITLE: str = "PriceWatch Price Intelligence API"
    API_VERSION: str = "1.0.0"

    def validate_required_vars(self):
        """Validate that all required environment variables are set."""
        missing = []

        # Require either Google AI Studio API key OR Vertex AI credentials
        if not self.GOOGLE_AI_API_KEY and not self.GOOGLE_APPLICATION_CREDENTIALS:
            missing.append("GOOGLE_AI_API_KEY or GOOGLE_APPLICATION_CREDENTIALS")

        if self.GOOGLE_AI_API_KEY and len(self.GOOGLE_AI_API_KEY) < 20:
            raise ValueError("GOOGLE_AI_API_KEY appears to be invalid")

        if missing:
            raise ValueError(f"Required environment variables not set: {', '.join(missing)}")


# Global settings instance
settings = Settings()

# Warn on import (don't fail) so tests and tooling can import the package
if not settings.GOOGLE_AI_API_KEY and not settings.GOOGLE_APPLICATION_CREDENTIALS:
    warnings.warn("Neither GOOGLE_AI_API_KEY nor GOOGLE_APPLICATION_CREDENTIALS environment variable set. Set one before running the application.")
