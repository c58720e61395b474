"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from functools import lru_cache
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./meet_link.sqlite"

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Public URL the personal links are built from (e.g. https://meet.example.com)
    BASE_URL: str = ""

    # Sign-in policy
    ALLOWED_DOMAIN: str = ""
    ALLOW_ANY_DOMAIN: bool = False
    SINGLE_USER_MODE: bool = False

    # Google OAuth client (Calendar API access on behalf of each owner)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_CALLBACK_URL: str = ""

    # Signs session cookies and derives the credential encryption key
    SESSION_SECRET: str = "CHANGE-ME-IN-PRODUCTION-use-openssl-rand-hex-32"
    SESSION_MAX_AGE_DAYS: int = 30

    # Meeting lifecycle
    MEET_WINDOW_MS: int = 5 * 60 * 1000
    KEEPALIVE_INTERVAL_SECONDS: float = 25.0

    # CORS
    CORS_ALLOWED_ORIGINS: str = "*"

    # Monitoring
    SENTRY_DSN: str = ""

    @property
    def meeting_window(self) -> timedelta:
        return timedelta(milliseconds=self.MEET_WINDOW_MS)

    def get_callback_url(self) -> str:
        """Return the OAuth callback URL.

        Falls back to ``{BASE_URL origin}/oauth2/callback`` when
        GOOGLE_CALLBACK_URL is not configured.
        """
        if self.GOOGLE_CALLBACK_URL:
            return self.GOOGLE_CALLBACK_URL
        parsed = urlparse(self.BASE_URL)
        if parsed.scheme and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}/oauth2/callback"
        return ""

    def personal_url(self, slug: str) -> str:
        return f"{self.BASE_URL.rstrip('/')}/{slug}"


def validate_settings(settings: Settings) -> list[str]:
    """Check the settings a deployment needs before owners can sign in.

    Returns a list of human-readable problems; empty when the
    configuration is complete.
    """
    errors: list[str] = []

    required = {
        "BASE_URL": settings.BASE_URL,
        "GOOGLE_CLIENT_ID": settings.GOOGLE_CLIENT_ID,
        "GOOGLE_CLIENT_SECRET": settings.GOOGLE_CLIENT_SECRET,
        "SESSION_SECRET": settings.SESSION_SECRET,
    }
    if not settings.ALLOW_ANY_DOMAIN:
        required["ALLOWED_DOMAIN"] = settings.ALLOWED_DOMAIN

    for key, value in required.items():
        if not value or not value.strip():
            errors.append(f"{key} is required")

    if settings.BASE_URL:
        parsed = urlparse(settings.BASE_URL)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append("BASE_URL must be a valid URL (e.g., http://localhost:8000)")

    if settings.ALLOWED_DOMAIN and "@" in settings.ALLOWED_DOMAIN:
        errors.append(
            "ALLOWED_DOMAIN should be just the domain (e.g., example.com, not @example.com)"
        )

    if settings.SESSION_SECRET and len(settings.SESSION_SECRET) < 32:
        errors.append("SESSION_SECRET must be at least 32 characters long")

    return errors


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
