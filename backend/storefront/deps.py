"""Dependency providers and settings management."""

from functools import lru_cache
from typing import Optional

from fastapi import Request
from pydantic_settings import BaseSettings, SettingsConfigDict

from .services.remote_data_client import RemoteDataClient
from .visitor.lifecycle import VisitorSnapshot


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    # Hosted backend (PostgREST-compatible row store + remote procedures)
    BACKEND_URL: str = "http://localhost:54321"
    BACKEND_API_KEY: str = ""

    # Best-effort IP geolocation (no auth)
    GEO_API_URL: str = "https://ipapi.co"
    HTTP_TIMEOUT_SECONDS: float = 5.0

    VISITOR_COOKIE_NAME: str = "visitor_tracking"
    VISITOR_COOKIE_TTL_DAYS: int = 365
    HANDSHAKE_COOKIE_NAME: str = "handshake_completed"
    # Delay before the referral dialog appears, so it never interrupts first paint
    HANDSHAKE_DELAY_SECONDS: float = 3.0

    # Cookie domain must NOT include protocol (https://)
    # Set to None for same-origin cookies
    COOKIE_DOMAIN: Optional[str] = None
    COOKIE_SECURE: bool = False

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    SENTRY_DSN: Optional[str] = None
    ENVIRONMENT: str = "development"
    RELEASE_VERSION: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        """CORS origins parsed from the comma-separated setting."""
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_remote_client(request: Request) -> RemoteDataClient:
    """Resolve the shared backend client created at startup."""
    return request.app.state.runtime.remote


def get_visitor(request: Request) -> Optional[VisitorSnapshot]:
    """Return the visitor snapshot computed by the lifecycle middleware, if any."""
    return getattr(request.state, "visitor", None)
