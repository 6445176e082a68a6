# =============================================================================
# app/config.py - Application Settings
# =============================================================================
# This module loads configuration from environment variables using pydantic-settings.
# It provides a single Settings class with all configuration values.
#
# Usage:
#   from app.config import settings
#   print(settings.MAX_CONCURRENT_ORDERS)
#
# Environment variables are loaded from:
# 1. System environment variables
# 2. .env file in project root (if exists)
#
# The Settings class validates all values at startup, catching configuration
# errors early rather than at runtime.
# =============================================================================

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses pydantic-settings to:
    - Automatically load from .env file
    - Validate types and constraints
    - Provide sensible defaults for development

    All settings are accessed via the global `settings` instance.
    """

    # -------------------------------------------------------------------------
    # Storage Configuration
    # -------------------------------------------------------------------------
    # "supabase" talks to Postgres through Supabase; "memory" keeps everything
    # in-process (local development and tests)

    STORAGE_BACKEND: Literal["supabase", "memory"] = Field(
        default="supabase",
        description="Where deliveries and partners are persisted"
    )

    SUPABASE_URL: str | None = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co)"
    )

    SUPABASE_SERVICE_KEY: str | None = Field(
        default=None,
        description="Supabase service_role key (bypasses RLS)"
    )

    # -------------------------------------------------------------------------
    # Event Relay (Redis pub/sub)
    # -------------------------------------------------------------------------
    # With more than one API process, "redis" makes delivery-created
    # announcements reach clients connected to any process

    EVENT_RELAY: Literal["local", "redis"] = Field(
        default="local",
        description="How broad announcements reach connected clients"
    )

    REDIS_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the event relay"
    )

    # -------------------------------------------------------------------------
    # Delivery Assignment
    # -------------------------------------------------------------------------

    MAX_CONCURRENT_ORDERS: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Max deliveries a partner may carry at once"
    )

    DELIVERY_BUFFER_MINUTES: int = Field(
        default=30,
        ge=0,
        description="Added to the pickup estimate to get the delivery estimate"
    )

    # -------------------------------------------------------------------------
    # Live Tracking
    # -------------------------------------------------------------------------

    TRACKING_RETENTION_SECONDS: float = Field(
        default=3600,
        ge=0,
        description="How long an unwatched tracking record is kept"
    )

    WS_SEND_TIMEOUT_SECONDS: float = Field(
        default=5.0,
        gt=0,
        description="Give up on a slow WebSocket send after this long"
    )

    # -------------------------------------------------------------------------
    # Application Settings
    # -------------------------------------------------------------------------

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Current environment"
    )

    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (verbose logging, auto-reload)"
    )

    API_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the API server to"
    )

    API_PORT: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port for the API server"
    )

    # CORS origins (comma-separated string that gets parsed)
    CORS_ORIGINS: str = Field(
        default="http://localhost:8081,http://localhost:8082",
        description="Allowed CORS origins (comma-separated)"
    )

    # -------------------------------------------------------------------------
    # Pydantic Settings Configuration
    # -------------------------------------------------------------------------

    model_config = SettingsConfigDict(
        # Load from .env file in project root
        env_file=".env",
        env_file_encoding="utf-8",
        # Don't fail if .env doesn't exist (useful for production where
        # env vars are set directly)
        env_ignore_empty=True,
        # Case-sensitive environment variable names
        case_sensitive=True,
        # .env files are shared with the other marketplace services
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Computed Properties
    # -------------------------------------------------------------------------

    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parse CORS_ORIGINS string into a list.

        Example: "http://localhost:8081, https://app.example.com" -> ["http://localhost:8081", "https://app.example.com"]
        """
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def supabase_configured(self) -> bool:
        """Check if both Supabase values are present."""
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_KEY)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached Settings instance.

    Using lru_cache ensures we only parse .env and validate once,
    not on every access.

    Returns:
        Settings: The application settings instance
    """
    return Settings()


# Global settings instance for easy importing
# Usage: from app.config import settings
settings = get_settings()
