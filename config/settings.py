"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # RECORD REPOSITORY
    # ===================
    repository_page_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Rows per read request (PostgREST max-rows ceiling)"
    )
    repository_write_batch_size: int = Field(
        default=500,
        ge=1,
        le=5000,
        description="Rows per bulk insert/update/delete request"
    )
    fetch_workers: int = Field(
        default=4,
        ge=1,
        le=16,
        description="Threads used to read governed tables concurrently"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_timeout_seconds: int = Field(
        default=300,
        ge=5,
        le=3600,
        description="Upper bound for a single apply or rollback"
    )
    import_history_retention: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Number of import snapshots kept for rollback"
    )
    preview_ttl_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="How long a computed preview stays available for execute"
    )
    max_upload_size_mb: int = Field(
        default=50,
        ge=1,
        le=200,
        description="Largest accepted workbook upload"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
