"""Configuration management for Mail Archive Sync.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the MAIL_SYNC_ prefix (e.g., MAIL_SYNC_PARTITION_DIR).
    """

    model_config = SettingsConfigDict(
        env_prefix="MAIL_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API credentials file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access",
    )
    gmail_user_id: str = Field(
        default="me",
        description="Gmail user id passed to every API call",
    )
    gmail_list_max_results: int = Field(
        default=500,
        description="Maximum number of message ids listed per query",
    )

    # Storage Configuration
    partition_dir: Path = Field(
        default=Path("data/email"),
        description="Directory holding the monthly gmail-export-YYYY-MM.json partitions",
    )
    save_full_data: bool = Field(
        default=True,
        description="Store full messages under <partition_dir>/full during Smart Fetch",
    )
    local_store_path: Path = Field(
        default=Path("mail_sync_local.sqlite3"),
        description="SQLite file backing the local cache and session documents",
    )
    local_store_quota_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Total bytes the local store accepts before rejecting writes",
    )

    # Result cache
    cache_key: str = Field(default="gmail-client-cache", description="Cache document key")
    cache_max_bytes: int = Field(
        default=5 * 1024 * 1024,
        description="Serialized size above which the cache entry is reduced",
    )
    cache_ttl_minutes: int = Field(default=30, description="Cache entry lifetime in minutes")

    # Session
    session_key: str = Field(default="gmail-auth", description="Session document key")
    session_ttl_minutes: int = Field(default=10, description="Session lifetime in minutes")

    # Smart Fetch
    default_lookback_days: int = Field(
        default=30,
        description="Days fetched when no partition holds any dated message",
    )
    sync_batch_size: int = Field(default=10, description="Messages fetched concurrently per batch")
    sync_batch_delay_ms: int = Field(default=200, description="Pause between Smart Fetch batches")

    # Weekly export
    export_batch_size: int = Field(default=8, description="Messages fetched concurrently per batch")
    export_batch_delay_ms: int = Field(default=150, description="Pause between export batches")
    export_week_delay_ms: int = Field(default=300, description="Pause after a successful week")
    export_week_failure_delay_ms: int = Field(default=500, description="Pause after a failed week")

    # Retry
    fetch_retries: int = Field(
        default=0,
        description="Retries for a transient per-message fetch failure (0 disables retry)",
    )
    retry_delay_seconds: float = Field(default=1.0, description="Initial retry delay in seconds")
    retry_backoff: float = Field(default=2.0, description="Multiplier applied to the retry delay")

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
