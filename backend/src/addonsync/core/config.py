"""Configuration management for the AddonSync backend.

Uses Pydantic Settings for type-safe, environment-based configuration.
"""

from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Load environment variables from .env file
load_dotenv(override=True)

DEFAULT_ADDON_NAMES = ["Cinemeta", "Local Files"]
DEFAULT_ADDON_IDS = ["com.linvo.cinemeta", "org.stremio.local"]


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # App configuration
    app_name: str = Field("AddonSync", alias="ADDONSYNC_APP_NAME")
    debug: bool = Field(False, alias="ADDONSYNC_DEBUG")
    version: str = Field("0.0.0-dev", alias="ADDONSYNC_APP_VERSION")

    # API configuration
    api_v1_prefix: str = "/api/v1"
    api_host: str = Field("127.0.0.1", alias="ADDONSYNC_API_HOST")
    api_port: int = Field(8000, alias="ADDONSYNC_API_PORT")
    environment: str = Field("development", alias="ADDONSYNC_ENVIRONMENT")

    # Database configuration
    database_url: str = Field(alias="ADDONSYNC_DATABASE_URL")
    database_pool_size: int = 20
    database_max_overflow: int = 30
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # Redis configuration
    # Set ADDONSYNC_REDIS_URL to enable Redis-backed caching; omit for in-memory.
    redis_url: str | None = Field(None, alias="ADDONSYNC_REDIS_URL")
    redis_connection_timeout: int = Field(5, alias="ADDONSYNC_REDIS_CONNECTION_TIMEOUT")
    redis_socket_timeout: int = Field(5, alias="ADDONSYNC_REDIS_SOCKET_TIMEOUT")

    @property
    def redis_enabled(self) -> bool:
        """Whether Redis should be used, based on ADDONSYNC_REDIS_URL being set."""
        return bool(self.redis_url)

    # Credential encryption
    # Server secret used to derive per-account data keys. Base64 of >= 32 bytes,
    # or any passphrase (hashed down to 32 bytes).
    encryption_key: str | None = Field(None, alias="ADDONSYNC_ENCRYPTION_KEY")
    dek_cache_ttl_seconds: int = Field(8 * 60 * 60, alias="ADDONSYNC_DEK_TTL_SECONDS")

    # Platform (addon collection API)
    platform_api_url: str = Field("https://api.strem.io", alias="ADDONSYNC_PLATFORM_API_URL")
    platform_timeout: float = Field(15.0, alias="ADDONSYNC_PLATFORM_TIMEOUT")

    # Upstream manifest fetching
    manifest_fetch_timeout: float = Field(10.0, alias="ADDONSYNC_MANIFEST_FETCH_TIMEOUT")
    manifest_cache_ttl: int = Field(300, alias="ADDONSYNC_MANIFEST_CACHE_TTL")

    # Addons the platform installs for every user; protected while safe mode is on
    default_addon_names: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ADDON_NAMES), alias="ADDONSYNC_DEFAULT_ADDON_NAMES"
    )
    default_addon_ids: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ADDON_IDS), alias="ADDONSYNC_DEFAULT_ADDON_IDS"
    )

    # Sync behaviour
    sync_user_concurrency: int = Field(1, alias="ADDONSYNC_SYNC_USER_CONCURRENCY")

    # Scheduler
    scheduler_enabled: bool = Field(True, alias="ADDONSYNC_SCHEDULER_ENABLED")
    scheduler_tick_seconds: int = Field(60, alias="ADDONSYNC_SCHEDULER_TICK_SECONDS")
    scheduler_batch_limit: int = Field(10, alias="ADDONSYNC_SCHEDULER_BATCH_LIMIT")

    # Notifications
    webhook_timeout: float = Field(10.0, alias="ADDONSYNC_WEBHOOK_TIMEOUT")
    webhook_username: str = Field("Syncio", alias="ADDONSYNC_WEBHOOK_USERNAME")
    webhook_avatar_url: str | None = Field(None, alias="ADDONSYNC_WEBHOOK_AVATAR_URL")

    # Logging configuration
    log_level: str = Field("INFO", alias="ADDONSYNC_LOG_LEVEL")
    log_format: str = Field("text", alias="ADDONSYNC_LOG_FORMAT")  # text or json
    log_dir: str | None = Field(None, alias="ADDONSYNC_LOG_DIR")

    @field_validator("log_dir", mode="before")
    @classmethod
    def _resolve_log_dir(cls, v: str | None) -> str | None:
        if not v:
            return None
        p = Path(v)
        if p.is_absolute():
            return str(p)
        return str((Path.cwd() / p).resolve())

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError("Database URL must be PostgreSQL")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["text", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting."""
        valid_environments = ["development", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v.lower()

    @field_validator("platform_api_url")
    @classmethod
    def validate_platform_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Platform API URL must be http(s)")
        return v.rstrip("/")

    @field_validator("sync_user_concurrency", "scheduler_tick_seconds", "scheduler_batch_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("default_addon_names", "default_addon_ids", mode="before")
    @classmethod
    def validate_name_list(cls, v: str | list) -> list:
        """Parse comma-separated strings or lists into a trimmed list."""
        if isinstance(v, str):
            if not v.strip():
                return []
            return [item.strip() for item in v.split(",") if item.strip()]
        if isinstance(v, list):
            return [str(item).strip() for item in v if str(item).strip()]
        return []

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra environment variables instead of forbidding them
    )


def get_settings() -> Settings:
    """Build a fresh settings instance from the environment."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance - will be created when first accessed
settings = None


def get_settings_instance() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global settings  # noqa: PLW0603
    if settings is None:
        settings = get_settings()
    return settings
