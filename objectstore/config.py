"""Configuration for the object store using Pydantic Settings."""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Backing store configuration."""

    model_config = SettingsConfigDict(env_prefix="OBJECTSTORE_DB_")

    url: str = "sqlite:///./objectstore.db"
    echo: bool = False
    pool_pre_ping: bool = True
    sqlite_busy_timeout: float = Field(default=30.0, gt=0, description="Seconds a SQLite writer waits for the lock")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(env_prefix="OBJECTSTORE_LOG_")

    level: str = "info"
    format: str = Field(default="console", pattern="^(console|json)$")


class Settings(BaseSettings):
    """Root configuration for the object store."""

    model_config = SettingsConfigDict(
        env_prefix="OBJECTSTORE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_object_size: int = Field(default=5 * 1024 * 1024, gt=0, description="Largest accepted upload in bytes")
    put_max_attempts: int = Field(default=5, ge=1, description="Attempts before a conflicting put gives up")
    list_page_size: int = Field(default=100, ge=1)
    default_content_type: str = "application/octet-stream"
    host: str = "0.0.0.0"
    port: int = 8000

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
