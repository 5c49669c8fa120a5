"""
Configuration and settings for the quiz data-access layer.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the stores and the API."""

    model_config = SettingsConfigDict(
        env_prefix="QUIZSTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected, any SQLAlchemy URL accepted)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible blob storage
    storage_endpoint: Optional[str] = Field(default=None)
    storage_region: Optional[str] = Field(default=None)
    storage_bucket: str = Field(default="quiz-images")
    storage_public_base_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Change notifications
    realtime_transport: Literal["memory", "redis", "polling"] = Field(
        default="memory"
    )
    redis_url: Optional[str] = Field(default=None)
    redis_channel_prefix: str = Field(default="quiz:changes")
    realtime_poll_interval: float = Field(default=2.0)

    # User-facing error messages ("en" or "ja")
    message_locale: str = Field(default="en")

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
