"""
Configuration and settings for the Qrono backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    cors_origins: list[str] = Field(default=["*"])
    log_level: str = Field(default="INFO")

    # Database (any SQLAlchemy URL; Postgres in production)
    database_url: Optional[str] = Field(default=None)

    # Auth
    jwt_secret: str = Field(default="dev-insecure-secret")
    jwt_algorithm: str = Field(default="HS256")
    token_ttl_seconds: int = Field(default=5 * 60 * 60)
    auth_header: str = Field(default="x-auth-token")

    # Blob storage: S3-compatible bucket, else local directory, else memory
    s3_bucket: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_endpoint: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    upload_dir: Optional[str] = Field(default=None)
    uploads_url_path: str = Field(default="/uploads")
    storage_prefix: str = Field(default="qrono")

    # Upload policy
    max_photos_per_request: int = Field(default=10)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)
    allowed_image_extensions: list[str] = Field(
        default=["jpeg", "jpg", "png", "gif"]
    )

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Blob deletion queue (Redis) and sweeper
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="qrono:blob-deletions")
    blob_delete_max_attempts: int = Field(default=8)
    blob_delete_retry_seconds: float = Field(default=30.0)
    sweeper_poll_seconds: float = Field(default=5.0)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
