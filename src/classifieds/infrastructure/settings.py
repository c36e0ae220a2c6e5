"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Classifieds API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Remote object store (S3 compatible)
    s3_endpoint: str = "http://localhost:9000"
    s3_region: str = "us-east-1"
    s3_access_key: str = "minioadmin"
    s3_secret_key: SecretStr = Field(default=SecretStr("minioadmin"))
    s3_bucket: str = "classifieds-images"
    s3_prefix: str = "images"
    s3_use_ssl: bool = False
    s3_force_path_style: bool = True
    s3_public_base_url: str | None = None

    # Every remote call fails with RemoteStoreError past this bound
    remote_timeout_seconds: float = 30.0

    # Local storage
    scratch_dir: str = "/app/data/scratch"
    sqlite_db_path: str = "/app/data/classifieds.db"

    # Attachments
    max_upload_mb: float = 10.0
    user_photo_limit: int = 1
    post_image_limit: int = 3
    default_user_photo_url: str = "default.jpg"

    @computed_field
    @property
    def max_upload_bytes(self) -> int:
        """Per-file upload limit in bytes."""
        return int(self.max_upload_mb * 1024 * 1024)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
