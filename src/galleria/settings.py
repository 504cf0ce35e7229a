"""Application settings and environment configuration."""

from typing import Optional
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[2]
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_name: str = "Galleria"
    debug: bool = False
    environment: str = "dev"  # 'dev' or 'prod'
    log_level: str = "INFO"
    app_url: str = "http://localhost:8080"

    # Database
    database_url: str = "postgresql://localhost/galleria"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800
    db_pool_pre_ping: bool = True
    db_connect_timeout: int = 10

    # Owner identity. Matched case-insensitively against the signed-in
    # identity's email or username; bypasses the role system entirely.
    owner_email: Optional[str] = None
    owner_username: Optional[str] = None

    # Bearer tokens issued by the sign-in provider
    auth_jwt_secret: Optional[str] = None
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: Optional[str] = None

    # Private bucket (Cloudflare R2)
    r2_endpoint: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = ""
    r2_region: str = "auto"
    upload_url_ttl_seconds: int = 600
    download_url_ttl_seconds: int = 3600

    # Public bucket (Oracle Object Storage, S3-compatible API)
    oracle_endpoint: str = ""
    oracle_region: str = "us-ashburn-1"
    oracle_access_key_id: str = ""
    oracle_secret_access_key: str = ""
    oracle_bucket_name: str = ""

    # Thumbnail delivery
    thumbnail_default_width: int = 400
    thumbnail_max_width: int = 800
    thumbnail_quality: int = 75
    full_view_max_width: int = 10000
    full_view_quality: int = 95
    thumbnail_cache_max_age: int = 604800

    # Read-through cache
    album_view_ttl_seconds: int = 60
    provider_lookup_ttl_seconds: int = 300
    cache_max_entries: int = 4096

    # Processing
    max_workers: int = 8

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_workers: int = 1

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "dev"

    @property
    def owner_configured(self) -> bool:
        return bool((self.owner_email or "").strip() or (self.owner_username or "").strip())


settings = Settings()
