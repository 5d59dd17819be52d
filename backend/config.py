"""
LicenseGuard Configuration

Environment-based settings for directory sync and license alerting.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "LicenseGuard"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Database, either DATABASE_URL or individual fields
    database_url_external: str = Field(default="", alias="DATABASE_URL")
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "licenseguard"
    postgres_password: str = "licenseguard"
    postgres_db: str = "licenseguard"
    db_pool_size: int = 10  # per worker process
    db_max_overflow: int = 10

    @computed_field
    @property
    def database_url(self) -> str:
        """Async PostgreSQL connection URL."""
        if self.database_url_external:
            url = self.database_url_external
            if url.startswith("postgres://"):
                url = "postgresql+asyncpg://" + url[len("postgres://"):]
            elif url.startswith("postgresql://"):
                url = "postgresql+asyncpg://" + url[len("postgresql://"):]
            return url
        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=self.postgres_user,
                password=self.postgres_password,
                host=self.postgres_host,
                port=self.postgres_port,
                path=self.postgres_db,
            )
        )

    @computed_field
    @property
    def database_url_sync(self) -> str:
        """Sync PostgreSQL URL for Alembic migrations."""
        if self.database_url_external:
            url = self.database_url_external
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://"):]
            elif url.startswith("postgresql+asyncpg://"):
                url = "postgresql://" + url[len("postgresql+asyncpg://"):]
            return url
        return str(
            PostgresDsn.build(
                scheme="postgresql",
                username=self.postgres_user,
                password=self.postgres_password,
                host=self.postgres_host,
                port=self.postgres_port,
                path=self.postgres_db,
            )
        )

    # Redis, either REDIS_URL or individual fields
    redis_url_external: str = Field(default="", alias="REDIS_URL")
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0

    @computed_field
    @property
    def redis_url(self) -> str:
        """Redis connection URL."""
        if self.redis_url_external:
            return self.redis_url_external
        return str(
            RedisDsn.build(
                scheme="redis",
                host=self.redis_host,
                port=self.redis_port,
                path=str(self.redis_db),
            )
        )

    # Security
    encryption_key: str = Field(
        default="CHANGE-ME-IN-PRODUCTION-use-fernet-generate-key",
        description="Fernet key for encrypting OAuth tokens",
    )

    # Google Workspace OAuth client
    google_oauth_client_id: str = Field(default="", description="Google OAuth client ID")
    google_oauth_client_secret: str = Field(default="", description="Google OAuth client secret")
    google_customer_id: str = "my_customer"

    # Directory API client
    directory_page_size: int = 500
    directory_max_page_size: int = 500
    directory_max_attempts: int = 5
    directory_retry_base_delay: float = 1.0  # seconds
    directory_retry_max_jitter: float = 1.0  # seconds
    directory_request_timeout: float = 30.0
    token_refresh_buffer_minutes: int = 5

    # Directory sync
    sync_batch_size: int = 100
    sync_worker_pool_size: int = 4
    sync_timeout_seconds: int = 900  # per integration
    sync_error_report_limit: int = 10
    sync_inline_max_users: int = 1000  # auto mode threshold
    sync_stale_after_hours: int = 2

    # Alert generation
    renewal_alert_days: int = 30
    trial_alert_days: int = 7
    low_utilization_threshold_pct: int = 50
    seat_shortage_threshold_pct: int = 90
    unused_license_days: int = 30
    cost_anomaly_threshold_pct: int = 20
    alert_retention_days: int = 90
    default_currency: str = "USD"

    # Error Monitoring
    sentry_dsn: str = Field(
        default="",
        description="Sentry DSN for error monitoring (leave empty to disable)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
