"""Application settings and configuration.

This module defines all configuration options for the Sphere delivery service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Sphere Delivery", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./sphere_delivery.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # ActivityPub identity
    activitypub_key_size: int = Field(default=2048, alias="ACTIVITYPUB_KEY_SIZE")

    # Delivery worker
    delivery_worker_enabled: bool = Field(default=True, alias="DELIVERY_WORKER_ENABLED")
    delivery_max_attempts: int = Field(default=10, alias="DELIVERY_MAX_ATTEMPTS")
    delivery_base_delay_seconds: float = Field(default=30.0, alias="DELIVERY_BASE_DELAY_SECONDS")
    delivery_cap_delay_seconds: float = Field(
        default=6 * 60 * 60,
        alias="DELIVERY_CAP_DELAY_SECONDS",
    )
    delivery_jitter_fraction: float = Field(default=0.2, alias="DELIVERY_JITTER_FRACTION")
    delivery_batch_size: int = Field(default=100, alias="DELIVERY_BATCH_SIZE")
    delivery_claim_lease_timeout_seconds: float = Field(
        default=300.0,
        alias="DELIVERY_CLAIM_LEASE_TIMEOUT_SECONDS",
    )
    delivery_request_timeout_seconds: float = Field(
        default=10.0,
        alias="DELIVERY_REQUEST_TIMEOUT_SECONDS",
    )
    delivery_poll_interval_seconds: float = Field(
        default=5.0,
        alias="DELIVERY_POLL_INTERVAL_SECONDS",
    )
    delivery_recovery_interval_seconds: float = Field(
        default=60.0,
        alias="DELIVERY_RECOVERY_INTERVAL_SECONDS",
    )
    delivery_worker_count: int = Field(default=4, alias="DELIVERY_WORKER_COUNT")
    delivery_store_write_attempts: int = Field(default=5, alias="DELIVERY_STORE_WRITE_ATTEMPTS")
    delivery_store_write_backoff_seconds: float = Field(
        default=0.5,
        alias="DELIVERY_STORE_WRITE_BACKOFF_SECONDS",
    )
    delivery_user_agent: str = Field(
        default="SphereDelivery/0.1 (+https://localhost)",
        alias="DELIVERY_USER_AGENT",
    )

    # CORS configuration for the reporting surface
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
