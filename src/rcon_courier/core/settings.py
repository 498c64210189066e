"""Application settings and configuration.

This module defines all configuration options for the RCON Courier service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    RCON secrets are read here only as a raw JSON string; the engine sees them
    through a read-only credential store built at startup.
    """

    # Application metadata
    app_name: str = Field(default="RCON Courier", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./courier.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # RCON transport
    rcon_passwords: str = Field(default="{}", alias="RCON_PASSWORDS")
    rcon_timeout_seconds: float = Field(default=5.0, alias="RCON_TIMEOUT_SECONDS")
    rcon_max_packet_size: int = Field(default=1024 * 1024, alias="RCON_MAX_PACKET_SIZE")

    # Delivery engine
    delivery_deadline_seconds: float = Field(default=120.0, alias="DELIVERY_DEADLINE_SECONDS")
    delivery_max_attempts: int = Field(default=5, alias="DELIVERY_MAX_ATTEMPTS")
    delivery_retry_backoff_seconds: int = Field(
        default=60,
        alias="DELIVERY_RETRY_BACKOFF_SECONDS",
    )

    # Game-server presence listener
    listener_secret_token: str | None = Field(default=None, alias="LISTENER_SECRET_TOKEN")

    # Background queue sweeper
    queue_sweep_enabled: bool = Field(default=False, alias="QUEUE_SWEEP_ENABLED")
    queue_sweep_interval_seconds: float = Field(
        default=30.0,
        alias="QUEUE_SWEEP_INTERVAL_SECONDS",
    )
    queue_sweep_batch_size: int = Field(default=20, alias="QUEUE_SWEEP_BATCH_SIZE")

    # CORS configuration for the storefront and admin frontends
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

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
