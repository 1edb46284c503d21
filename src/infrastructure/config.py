"""Environment configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import Field, PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: PostgresDsn = Field(
        ...,
        alias="DATABASE_URL",
        description="PostgreSQL connection string for alerts and drawings",
    )
    database_pool_size: int = Field(default=5, alias="DATABASE_POOL_SIZE")

    # Evaluation loop
    evaluation_interval_seconds: float = Field(
        default=1.0,
        alias="EVALUATION_INTERVAL_SECONDS",
        description="Tick period of the alert evaluation loop",
    )
    tick_buffer_size: int = Field(default=10_000, alias="TICK_BUFFER_SIZE")
    price_history_limit: int = Field(default=180, alias="PRICE_HISTORY_LIMIT")
    alert_history_limit: int = Field(default=50, alias="ALERT_HISTORY_LIMIT")

    # Market data (Binance REST polling)
    binance_rest_url: str = Field(
        default="https://api.binance.com", alias="BINANCE_REST_URL"
    )
    binance_futures_url: str = Field(
        default="https://fapi.binance.com", alias="BINANCE_FUTURES_URL"
    )
    poll_interval_seconds: float = Field(default=2.0, alias="POLL_INTERVAL_SECONDS")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    # Notifications
    discord_webhook_url: str = Field(default="", alias="DISCORD_WEBHOOK_URL")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
