"""Configuration management for the dispatch engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote delivery service
    delivery_api_url: str = Field(
        default="http://localhost:5000/api",
        description="Base URL of the delivery/order backend",
    )
    delivery_api_token: str | None = Field(
        default=None, description="Bearer token sent with every request"
    )
    request_timeout: float = Field(default=15.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Attempts for idempotent reads")
    retry_delay: float = Field(default=0.5, description="Initial retry delay in seconds")

    # Acting user
    actor_id: str = Field(default="1", description="Identity the console acts as")
    actor_name: str = Field(default="Dispatcher")
    actor_role: Literal["field_agent", "dispatcher", "admin"] = Field(default="dispatcher")

    # Polling
    min_fetch_interval_seconds: float = Field(
        default=10.0, ge=10.0, description="Hard floor between two fetches"
    )
    base_poll_interval_seconds: float = Field(
        default=30.0, description="Retry interval after a successful fetch"
    )
    max_poll_interval_seconds: float = Field(
        default=300.0, description="Ceiling for the rate-limit backoff"
    )
    min_timer_period_seconds: float = Field(
        default=60.0, description="Background timer never fires faster than this"
    )
    refresh_order_statuses: list[str] = Field(
        default_factory=lambda: ["ready", "preparing", "confirmed"],
        description="Backend order statuses pulled by a dispatcher refresh",
    )
    delivery_timezone: str = Field(
        default="UTC", description="Timezone delivery dates and time slots are written in"
    )

    # Notifications
    notification_backend: Literal["memory", "redis"] = Field(default="memory")
    notification_capacity: int = Field(default=50, ge=1)
    notification_key: str = Field(default="dispatch:notifications")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("max_poll_interval_seconds")
    @classmethod
    def validate_poll_ceiling(cls, v: float, info: ValidationInfo) -> float:
        base = info.data.get("base_poll_interval_seconds", 30.0)
        if v < base:
            raise ValueError("max_poll_interval_seconds must be >= base_poll_interval_seconds")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
