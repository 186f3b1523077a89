"""
Shared configuration management for the licensing backend.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_METER_EVENTS_URL = "https://api.stripe.com/v1/billing/meter_events"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="LICENSING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    document_prefix: str = Field(default="licensing:")


class LicensingConfig(BaseConfig):
    """Licensing service configuration."""

    service_name: str = "licensing"
    host: str = "0.0.0.0"
    port: int = 8020

    # Operating mode
    private_backend: bool = Field(default=False, description="Self-hosted mode, billing core disabled")
    minimum_client_version: str = Field(default="3.1.0")

    # Timing
    cache_ttl_seconds: float = Field(default=15 * 60, ge=0)
    grace_period_days: float = Field(default=15, ge=0)

    # Optimistic writes
    write_max_attempts: Optional[int] = Field(default=None, ge=1)
    write_base_delay: float = Field(default=0.01, ge=0)
    write_max_delay: float = Field(default=0.5, ge=0)

    # Metering
    stripe_secret_key: Optional[str] = Field(default=None)
    meter_events_url: str = Field(default=DEFAULT_METER_EVENTS_URL)
    meter_timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def cache_ttl_ms(self) -> int:
        return int(self.cache_ttl_seconds * 1000)

    @property
    def grace_period_ms(self) -> int:
        return int(self.grace_period_days * 24 * 60 * 60 * 1000)


def get_config(**overrides) -> LicensingConfig:
    """Get licensing configuration, environment first, then explicit overrides."""
    return LicensingConfig(**overrides)
