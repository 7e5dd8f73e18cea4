"""
Shared configuration management for the Rights service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias="ACCESS_ENV")
    log_level: str = Field(default="info", validation_alias="ACCESS_LOG_LEVEL")

    # External services
    postgres_dsn: str = Field(default="postgres://localhost:5432/rights", validation_alias="ACCESS_POSTGRES_DSN")

    # Observability
    enable_tracing: bool = Field(default=False, validation_alias="ACCESS_ENABLE_TRACING")
    otel_exporter: Optional[str] = Field(default=None, validation_alias="ACCESS_OTEL_EXPORTER")
    enable_console_tracing: bool = Field(default=False, validation_alias="ACCESS_ENABLE_CONSOLE_TRACING")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
