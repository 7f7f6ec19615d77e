"""
Shared configuration management for the retailer access layer.
"""

from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="RETAILER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Partner API
    api_base_url: str = Field(default="https://api.bol.com")
    token_url: str = Field(default="https://login.bol.com/token")
    media_type: str = Field(default="application/vnd.retailer.v10+json")

    # Client credentials; the unprefixed names are what older deployments export
    client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("client_id", "RETAILER_CLIENT_ID", "API_KEY"),
    )
    client_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("client_secret", "RETAILER_CLIENT_SECRET", "API_SECRET"),
    )

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=10.0)
    token_retry_delay_seconds: float = Field(default=0.5)

    # Response cache
    cache_file: str = Field(default=".cache/api-cache.json")
    enable_persistent_cache: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
