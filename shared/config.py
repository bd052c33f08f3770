"""
Shared configuration management for the GraphQL cache gateway.
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MIN_CACHE_TTL = 8
CACHE_BACKENDS = {"memory", "redis"}


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GQLCACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # GraphQL backend
    backend_url: str = Field(default="http://localhost:8080/v1/graphql")
    backend_timeout_seconds: float = Field(default=10.0, gt=0)

    # Caching
    min_cache_ttl: int = Field(default=MIN_CACHE_TTL, ge=1)
    cache_ttl: int = Field(default=300, ge=1)
    cache_backend: str = Field(default="memory")
    cache_max_entries: int = Field(default=10000, ge=1)
    redis_url: str = Field(default="redis://localhost:6379/0")
    block_mutations: bool = Field(default=False)
    single_flight: bool = Field(default=True)

    # Authorization webhook
    allowed_ips: str = Field(default="")
    cluster_network: Optional[str] = Field(default=None)
    webhook_role: str = Field(default="user")

    # Backend authentication
    jwt_secret: Optional[str] = Field(default=None)

    def allowed_ip_list(self) -> List[str]:
        """Split the comma-separated allow-list into trimmed entries."""
        return [ip.strip() for ip in self.allowed_ips.split(",") if ip.strip()]

    @field_validator("cache_backend")
    @classmethod
    def _check_cache_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in CACHE_BACKENDS:
            raise ValueError(f"cache_backend must be one of {sorted(CACHE_BACKENDS)}")
        return value


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
