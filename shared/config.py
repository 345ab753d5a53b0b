"""
Shared configuration management for the Access Control Core.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/access")

    # Audit trail: "memory" keeps records in-process, "postgres" appends to postgres_dsn
    audit_backend: str = Field(default="memory")

    # Entitlement decision cache
    enable_entitlement_cache: bool = Field(default=False)
    entitlement_cache_ttl_seconds: int = Field(default=60)

    # Client-facing denial payloads
    upgrade_url_template: str = Field(default="/billing/upgrade?tier={tier}&module={module_id}")
    addon_url_template: str = Field(default="/billing/addons/{module_id}")
    feature_upgrade_url_template: str = Field(default="/billing/upgrade?tier={tier}&feature={feature}")
    default_coming_soon_message: str = Field(default="Coming soon in your country")

    # Optional JSON file overriding the seeded module/rollout/pricing tables
    seed_file: Optional[str] = Field(default=None)


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
