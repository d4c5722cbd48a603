"""
Shared configuration management for the FIWARE Access Gateway.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Identity provider (Keyrock)
    keyrock_url: str = Field(default="http://localhost:3005")
    keyrock_app_id: str = Field(default="")
    keyrock_client_id: str = Field(default="")
    keyrock_client_secret: str = Field(default="")
    management_token_ttl_seconds: int = Field(default=3600)
    default_role: str = Field(default="user")

    # Context broker access (PEP Proxy in front of Orion)
    pep_proxy_url: str = Field(default="http://localhost:1027")
    fiware_service: str = Field(default="openiot")
    fiware_service_path: str = Field(default="/")

    # IoT Agent
    iot_agent_url: str = Field(default="http://iot-agent:4041")
    iot_agent_south_proxy_url: Optional[str] = Field(default=None)

    # Outbound calls
    upstream_timeout_seconds: float = Field(default=10.0)

    # Stateless bearer tokens issued to clients
    jwt_secret: str = Field(default="default-secret-change-me")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_in_seconds: int = Field(default=3600)

    # Activity log
    activity_log_capacity: int = Field(default=1000)
    activity_subscriber_queue_size: int = Field(default=100)
    sse_keepalive_seconds: float = Field(default=30.0)
    logs_required_role: str = Field(default="provider")


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
