"""
Shared configuration management for the contract read proxy.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PROXY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    log_format: str = Field(default="json")

    # Chain endpoint
    rpc_url: str = Field(default="http://localhost:8545")
    chain_id: Optional[int] = Field(default=None)
    rpc_timeout_seconds: float = Field(default=30.0)

    # Contract
    contract_address: str = Field(default="")
    contract_abi_path: str = Field(default="abi/Book.json")

    # Cache store
    store_backend: str = Field(default="postgres")
    postgres_dsn: str = Field(default="postgres://localhost:5432/proxy")

    # Cache behaviour
    block_poll_interval_seconds: float = Field(default=10.0)
    refresh_after_miss: bool = Field(default=False)

    # HTTP
    cors_origins: List[str] = Field(default_factory=lambda: ["https://api.lendbook.org"])


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = 3000
    host: str = "0.0.0.0"


def get_config(service_name: str, port: Optional[int] = None, **overrides) -> ServiceConfig:
    """Get configuration for a specific service.

    ``port`` is only a fallback; ``PROXY_PORT`` in the environment wins.
    """
    config = ServiceConfig(service_name=service_name, **overrides)
    if port is not None and "port" not in config.model_fields_set:
        config.port = port
    return config
