"""
SDK configuration.

Settings can be passed explicitly or loaded from the environment:

    RESOURCE_SERVICE_URL          service registry base URL
    CRONOS_NETWORK                "cronos-testnet" (default) or "cronos"
    CRONOS_RPC_URL                JSON-RPC endpoint (defaults to the network's)
    CRONOS_DEVELOPER_PRIVATE_KEY  held key for server-initiated executions
    CRONOS_FACILITATOR_URL        remote facilitator base URL
    X402_VALIDITY_SECONDS         authorization window (default 3600)
    X402_CONFIRMATION_TIMEOUT     receipt wait in seconds (default 120)
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, SecretStr

from cronos_x402_sdk.exceptions import ConfigurationError
from cronos_x402_sdk.networks import DEFAULT_NETWORK, NetworkConfig, get_network

DEFAULT_FACILITATOR_URL = "https://facilitator.cronoslabs.org/v2/x402"


class X402Settings(BaseModel):
    """Runtime configuration for executions and the facilitator path."""

    resource_service_url: Optional[str] = None
    network: str = DEFAULT_NETWORK
    rpc_url: Optional[str] = None
    developer_private_key: Optional[SecretStr] = None
    facilitator_url: str = DEFAULT_FACILITATOR_URL
    authorization_validity_seconds: int = Field(3600, gt=0)
    confirmation_timeout: float = Field(120.0, gt=0)
    request_timeout: float = Field(30.0, gt=0)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "X402Settings":
        env = os.environ if environ is None else environ

        def value(name: str) -> Optional[str]:
            v = env.get(name)
            return v.strip() if v and v.strip() else None

        data: dict = {
            "resource_service_url": value("RESOURCE_SERVICE_URL"),
            "rpc_url": value("CRONOS_RPC_URL"),
            "developer_private_key": value("CRONOS_DEVELOPER_PRIVATE_KEY"),
        }
        optional = {
            "network": value("CRONOS_NETWORK"),
            "facilitator_url": value("CRONOS_FACILITATOR_URL"),
            "authorization_validity_seconds": value("X402_VALIDITY_SECONDS"),
            "confirmation_timeout": value("X402_CONFIRMATION_TIMEOUT"),
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return cls(**data)

    def network_config(self) -> NetworkConfig:
        config = get_network(self.network)
        if config is None:
            raise ConfigurationError(f"Unknown network: {self.network}")
        return config

    def resolved_rpc_url(self) -> str:
        return self.rpc_url or self.network_config().rpc_url

    def require_registry_url(self) -> str:
        if not self.resource_service_url:
            raise ConfigurationError("Server URL not configured (RESOURCE_SERVICE_URL)")
        return self.resource_service_url

    def require_private_key(self) -> str:
        if self.developer_private_key is None:
            raise ConfigurationError(
                "Developer wallet not configured (CRONOS_DEVELOPER_PRIVATE_KEY)"
            )
        return self.developer_private_key.get_secret_value()
