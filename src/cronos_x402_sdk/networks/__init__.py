"""Supported networks. Importing this package registers the built-in configs."""

from cronos_x402_sdk.networks.base import (
    ZERO_ADDRESS,
    NetworkConfig,
    from_base_units,
    get_explorer_tx_url,
    get_network,
    get_network_by_chain_id,
    is_valid_address,
    is_zero_address,
    list_networks,
    register_network,
    to_base_units,
)
from cronos_x402_sdk.networks.cronos import CRONOS, CRONOS_TESTNET, DEFAULT_NETWORK

__all__ = [
    "CRONOS",
    "CRONOS_TESTNET",
    "DEFAULT_NETWORK",
    "ZERO_ADDRESS",
    "NetworkConfig",
    "from_base_units",
    "get_explorer_tx_url",
    "get_network",
    "get_network_by_chain_id",
    "is_valid_address",
    "is_zero_address",
    "list_networks",
    "register_network",
    "to_base_units",
]
