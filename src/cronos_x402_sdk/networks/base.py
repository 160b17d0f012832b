"""
Network configuration base types and registry.

Every supported chain is described by a NetworkConfig and registered by name
so that service descriptors, facilitator flows and explorer links can resolve
it. Amount helpers live here as well since every network config carries the
stablecoin decimals they depend on.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from cronos_x402_sdk.exceptions import ValidationError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass
class NetworkConfig:
    """Configuration for a single EVM network."""

    name: str
    display_name: str
    chain_id: int
    rpc_url: str
    usdc_address: str
    usdc_decimals: int
    usdc_domain_name: str
    usdc_domain_version: str
    explorer_url: str
    facilitator_network: str = ""
    enabled: bool = True
    extra_config: Dict[str, Any] = field(default_factory=dict)

    def tx_url(self, tx_hash: str) -> str:
        """Block explorer URL for a transaction hash."""
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"


_NETWORKS: Dict[str, NetworkConfig] = {}


def register_network(config: NetworkConfig) -> None:
    """Register (or replace) a network configuration."""
    _NETWORKS[config.name.lower()] = config


def get_network(name: str) -> Optional[NetworkConfig]:
    """Look up a network by name. Returns None if unknown."""
    return _NETWORKS.get(name.lower())


def get_network_by_chain_id(chain_id: int) -> Optional[NetworkConfig]:
    """Look up a network by EVM chain ID. Returns None if unknown."""
    for config in _NETWORKS.values():
        if config.chain_id == chain_id:
            return config
    return None


def list_networks(enabled_only: bool = True) -> list[NetworkConfig]:
    """Return registered networks, optionally only the enabled ones."""
    return [n for n in _NETWORKS.values() if n.enabled or not enabled_only]


def get_explorer_tx_url(network: str, tx_hash: str) -> str:
    """
    Build the block explorer URL for a transaction.

    Args:
        network: Network name (e.g. "cronos-testnet")
        tx_hash: Transaction hash

    Raises:
        ValidationError: If the network is not registered
    """
    config = get_network(network)
    if config is None:
        raise ValidationError(f"Unknown network: {network}")
    return config.tx_url(tx_hash)


# =============================================================================
# Address and amount helpers
# =============================================================================


def is_valid_address(address: Any) -> bool:
    """Check that a value is a 0x-prefixed, 20-byte hex address."""
    return isinstance(address, str) and bool(_ADDRESS_RE.match(address))


def is_zero_address(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


def to_base_units(amount: str, decimals: int = 6, *, allow_zero: bool = False) -> int:
    """
    Convert a human-readable token amount to atomic units.

    Args:
        amount: Decimal string, e.g. "0.1"
        decimals: Token decimals (6 for USDC)
        allow_zero: Accept "0" (used for optional fees)

    Returns:
        Integer amount in atomic units

    Raises:
        ValidationError: If the amount is malformed, negative, zero (unless
            allowed) or has more precision than the token supports
    """
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}") from None

    if not value.is_finite() or value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"Invalid amount: {amount!r}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {amount!r} has more than {decimals} decimal places"
        )
    return int(scaled)


def from_base_units(value: int, decimals: int = 6) -> str:
    """Convert atomic units back to a fixed-point decimal string."""
    return f"{Decimal(int(value)).scaleb(-decimals):.{decimals}f}"
