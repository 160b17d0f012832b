"""
Cronos network configurations.

Cronos EVM supports EIP-3009 TransferWithAuthorization on its bridged USDC
(USDC.e) and on the devUSDC.e test token, which is what the settlement router
pulls funds through.

Important EIP-712 domain considerations:
- The domain name/version below are the declared defaults only. Signers always
  read the live name()/version() from the token contract before signing,
  because a mismatched domain yields a valid-looking but unusable signature.
- USDC.e uses 6 decimals on both networks.
"""

from cronos_x402_sdk.networks.base import (
    NetworkConfig,
    register_network,
)

# =============================================================================
# Cronos Networks Configuration
# =============================================================================

# Cronos EVM Mainnet
CRONOS = NetworkConfig(
    name="cronos",
    display_name="Cronos",
    chain_id=25,
    rpc_url="https://evm.cronos.org",
    usdc_address="0xc21223249CA28397B4B6541dfFaEcC539BfF0c59",
    usdc_decimals=6,
    usdc_domain_name="USD Coin",
    usdc_domain_version="2",
    explorer_url="https://explorer.cronos.org",
    facilitator_network="cronos",
    enabled=True,
    extra_config={"symbol": "CRO"},
)

# Cronos EVM Testnet
# NOTE: the stablecoin here is devUSDC.e, not Circle USDC
CRONOS_TESTNET = NetworkConfig(
    name="cronos-testnet",
    display_name="Cronos Testnet",
    chain_id=338,
    rpc_url="https://evm-t3.cronos.org",
    usdc_address="0xc01efAaF7C5C61bEbFAeb358E1161b537b8bC0e0",
    usdc_decimals=6,
    usdc_domain_name="USD Coin",
    usdc_domain_version="2",
    explorer_url="https://explorer.cronos.org/testnet",
    facilitator_network="cronos-testnet",
    enabled=True,
    extra_config={"symbol": "tCRO"},
)

# =============================================================================
# Register all Cronos networks
# =============================================================================

_CRONOS_NETWORKS = [
    CRONOS,
    CRONOS_TESTNET,
]

for network in _CRONOS_NETWORKS:
    register_network(network)

DEFAULT_NETWORK = CRONOS_TESTNET.name
