"""
Settlement parameter assembly and commitment calculation.

The commitment is the router's own hash of the settlement parameters. It is
the EIP-3009 nonce the payer signs and the key the router uses to refuse a
second settlement, so it is always obtained from the router's
calculateCommitment() and never re-derived locally.
"""

import logging
import secrets
import time
from typing import Optional, Protocol

from web3 import Web3

from cronos_x402_sdk.exceptions import ConfigurationError
from cronos_x402_sdk.models import ServiceDescriptor, SettlementParameters
from cronos_x402_sdk.networks.base import (
    is_valid_address,
    is_zero_address,
    to_base_units,
)

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_SECONDS = 3600
USDC_DECIMALS = 6


class CommitmentSource(Protocol):
    async def calculate_commitment(self, router: str, params: SettlementParameters) -> bytes:
        ...


def generate_salt() -> bytes:
    """Fresh 32-byte salt. One per attempt, never reused."""
    return secrets.token_bytes(32)


def _require_address(value: Optional[str], field_name: str, *, allow_zero: bool = False) -> str:
    if not is_valid_address(value) or (not allow_zero and is_zero_address(value)):
        raise ConfigurationError(f"Service has invalid or missing {field_name}: {value!r}")
    return Web3.to_checksum_address(value)


class CommitmentCalculator:
    """
    Builds SettlementParameters for a service and asks the router to hash them.

    Args:
        chain: Anything exposing calculate_commitment() (normally ChainClient)
        validity_seconds: Length of the authorization window
        decimals: Stablecoin decimals
    """

    def __init__(
        self,
        chain: CommitmentSource,
        *,
        validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
        decimals: int = USDC_DECIMALS,
    ):
        self.chain = chain
        self.validity_seconds = validity_seconds
        self.decimals = decimals

    def build_parameters(
        self,
        service: ServiceDescriptor,
        payer: str,
        hook_data: bytes,
        *,
        salt: Optional[bytes] = None,
        now: Optional[int] = None,
    ) -> SettlementParameters:
        """
        Assemble the settlement tuple from a service's defaults.

        The window is valid immediately (validAfter = 0) and expires
        ``validity_seconds`` from now.

        Raises:
            ConfigurationError: Missing or malformed addresses on the service
            ValidationError: Malformed payment amount or fee
        """
        if salt is not None and len(salt) != 32:
            raise ConfigurationError("salt must be exactly 32 bytes")
        now = int(time.time()) if now is None else now

        return SettlementParameters(
            token=_require_address(service.stablecoin_address, "usdcAddress"),
            from_address=_require_address(payer, "payer address"),
            value=to_base_units(service.defaults.payment_amount, self.decimals),
            valid_after=0,
            valid_before=now + self.validity_seconds,
            salt=salt if salt is not None else generate_salt(),
            pay_to=_require_address(service.defaults.pay_to, "defaults.payTo", allow_zero=True),
            facilitator_fee=to_base_units(
                service.defaults.facilitator_fee, self.decimals, allow_zero=True
            ),
            hook=_require_address(service.hook_address, "hookAddress"),
            hook_data=hook_data,
        )

    async def calculate(self, router: str, params: SettlementParameters) -> bytes:
        """Return the router's commitment for ``params``. Treat it as opaque."""
        commitment = await self.chain.calculate_commitment(router, params)
        logger.debug("Commitment for salt 0x%s: 0x%s", params.salt.hex(), commitment.hex())
        return commitment
