"""
Exception hierarchy for the settlement client.

Every error carries a stable ``category`` string. Execution sessions put it in
the terminal error event so a consumer can tell "you rejected the signature"
from "the network is down" from "this payment was already settled" without
parsing messages.
"""

from typing import Any, Optional


class X402Error(Exception):
    """Base class for all SDK errors."""

    category = "internal"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"category": self.category, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


# Validation (fails before any network interaction)


class ValidationError(X402Error):
    """Malformed input: bad address, bad amount, missing field."""

    category = "validation"


class HookValidationError(ValidationError):
    """Hook payload cannot be built (bad splits, missing supporting contract)."""


class ConfigurationError(ValidationError):
    """Required configuration (key, registry URL, contract) is missing."""

    category = "configuration"


# Discovery


class DiscoveryError(X402Error):
    """Service registry unreachable or returned an unusable response."""

    category = "discovery"


class ServiceNotFoundError(DiscoveryError):
    """The requested service id is not in the registry."""

    def __init__(self, service_id: str, available: Optional[list[str]] = None):
        super().__init__(
            f"Service not found: {service_id}",
            details={"availableServices": available or []},
        )
        self.service_id = service_id


# Signing


class ChainMismatchError(X402Error):
    """Connected chain differs from the chain the service is deployed on."""

    category = "chain_mismatch"

    def __init__(self, connected_chain_id: int, expected_chain_id: int):
        super().__init__(
            "Please switch to the correct network. "
            f"Current chainId: {connected_chain_id}, expected: {expected_chain_id}",
            details={"connectedChainId": connected_chain_id, "expectedChainId": expected_chain_id},
        )
        self.connected_chain_id = connected_chain_id
        self.expected_chain_id = expected_chain_id


class UserRejectedError(X402Error):
    """The wallet holder declined the request. Not a system failure."""

    category = "user_rejected"

    def __init__(self, message: str = "Transaction cancelled by user"):
        super().__init__(message)


class SigningError(X402Error):
    """Signature could not be produced for a reason other than rejection."""

    category = "signing"


# On-chain outcomes


class SettlementRevertedError(X402Error):
    """The router (or token) reverted the settlement."""

    category = "reverted"

    def __init__(
        self,
        message: str,
        *,
        transaction_hash: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.transaction_hash = transaction_hash


class CommitmentAlreadySettledError(SettlementRevertedError):
    """The router refused a commitment it has already settled."""

    category = "already_settled"


class InsufficientFundsError(X402Error):
    """Payer cannot cover the payment (token balance or gas)."""

    category = "insufficient_funds"


# Transport


class NetworkError(X402Error):
    """RPC unreachable, request failed, or confirmation wait timed out."""

    category = "network"


class FacilitatorError(X402Error):
    """Remote facilitator rejected or failed a verify/settle request."""

    category = "facilitator"
