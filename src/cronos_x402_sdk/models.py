"""
Data models for the settlement client.

Registry and wire records (service descriptors, progress events, results) are
pydantic models with camelCase aliases, matching the JSON the resource service
and UI layers exchange. On-chain tuples (settlement parameters, authorizations,
receipts) are frozen dataclasses: they are built once and threaded through the
pipeline unchanged.
"""

import json
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from cronos_x402_sdk.networks.base import ZERO_ADDRESS


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


# =============================================================================
# Service descriptors
# =============================================================================


class HookType(str, Enum):
    """Side effect executed by the hook contract alongside the payment."""

    NFT_MINT = "nft-mint"
    REWARD_POINTS = "reward-points"
    TRANSFER_SPLIT = "transfer-split"


class ServiceDefaults(BaseModel):
    """Default payment terms published with a service."""

    payment_amount: str = Field("0.1", alias="paymentAmount")
    facilitator_fee: str = Field("0", alias="facilitatorFee")
    pay_to: str = Field(ZERO_ADDRESS, alias="payTo")

    class Config:
        populate_by_name = True
        frozen = True


class ServiceDescriptor(BaseModel):
    """A payable service as published by the resource service registry."""

    id: str
    title: str
    description: Optional[str] = None
    hook_type: HookType = Field(..., alias="hookType")
    hook_address: str = Field(..., alias="hookAddress")
    network: str
    chain_id: int = Field(..., alias="chainId")
    settlement_router_address: str = Field(..., alias="settlementRouter")
    stablecoin_address: str = Field(..., alias="usdcAddress")
    supporting_contracts: dict[str, str] = Field(
        default_factory=dict, alias="supportingContracts"
    )
    defaults: ServiceDefaults = Field(default_factory=ServiceDefaults)

    class Config:
        populate_by_name = True
        frozen = True

    def summary(self) -> dict[str, str]:
        """Short form used in progress events."""
        return {"id": self.id, "title": self.title, "hookType": self.hook_type.value}


class SplitRecipient(BaseModel):
    """One recipient of a transfer-split payment, with its share in bips."""

    recipient: str
    bips: int

    class Config:
        frozen = True

    @property
    def percentage(self) -> str:
        """Share as a percentage string, e.g. 8000 bips -> "80%"."""
        pct = (Decimal(self.bips) / 100).normalize()
        return f"{pct:f}%"


# =============================================================================
# Settlement tuples
# =============================================================================


@dataclass(frozen=True)
class SettlementParameters:
    """
    Canonical settlement tuple.

    This is both what the router hashes into the commitment and what
    settleAndExecute executes, so it must not change after the commitment is
    derived. ``salt`` and ``hook_data`` are raw bytes.
    """

    token: str
    from_address: str
    value: int
    valid_after: int
    valid_before: int
    salt: bytes
    pay_to: str
    facilitator_fee: int
    hook: str
    hook_data: bytes

    def commitment_args(self) -> tuple:
        """Arguments of SettlementRouter.calculateCommitment, in ABI order."""
        return (
            self.token,
            self.from_address,
            self.value,
            self.valid_after,
            self.valid_before,
            self.salt,
            self.pay_to,
            self.facilitator_fee,
            self.hook,
            self.hook_data,
        )

    def is_valid_at(self, timestamp: int) -> bool:
        return self.valid_after <= timestamp < self.valid_before

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "from": self.from_address,
            "value": str(self.value),
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "salt": _hex(self.salt),
            "payTo": self.pay_to,
            "facilitatorFee": str(self.facilitator_fee),
            "hook": self.hook,
            "hookData": _hex(self.hook_data),
        }


# EIP-3009 TransferWithAuthorization type
TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}

EIP712_DOMAIN_TYPE = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


@dataclass(frozen=True)
class TypedDataDomain:
    """EIP-712 domain of the stablecoin contract."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


@dataclass(frozen=True)
class TransferAuthorizationMessage:
    """EIP-3009 message. ``nonce`` is the 32-byte commitment."""

    from_address: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }


@dataclass(frozen=True)
class Authorization:
    """A signed EIP-3009 transfer authorization."""

    domain: TypedDataDomain
    message: TransferAuthorizationMessage
    signature: str = ""

    def to_typed_data(self) -> dict[str, Any]:
        """
        Full EIP-712 payload as accepted by eth_signTypedData_v4.

        Integers are rendered as decimal strings and the nonce as hex, which
        is what browser wallets expect.
        """
        message = self.message.to_dict()
        message.update(
            value=str(self.message.value),
            validAfter=str(self.message.valid_after),
            validBefore=str(self.message.valid_before),
            nonce=_hex(self.message.nonce),
        )
        return {
            "types": {"EIP712Domain": EIP712_DOMAIN_TYPE, **TRANSFER_WITH_AUTHORIZATION_TYPES},
            "primaryType": "TransferWithAuthorization",
            "domain": self.domain.to_dict(),
            "message": message,
        }


@dataclass(frozen=True)
class RewardDistribution:
    """Decoded RewardDistributed event emitted by the reward-points hook."""

    context_key: bytes
    payer: str
    pay_to: str
    reward_token: str
    payment_amount: int
    reward_points: int

    @property
    def points(self) -> str:
        """Reward points as a display string (18 decimals, 2 places)."""
        return f"{Decimal(self.reward_points).scaleb(-18):.2f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "payer": self.payer,
            "payTo": self.pay_to,
            "rewardToken": self.reward_token,
            "paymentAmount": str(self.payment_amount),
            "rewardPoints": self.points,
        }


@dataclass(frozen=True)
class SettlementReceipt:
    """Outcome of a mined settleAndExecute transaction."""

    tx_hash: str
    block_number: int
    status: int = 1
    gas_used: Optional[int] = None
    reward: Optional[RewardDistribution] = None
    logs: list = field(default_factory=list, compare=False, repr=False)


# =============================================================================
# Execution session records
# =============================================================================


class ExecutionStep(str, Enum):
    """Pipeline states, in the only order they may be visited."""

    DISCOVER = "discover"
    MATCH = "match"
    PREPARE = "prepare"
    COMMIT = "commit"
    SIGN = "sign"
    SUBMIT = "submit"
    CONFIRM = "confirm"
    SUCCESS = "success"
    ERROR = "error"


EventType = Literal["progress", "success", "error"]


def now_ms() -> int:
    return int(time.time() * 1000)


class ProgressEvent(BaseModel):
    """
    One entry in a session's progress trace.

    The same shape is sent over server push (SSE or NDJSON) and handed to
    in-process callbacks.
    """

    type: EventType
    message: str
    timestamp: int = Field(default_factory=now_ms)
    step: Optional[ExecutionStep] = None
    data: Optional[dict[str, Any]] = None

    class Config:
        frozen = True

    @property
    def is_terminal(self) -> bool:
        return self.type in ("success", "error")

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json", exclude_none=True))

    def to_sse(self) -> str:
        return f"data: {self.to_json()}\n\n"

    def to_ndjson(self) -> str:
        return self.to_json() + "\n"


class ExecutionResult(BaseModel):
    """Terminal outcome of an execution session."""

    success: bool
    session_id: str = Field(..., alias="sessionId")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    block_number: Optional[int] = Field(None, alias="blockNumber")
    amount: Optional[str] = None
    pay_to: Optional[str] = Field(None, alias="payTo")
    explorer_url: Optional[str] = Field(None, alias="explorerUrl")
    error: Optional[str] = None
    error_category: Optional[str] = Field(None, alias="errorCategory")

    class Config:
        populate_by_name = True
