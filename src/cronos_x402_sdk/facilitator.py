"""
Facilitator delegation path for plain (hook-less) payments.

Instead of driving the settlement router, this path signs an EIP-3009
transfer straight to the recipient and lets a remote x402 facilitator verify
and settle it. Replay protection belongs to the facilitator and the token
(random nonce), so no commitment is involved.

Flow states: idle -> generating -> verifying -> settling -> success | error

Example:
    >>> async with FacilitatorClient() as facilitator:
    ...     flow = FacilitatorPaymentFlow(
    ...         "cronos-testnet", facilitator, HeldKeySigner(key), chain=chain
    ...     )
    ...     result = await flow.execute(
    ...         PaymentParams(recipient_address="0x...", amount="1000000"),
    ...         on_status=print,
    ...     )
    ...     print(result.tx_hash)
"""

import base64
import inspect
import json
import logging
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

import httpx
from pydantic import BaseModel, Field, field_validator

from cronos_x402_sdk.config import DEFAULT_FACILITATOR_URL
from cronos_x402_sdk.exceptions import (
    ConfigurationError,
    FacilitatorError,
    NetworkError,
    ValidationError,
    X402Error,
)
from cronos_x402_sdk.models import (
    Authorization,
    TransferAuthorizationMessage,
    TypedDataDomain,
)
from cronos_x402_sdk.networks import NetworkConfig, get_network, is_valid_address
from cronos_x402_sdk.signers import ChainReader, HeldKeySigner

logger = logging.getLogger(__name__)

X402_VERSION = 1
DEFAULT_HEADER_VALIDITY = 600  # 10 minutes
DEFAULT_MAX_TIMEOUT_SECONDS = 300


class PaymentStatus(str, Enum):
    """Facilitator payment flow status."""

    IDLE = "idle"
    GENERATING = "generating"
    VERIFYING = "verifying"
    SETTLING = "settling"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class PaymentState:
    """Status update handed to the flow's observer."""

    status: PaymentStatus
    current_step: Optional[str] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class FacilitatorPaymentResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class PaymentParams(BaseModel):
    """A plain payment: who gets paid and how much (atomic units)."""

    recipient_address: str = Field(..., alias="recipientAddress")
    amount: str
    description: Optional[str] = None

    class Config:
        populate_by_name = True

    @field_validator("recipient_address")
    @classmethod
    def _check_address(cls, v: str) -> str:
        if not is_valid_address(v):
            raise ValueError("Invalid recipient address")
        return v

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, v: str) -> str:
        if not v.isdigit() or int(v) <= 0:
            raise ValueError("Invalid amount")
        return v


class PaymentRequirements(BaseModel):
    """x402 payment requirements for the exact scheme."""

    scheme: str = "exact"
    network: str
    pay_to: str = Field(..., alias="payTo")
    asset: str
    description: str = "X402 Payment"
    mime_type: str = Field("application/json", alias="mimeType")
    max_amount_required: str = Field(..., alias="maxAmountRequired")
    max_timeout_seconds: int = Field(DEFAULT_MAX_TIMEOUT_SECONDS, alias="maxTimeoutSeconds")
    resource: Optional[str] = None
    extra: Optional[dict[str, Any]] = None

    class Config:
        populate_by_name = True


class VerifyResponse(BaseModel):
    is_valid: bool = Field(..., alias="isValid")
    invalid_reason: Optional[str] = Field(None, alias="invalidReason")

    class Config:
        populate_by_name = True


class SettleResponse(BaseModel):
    tx_hash: Optional[str] = Field(None, alias="txHash")
    network: Optional[str] = None
    from_address: Optional[str] = Field(None, alias="from")
    to: Optional[str] = None
    value: Optional[str] = None
    block_number: Optional[int] = Field(None, alias="blockNumber")
    error: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "allow"


class FacilitatorClient:
    """
    HTTP client for an x402 facilitator (verify / settle / supported).

    Args:
        base_url: Facilitator base URL
        timeout: Request timeout in seconds
        client: Optional pre-configured httpx.AsyncClient
    """

    def __init__(
        self,
        base_url: str = DEFAULT_FACILITATOR_URL,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "FacilitatorClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self._client.aclose()

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X402-Version": str(X402_VERSION),
        }

    @staticmethod
    def build_request(header: str, requirements: PaymentRequirements) -> dict[str, Any]:
        return {
            "x402Version": X402_VERSION,
            "paymentHeader": header,
            "paymentRequirements": requirements.model_dump(by_alias=True, exclude_none=True),
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(
                method, url, headers=self._get_headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"Facilitator request to {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            reason = body.get("error") or body.get("invalidReason") or response.reason_phrase
            raise FacilitatorError(
                f"Facilitator {path} returned {response.status_code}: {reason}",
                details={"response": body},
            )
        return body

    async def get_supported(self) -> dict[str, Any]:
        """Schemes and networks the facilitator supports."""
        return await self._request("GET", "/supported")

    async def verify(self, header: str, requirements: PaymentRequirements) -> VerifyResponse:
        body = await self._request("POST", "/verify", json=self.build_request(header, requirements))
        return VerifyResponse.model_validate(body)

    async def settle(self, header: str, requirements: PaymentRequirements) -> SettleResponse:
        body = await self._request("POST", "/settle", json=self.build_request(header, requirements))
        return SettleResponse.model_validate(body)


StatusCallback = Callable[[PaymentState], Any]


class FacilitatorPaymentFlow:
    """
    Generate, verify and settle a plain payment through a facilitator.

    Args:
        network: Network name or config the payment settles on
        facilitator: Facilitator client
        signer: Held-key signer paying the recipient
        chain: Chain reader used to read the token's EIP-712 domain. Without
            one the network's configured token name and version are signed
            over, which only verifies if they match the deployed token.
    """

    def __init__(
        self,
        network: Union[str, NetworkConfig],
        facilitator: FacilitatorClient,
        signer: HeldKeySigner,
        *,
        chain: Optional[ChainReader] = None,
    ):
        if isinstance(network, str):
            config = get_network(network)
            if config is None:
                raise ConfigurationError(f"Unknown network: {network}")
            network = config
        self.signer = signer
        self.facilitator = facilitator
        self.network = network
        self.chain = chain

    def configured_domain(self) -> TypedDataDomain:
        return TypedDataDomain(
            name=self.network.usdc_domain_name,
            version=self.network.usdc_domain_version,
            chain_id=self.network.chain_id,
            verifying_contract=self.network.usdc_address,
        )

    async def resolve_domain(self) -> TypedDataDomain:
        """
        Token domain to sign over.

        With a chain reader the connected chain must be the network's chain
        and name/version come from the token contract.

        Raises:
            ChainMismatchError: The chain reader is connected elsewhere
        """
        if self.chain is None:
            return self.configured_domain()
        return await self.signer.resolve_token_domain(
            self.chain, self.network.usdc_address, self.network.chain_id
        )

    def generate_requirements(
        self, params: PaymentParams, domain: Optional[TypedDataDomain] = None
    ) -> PaymentRequirements:
        domain = domain or self.configured_domain()
        return PaymentRequirements(
            network=self.network.facilitator_network or self.network.name,
            pay_to=params.recipient_address,
            asset=self.network.usdc_address,
            description=params.description or "X402 Payment",
            max_amount_required=params.amount,
            extra={"name": domain.name, "version": domain.version},
        )

    async def generate_header(
        self,
        params: PaymentParams,
        valid_before: Optional[int] = None,
        *,
        domain: Optional[TypedDataDomain] = None,
    ) -> str:
        """
        Sign an EIP-3009 transfer to the recipient and wrap it as an x402
        payment header (base64 JSON).
        """
        if domain is None:
            domain = await self.resolve_domain()
        expiry = valid_before or int(time.time()) + DEFAULT_HEADER_VALIDITY
        nonce = secrets.token_bytes(32)
        authorization = Authorization(
            domain=domain,
            message=TransferAuthorizationMessage(
                from_address=self.signer.address,
                to=params.recipient_address,
                value=int(params.amount),
                valid_after=0,
                valid_before=expiry,
                nonce=nonce,
            ),
        )
        signature = await self.signer.sign_typed_data(authorization)

        payload = {
            "x402Version": X402_VERSION,
            "scheme": "exact",
            "network": self.network.facilitator_network or self.network.name,
            "payload": {
                "from": self.signer.address,
                "to": params.recipient_address,
                "value": params.amount,
                "validAfter": 0,
                "validBefore": expiry,
                "nonce": "0x" + nonce.hex(),
                "signature": signature,
                "asset": self.network.usdc_address,
            },
        }
        return base64.b64encode(json.dumps(payload).encode()).decode()

    async def execute(
        self, params: PaymentParams, on_status: Optional[StatusCallback] = None
    ) -> FacilitatorPaymentResult:
        """
        Run the whole flow. Failures are reported, not raised.

        Settlement is only requested after the facilitator accepted the
        header; a settle response without a transaction hash is a failure.
        """

        async def report(state: PaymentState) -> None:
            if on_status is None:
                return
            result = on_status(state)
            if inspect.isawaitable(result):
                await result

        try:
            await report(PaymentState(PaymentStatus.GENERATING, "Generating payment requirements..."))
            domain = await self.resolve_domain()
            requirements = self.generate_requirements(params, domain)

            await report(PaymentState(PaymentStatus.GENERATING, "Generating payment header..."))
            header = await self.generate_header(params, domain=domain)

            await report(PaymentState(PaymentStatus.VERIFYING, "Verifying payment..."))
            verification = await self.facilitator.verify(header, requirements)
            if not verification.is_valid:
                reason = verification.invalid_reason
                error = "Payment verification failed" + (f": {reason}" if reason else "")
                await report(PaymentState(PaymentStatus.ERROR, error=error))
                return FacilitatorPaymentResult(success=False, error=error)

            await report(PaymentState(PaymentStatus.SETTLING, "Settling payment on-chain..."))
            settlement = await self.facilitator.settle(header, requirements)
            if not settlement.tx_hash:
                error = "Payment settlement failed - no transaction hash returned"
                await report(PaymentState(PaymentStatus.ERROR, error=error))
                return FacilitatorPaymentResult(success=False, error=error)

            logger.info("Facilitator settled payment: %s", settlement.tx_hash)
            await report(PaymentState(PaymentStatus.SUCCESS, tx_hash=settlement.tx_hash))
            return FacilitatorPaymentResult(success=True, tx_hash=settlement.tx_hash)

        except X402Error as e:
            logger.warning("Facilitator payment failed (%s): %s", e.category, e.message)
            await report(PaymentState(PaymentStatus.ERROR, error=e.message))
            return FacilitatorPaymentResult(success=False, error=e.message)
        except Exception as e:
            logger.exception("Facilitator payment failed unexpectedly")
            error = str(e) or "Unknown error occurred"
            await report(PaymentState(PaymentStatus.ERROR, error=error))
            return FacilitatorPaymentResult(success=False, error=error)


def parse_payment_params(data: dict[str, Any]) -> PaymentParams:
    """Validate raw request data into PaymentParams, raising ValidationError."""
    try:
        return PaymentParams.model_validate(data)
    except ValueError as e:
        raise ValidationError(f"Invalid payment parameters: {e}") from None
