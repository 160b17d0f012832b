"""
cronos-x402-sdk: atomic pay-and-execute settlement for Cronos.

A payment and its side effect (NFT mint, reward points, revenue split) settle
in one router transaction, bound together by a commitment the payer signs as
the EIP-3009 authorization nonce.

Example:
    >>> from cronos_x402_sdk import (
    ...     ChainClient, ExecutionOrchestrator, HeldKeySigner, ServiceRegistryClient,
    ... )
    >>>
    >>> async with ServiceRegistryClient("https://resources.example") as registry:
    ...     orchestrator = ExecutionOrchestrator(registry, ChainClient(rpc_url))
    ...     result = await orchestrator.execute("nft-mint-demo", signer=HeldKeySigner(key))
"""

from cronos_x402_sdk.chain import ChainClient
from cronos_x402_sdk.commitment import CommitmentCalculator, generate_salt
from cronos_x402_sdk.config import X402Settings
from cronos_x402_sdk.events import (
    CallbackSink,
    EventSink,
    EventStream,
    ExecutionSession,
    FanOutEmitter,
    ListSink,
)
from cronos_x402_sdk.exceptions import (
    ChainMismatchError,
    CommitmentAlreadySettledError,
    ConfigurationError,
    DiscoveryError,
    FacilitatorError,
    HookValidationError,
    InsufficientFundsError,
    NetworkError,
    ServiceNotFoundError,
    SettlementRevertedError,
    SigningError,
    UserRejectedError,
    ValidationError,
    X402Error,
)
from cronos_x402_sdk.facilitator import (
    FacilitatorClient,
    FacilitatorPaymentFlow,
    FacilitatorPaymentResult,
    PaymentParams,
    PaymentRequirements,
    PaymentStatus,
)
from cronos_x402_sdk.hook_codec import decode_hook_data, encode_hook_data, validate_splits
from cronos_x402_sdk.models import (
    Authorization,
    ExecutionResult,
    ExecutionStep,
    HookType,
    ProgressEvent,
    ServiceDescriptor,
    SettlementParameters,
    SettlementReceipt,
    SplitRecipient,
)
from cronos_x402_sdk.orchestrator import ExecutionOrchestrator
from cronos_x402_sdk.registry import ServiceRegistryClient
from cronos_x402_sdk.signers import (
    DelegatedWalletSigner,
    HeldKeySigner,
    SigningStrategy,
    WalletConnection,
)
from cronos_x402_sdk.submitter import SettlementSubmitter

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # clients
    "ChainClient",
    "ServiceRegistryClient",
    "FacilitatorClient",
    # pipeline
    "CommitmentCalculator",
    "ExecutionOrchestrator",
    "FacilitatorPaymentFlow",
    "SettlementSubmitter",
    "generate_salt",
    "encode_hook_data",
    "decode_hook_data",
    "validate_splits",
    # signers
    "SigningStrategy",
    "HeldKeySigner",
    "DelegatedWalletSigner",
    "WalletConnection",
    # events
    "EventSink",
    "CallbackSink",
    "EventStream",
    "ListSink",
    "FanOutEmitter",
    "ExecutionSession",
    # models
    "Authorization",
    "ExecutionResult",
    "ExecutionStep",
    "FacilitatorPaymentResult",
    "HookType",
    "PaymentParams",
    "PaymentRequirements",
    "PaymentStatus",
    "ProgressEvent",
    "ServiceDescriptor",
    "SettlementParameters",
    "SettlementReceipt",
    "SplitRecipient",
    "X402Settings",
    # errors
    "X402Error",
    "ValidationError",
    "HookValidationError",
    "ConfigurationError",
    "DiscoveryError",
    "ServiceNotFoundError",
    "ChainMismatchError",
    "UserRejectedError",
    "SigningError",
    "SettlementRevertedError",
    "CommitmentAlreadySettledError",
    "InsufficientFundsError",
    "NetworkError",
    "FacilitatorError",
]
