"""
Execution orchestrator.

Runs one pay-and-execute session for a service:

    discover -> match -> prepare -> commit -> sign -> submit -> confirm
             -> success | error

Every step announces itself with a progress event before doing its work.
Steps only move forward. Any failure ends the session with a single error
event; trying again means a new session, which gets a new salt and therefore
a new commitment and authorization.

The orchestrator does not know how events travel: it produces them into a
FanOutEmitter, and callers attach whatever sinks they need (an EventStream for
server push, a CallbackSink for in-process consumers).

Example:
    >>> orchestrator = ExecutionOrchestrator(registry, ChainClient(rpc_url))
    >>> result = await orchestrator.execute(
    ...     "nft-mint-demo",
    ...     signer=HeldKeySigner(private_key),
    ...     sinks=[CallbackSink(print)],
    ... )
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Iterable, Optional, Protocol, Sequence

from cronos_x402_sdk.chain import ChainClient
from cronos_x402_sdk.commitment import DEFAULT_VALIDITY_SECONDS, CommitmentCalculator
from cronos_x402_sdk.events import EventSink, EventStream, ExecutionSession, FanOutEmitter
from cronos_x402_sdk.exceptions import (
    DiscoveryError,
    HookValidationError,
    InsufficientFundsError,
    X402Error,
)
from cronos_x402_sdk.hook_codec import SplitLike, encode_hook_data, validate_splits
from cronos_x402_sdk.models import (
    ExecutionResult,
    ExecutionStep,
    HookType,
    ProgressEvent,
    ServiceDescriptor,
    SettlementParameters,
    SettlementReceipt,
    SplitRecipient,
)
from cronos_x402_sdk.networks import from_base_units, get_network, get_network_by_chain_id
from cronos_x402_sdk.registry import find_service
from cronos_x402_sdk.signers import DelegatedWalletSigner, SigningStrategy
from cronos_x402_sdk.submitter import DEFAULT_CONFIRMATION_TIMEOUT, SettlementSubmitter

logger = logging.getLogger(__name__)


class ServiceSource(Protocol):
    base_url: str

    async def list_services(self, *, refresh: bool = False) -> list[ServiceDescriptor]:
        ...


def explorer_url_for(service: ServiceDescriptor, tx_hash: str) -> Optional[str]:
    network = get_network(service.network) or get_network_by_chain_id(service.chain_id)
    return network.tx_url(tx_hash) if network else None


class ExecutionOrchestrator:
    """
    Sequences discovery, commitment, signing and settlement for one service.

    Args:
        registry: Service registry (normally ServiceRegistryClient)
        chain: Chain capability, owned by the caller
        validity_seconds: Authorization window length
        confirmation_timeout: Seconds to wait for the settlement to be mined
        check_balance: Refuse to sign when the payer's token balance is short
    """

    def __init__(
        self,
        registry: ServiceSource,
        chain: ChainClient,
        *,
        validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        check_balance: bool = True,
    ):
        self.registry = registry
        self.chain = chain
        self.check_balance = check_balance
        self.calculator = CommitmentCalculator(chain, validity_seconds=validity_seconds)
        self.submitter = SettlementSubmitter(chain, confirmation_timeout=confirmation_timeout)

    # ----------------------------------------------------------------
    # Entry points
    # ----------------------------------------------------------------

    async def execute(
        self,
        service_id: str,
        splits: Optional[Sequence[SplitLike]] = None,
        *,
        signer: SigningStrategy,
        sinks: Iterable[EventSink] = (),
        session_id: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Run a full session and return its outcome.

        Never raises for pipeline failures: they end up as the terminal error
        event and an unsuccessful ExecutionResult.
        """
        session = ExecutionSession(FanOutEmitter(sinks), session_id)
        return await self._execute(session, service_id, splits, signer)

    async def stream(
        self,
        service_id: str,
        splits: Optional[Sequence[SplitLike]] = None,
        *,
        signer: SigningStrategy,
        sinks: Iterable[EventSink] = (),
    ) -> AsyncIterator[ProgressEvent]:
        """
        Run a session and yield its events as they happen.

        If the consumer stops early, a session that has not submitted yet is
        cancelled. One that has submitted keeps running until the chain
        outcome is known.
        """
        events = EventStream()
        session = ExecutionSession(FanOutEmitter([events, *sinks]))
        task = asyncio.create_task(self._execute(session, service_id, splits, signer))
        try:
            async for event in events:
                yield event
        finally:
            if not task.done():
                if session.finished or session.current_step in (
                    ExecutionStep.SUBMIT,
                    ExecutionStep.CONFIRM,
                ):
                    await task
                else:
                    task.cancel()

    # ----------------------------------------------------------------
    # Pipeline
    # ----------------------------------------------------------------

    async def _execute(
        self,
        session: ExecutionSession,
        service_id: str,
        splits: Optional[Sequence[SplitLike]],
        signer: SigningStrategy,
    ) -> ExecutionResult:
        try:
            return await self._run(session, service_id, splits, signer)
        except X402Error as e:
            logger.warning(
                "Session %s failed at %s (%s): %s",
                session.id,
                session.current_step.value if session.current_step else "start",
                e.category,
                e.message,
            )
            await session.fail(e.message, {"category": e.category, **e.details})
            return ExecutionResult(
                success=False, session_id=session.id, error=e.message, error_category=e.category
            )
        except Exception as e:
            logger.exception("Session %s failed unexpectedly", session.id)
            message = str(e) or "Unknown error"
            await session.fail(message, {"category": "internal"})
            return ExecutionResult(
                success=False, session_id=session.id, error=message, error_category="internal"
            )

    async def _run(
        self,
        session: ExecutionSession,
        service_id: str,
        splits: Optional[Sequence[SplitLike]],
        signer: SigningStrategy,
    ) -> ExecutionResult:
        recipients = validate_splits(splits)

        await session.enter(
            ExecutionStep.DISCOVER, f"Discovering services from {self.registry.base_url}..."
        )
        services = await self.registry.list_services()
        await session.progress(f"Found {len(services)} service(s)")
        if not services:
            raise DiscoveryError("No services available")

        await session.enter(ExecutionStep.MATCH, f"Looking up service {service_id}...")
        service = find_service(services, service_id)
        if recipients and service.hook_type != HookType.TRANSFER_SPLIT:
            raise HookValidationError(
                f"Service {service.id} ({service.hook_type.value}) does not accept splits"
            )
        await session.progress(
            f"Matched service: {service.title} ({service.hook_type.value})",
            {"service": service.summary()},
        )

        await session.enter(ExecutionStep.PREPARE, "Preparing transaction...")
        params = await self._prepare(service, recipients, signer)

        await session.enter(ExecutionStep.COMMIT, "Calculating commitment...")
        commitment = await self.calculator.calculate(service.settlement_router_address, params)

        sign_message = "Signing transaction..."
        if isinstance(signer, DelegatedWalletSigner):
            sign_message = "Signing transaction... (check your wallet)"
        await session.enter(ExecutionStep.SIGN, sign_message)
        authorization = await signer.sign(self.chain, service, params, commitment)
        await session.progress("Transaction signed")

        await session.enter(ExecutionStep.SUBMIT, "Submitting to blockchain...")
        tx_hash = await self.submitter.broadcast(
            service.settlement_router_address, params, authorization, signer
        )
        await session.progress(f"Transaction submitted: {tx_hash}", {"transactionHash": tx_hash})

        await session.enter(ExecutionStep.CONFIRM, "Waiting for confirmation...")
        receipt = await self.submitter.confirm(tx_hash)

        explorer_url = explorer_url_for(service, receipt.tx_hash)
        amount = f"{service.defaults.payment_amount} USDC"
        await session.succeed(
            _success_message(recipients),
            _success_data(service, params, receipt, amount, explorer_url, recipients),
        )
        return ExecutionResult(
            success=True,
            session_id=session.id,
            transaction_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            amount=amount,
            pay_to=params.pay_to,
            explorer_url=explorer_url,
        )

    async def _prepare(
        self,
        service: ServiceDescriptor,
        recipients: list[SplitRecipient],
        signer: SigningStrategy,
    ) -> SettlementParameters:
        # contracts read below only exist on the service's chain
        await signer.ensure_chain(self.chain, service.chain_id)
        payer = await signer.get_address()
        hook_data = encode_hook_data(service.hook_type, service.supporting_contracts, recipients)
        params = self.calculator.build_parameters(service, payer, hook_data)

        if self.check_balance:
            balance = await self.chain.get_token_balance(params.token, payer)
            if balance < params.value:
                raise InsufficientFundsError(
                    f"Insufficient USDC balance: have {from_base_units(balance)}, "
                    f"need {from_base_units(params.value)}",
                    details={"balance": str(balance), "required": str(params.value)},
                )
        return params


def _success_message(recipients: list[SplitRecipient]) -> str:
    if recipients:
        return f"Split payment confirmed to {len(recipients)} recipients!"
    return "Transaction confirmed!"


def _success_data(
    service: ServiceDescriptor,
    params: SettlementParameters,
    receipt: SettlementReceipt,
    amount: str,
    explorer_url: Optional[str],
    recipients: list[SplitRecipient],
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "service": service.summary(),
        "transaction": {
            "hash": receipt.tx_hash,
            "blockNumber": receipt.block_number,
            "from": params.from_address,
            "payTo": params.pay_to,
            "amount": amount,
            "explorerUrl": explorer_url,
        },
    }
    if recipients:
        data["splits"] = [
            {"recipient": s.recipient, "percentage": s.percentage} for s in recipients
        ]
    if receipt.reward is not None:
        data["reward"] = receipt.reward.to_dict()
    return data
