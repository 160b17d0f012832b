"""
Settlement submission.

Sends SettlementRouter.settleAndExecute() with the frozen settlement
parameters and the signed authorization, then waits for the receipt. In one
transaction the router verifies the authorization, pulls the funds, marks the
commitment settled and calls the hook. This module only submits and reports.
"""

import logging
from typing import Any, Callable, Optional, Protocol

from eth_abi import decode
from web3 import Web3

from cronos_x402_sdk.exceptions import (
    CommitmentAlreadySettledError,
    SettlementRevertedError,
)
from cronos_x402_sdk.models import (
    Authorization,
    RewardDistribution,
    SettlementParameters,
    SettlementReceipt,
)
from cronos_x402_sdk.signers import SigningStrategy

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION_TIMEOUT = 120

REWARD_DISTRIBUTED_TOPIC = Web3.keccak(
    text="RewardDistributed(bytes32,address,address,address,uint256,uint256)"
)

# Revert markers the router uses for a replayed commitment
_ALREADY_SETTLED_MARKERS = (
    "alreadysettled",
    "already settled",
    Web3.keccak(text="AlreadySettled(bytes32)")[:4].hex().removeprefix("0x"),
    Web3.keccak(text="AlreadySettled()")[:4].hex().removeprefix("0x"),
)


class SettlementChain(Protocol):
    async def build_settle_transaction(
        self,
        router: str,
        params: SettlementParameters,
        authorization: Authorization,
        sender: str,
    ) -> dict[str, Any]:
        ...

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> dict[str, Any]:
        ...


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(str(value).removeprefix("0x"))


def classify_revert(error: SettlementRevertedError) -> SettlementRevertedError:
    """Narrow a router revert to CommitmentAlreadySettledError when it is one."""
    text = str(error).lower().replace("0x", "")
    if any(marker in text for marker in _ALREADY_SETTLED_MARKERS):
        return CommitmentAlreadySettledError(
            f"This payment was already settled: {error}",
            transaction_hash=error.transaction_hash,
        )
    return error


def parse_reward_event(logs: list[dict[str, Any]]) -> Optional[RewardDistribution]:
    """
    Find and decode the reward-points hook's RewardDistributed event.

    Returns None when no log matches. Malformed matching logs raise; callers
    treat this as optional detail.
    """
    for log in logs:
        topics = [_to_bytes(t) for t in log.get("topics", [])]
        if len(topics) < 4 or topics[0] != REWARD_DISTRIBUTED_TOPIC:
            continue
        (payer,) = decode(["address"], topics[2])
        (pay_to,) = decode(["address"], topics[3])
        reward_token, payment_amount, reward_points = decode(
            ["address", "uint256", "uint256"], _to_bytes(log.get("data", b""))
        )
        return RewardDistribution(
            context_key=topics[1],
            payer=Web3.to_checksum_address(payer),
            pay_to=Web3.to_checksum_address(pay_to),
            reward_token=Web3.to_checksum_address(reward_token),
            payment_amount=payment_amount,
            reward_points=reward_points,
        )
    return None


class SettlementSubmitter:
    """
    Submits settleAndExecute and interprets the receipt.

    Args:
        chain: Chain capability (normally ChainClient)
        confirmation_timeout: Seconds to wait for the transaction to be mined
    """

    def __init__(
        self,
        chain: SettlementChain,
        *,
        confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
    ):
        self.chain = chain
        self.confirmation_timeout = confirmation_timeout

    async def broadcast(
        self,
        router: str,
        params: SettlementParameters,
        authorization: Authorization,
        signer: SigningStrategy,
    ) -> str:
        """
        Build and send the settlement. Returns the transaction hash.

        Once this returns the settlement is out of our hands: it can only be
        awaited, not cancelled.
        """
        sender = await signer.get_address()
        try:
            tx = await self.chain.build_settle_transaction(router, params, authorization, sender)
        except SettlementRevertedError as e:
            raise classify_revert(e) from e
        tx_hash = await signer.send_transaction(self.chain, tx)
        logger.info("Settlement submitted: %s", tx_hash)
        return tx_hash

    async def confirm(self, tx_hash: str) -> SettlementReceipt:
        """Wait for the transaction and turn its receipt into a SettlementReceipt."""
        receipt = await self.chain.wait_for_receipt(tx_hash, timeout=self.confirmation_timeout)
        if receipt.get("status") != 1:
            raise SettlementRevertedError(
                f"Transaction {tx_hash} reverted in block {receipt.get('blockNumber')}",
                transaction_hash=tx_hash,
            )

        logs = receipt.get("logs", [])
        try:
            reward = parse_reward_event(logs)
        except Exception as e:  # optional detail only
            logger.debug("Could not parse reward event from %s: %s", tx_hash, e)
            reward = None

        return SettlementReceipt(
            tx_hash=receipt.get("transactionHash") or tx_hash,
            block_number=receipt["blockNumber"],
            status=receipt["status"],
            gas_used=receipt.get("gasUsed"),
            reward=reward,
            logs=logs,
        )

    async def submit(
        self,
        router: str,
        params: SettlementParameters,
        authorization: Authorization,
        signer: SigningStrategy,
        on_submitted: Optional[Callable[[str], Any]] = None,
    ) -> SettlementReceipt:
        """
        Submit a settlement and wait for it to be mined.

        Args:
            router: SettlementRouter address
            params: The exact parameters the commitment was computed from
            authorization: Signed authorization over that commitment
            signer: Strategy that broadcasts from the payer
            on_submitted: Called with the tx hash between submit and confirm

        Raises:
            SettlementRevertedError: Router rejected the settlement
            CommitmentAlreadySettledError: Commitment was settled before
            InsufficientFundsError: Payer cannot cover value or gas
            NetworkError: RPC failure or confirmation timeout
        """
        tx_hash = await self.broadcast(router, params, authorization, signer)
        if on_submitted is not None:
            on_submitted(tx_hash)
        return await self.confirm(tx_hash)
