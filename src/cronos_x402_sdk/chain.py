"""
Chain read/submit capability.

ChainClient owns one AsyncWeb3 connection. It is constructed explicitly by
whoever runs an execution and passed in; nothing here caches a provider at
module level.

Reads:   chain id, token name/version/balance, router commitment and
         settlement state
Writes:  build the settleAndExecute transaction, broadcast a raw signed
         transaction, wait for its receipt

Example:
    >>> chain = ChainClient("https://evm-t3.cronos.org")
    >>> await chain.get_chain_id()
    338
    >>> name, version = await chain.get_token_metadata(usdc_address)
"""

import asyncio
import logging
from typing import Any, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    Web3Exception,
)

from cronos_x402_sdk.exceptions import (
    ConfigurationError,
    InsufficientFundsError,
    NetworkError,
    SettlementRevertedError,
)
from cronos_x402_sdk.models import Authorization, SettlementParameters

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_VERSION = "2"

# ============================================================
# ABIs (minimal, only the functions we need)
# ============================================================

_SETTLEMENT_INPUTS = [
    {"name": "token", "type": "address"},
    {"name": "from", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
]

_SETTLEMENT_TAIL = [
    {"name": "salt", "type": "bytes32"},
    {"name": "payTo", "type": "address"},
    {"name": "facilitatorFee", "type": "uint256"},
    {"name": "hook", "type": "address"},
    {"name": "hookData", "type": "bytes"},
]

SETTLEMENT_ROUTER_ABI = [
    {
        "type": "function",
        "name": "settleAndExecute",
        "inputs": _SETTLEMENT_INPUTS
        + [
            {"name": "nonce", "type": "bytes32"},
            {"name": "signature", "type": "bytes"},
        ]
        + _SETTLEMENT_TAIL,
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "calculateCommitment",
        "inputs": _SETTLEMENT_INPUTS + _SETTLEMENT_TAIL,
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "isSettled",
        "inputs": [{"name": "contextKey", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "calculateContextKey",
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "nonce", "type": "bytes32"},
        ],
        "outputs": [{"name": "", "type": "bytes32"}],
        "stateMutability": "pure",
    },
]

TOKEN_ABI = [
    {
        "type": "function",
        "name": "name",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "version",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "balanceOf",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
    },
]


def _checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def _is_insufficient_funds(exc: Exception) -> bool:
    return "insufficient funds" in str(exc).lower()


class ChainClient:
    """
    Async JSON-RPC client for the settlement router and stablecoin.

    Args:
        rpc_url: JSON-RPC endpoint of the target chain
        w3: Pre-built AsyncWeb3 instance (overrides rpc_url)
    """

    def __init__(self, rpc_url: str, *, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url
        self._owns_provider = w3 is None
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP sessions of a provider this client created."""
        if self._owns_provider:
            await self.w3.provider.disconnect()

    def router(self, address: str):
        return self.w3.eth.contract(address=_checksum(address), abi=SETTLEMENT_ROUTER_ABI)

    def token(self, address: str):
        return self.w3.eth.contract(address=_checksum(address), abi=TOKEN_ABI)

    async def _call(self, what: str, call) -> Any:
        """
        Await an RPC call and map failures onto the error taxonomy.

        Reverts pass through as ContractLogicError for the caller to
        interpret. An empty result means nothing is deployed at the address
        on this chain, which is a configuration problem. Everything else is
        a NetworkError.
        """
        try:
            return await call
        except ContractLogicError:
            raise
        except BadFunctionCallOutput as e:
            raise ConfigurationError(
                f"{what} returned no data; no contract deployed at that address on this chain?",
                details={"call": what},
            ) from e
        # older web3 releases surface JSON-RPC errors as plain ValueError
        except (Web3Exception, ValueError, OSError, asyncio.TimeoutError) as e:
            raise NetworkError(f"RPC call {what} failed: {e}") from e

    # ----------------------------------------------------------------
    # Reads
    # ----------------------------------------------------------------

    async def get_chain_id(self) -> int:
        return int(await self._call("eth_chainId", self.w3.eth.chain_id))

    async def get_token_metadata(self, token: str) -> tuple[str, str]:
        """
        Read the token's EIP-712 domain name and version.

        name() is mandatory. Tokens that do not expose version() get "2",
        the version every EIP-3009 USDC deployment uses.
        """
        contract = self.token(token)
        try:
            name = await self._call(f"name() on {token}", contract.functions.name().call())
        except ContractLogicError as e:
            raise ConfigurationError(f"Could not read name() from token {token}: {e}") from e

        try:
            version = await self._call(
                f"version() on {token}", contract.functions.version().call()
            )
        except (ContractLogicError, ConfigurationError):
            logger.warning(
                "Token %s has no version(); using default %s", token, DEFAULT_TOKEN_VERSION
            )
            version = DEFAULT_TOKEN_VERSION

        logger.debug("Token %s domain: name=%r version=%r", token, name, version)
        return name, version

    async def get_token_balance(self, token: str, owner: str) -> int:
        contract = self.token(token)
        return int(
            await self._call(
                f"balanceOf() on {token}", contract.functions.balanceOf(_checksum(owner)).call()
            )
        )

    async def calculate_commitment(self, router: str, params: SettlementParameters) -> bytes:
        """Ask the router to hash the settlement parameters."""
        fn = self.router(router).functions.calculateCommitment(*_settlement_args(params))
        try:
            commitment = await self._call(f"calculateCommitment() on {router}", fn.call())
        except ContractLogicError as e:
            raise SettlementRevertedError(f"calculateCommitment reverted: {e}") from e
        return bytes(commitment)

    async def calculate_context_key(
        self, router: str, from_address: str, token: str, nonce: bytes
    ) -> bytes:
        fn = self.router(router).functions.calculateContextKey(
            _checksum(from_address), _checksum(token), nonce
        )
        return bytes(await self._call(f"calculateContextKey() on {router}", fn.call()))

    async def is_settled(self, router: str, context_key: bytes) -> bool:
        fn = self.router(router).functions.isSettled(context_key)
        return bool(await self._call(f"isSettled() on {router}", fn.call()))

    # ----------------------------------------------------------------
    # Writes
    # ----------------------------------------------------------------

    async def build_settle_transaction(
        self,
        router: str,
        params: SettlementParameters,
        authorization: Authorization,
        sender: str,
    ) -> dict[str, Any]:
        """
        Build the settleAndExecute transaction.

        Gas is estimated by the node, so a settlement the router would reject
        (expired window, replayed commitment, bad signature) fails here with
        the router's revert reason, before anything is broadcast.
        """
        sender = _checksum(sender)
        token, from_address, value, valid_after, valid_before = _settlement_args(params)[:5]
        fn = self.router(router).functions.settleAndExecute(
            token,
            from_address,
            value,
            valid_after,
            valid_before,
            authorization.message.nonce,
            bytes.fromhex(authorization.signature.removeprefix("0x")),
            params.salt,
            _checksum(params.pay_to),
            params.facilitator_fee,
            _checksum(params.hook),
            params.hook_data,
        )
        try:
            gas_price = await self._call("eth_gasPrice", self.w3.eth.gas_price)
            nonce = await self._call(
                "eth_getTransactionCount", self.w3.eth.get_transaction_count(sender)
            )
            return await self._call("settleAndExecute()", fn.build_transaction({
                "from": sender,
                "nonce": nonce,
                "chainId": authorization.domain.chain_id,
                "maxFeePerGas": gas_price * 2,
                "maxPriorityFeePerGas": gas_price,
            }))
        except ContractLogicError as e:
            raise SettlementRevertedError(f"Settlement rejected by router: {e}") from e
        except NetworkError as e:
            if _is_insufficient_funds(e):
                raise InsufficientFundsError(str(e)) from e
            raise

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        try:
            tx_hash = await self._call(
                "eth_sendRawTransaction", self.w3.eth.send_raw_transaction(raw_transaction)
            )
        except NetworkError as e:
            if _is_insufficient_funds(e):
                raise InsufficientFundsError(str(e)) from e
            raise
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> dict[str, Any]:
        """Wait until the transaction is mined and return its receipt as a dict."""
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise NetworkError(
                f"Transaction {tx_hash} not confirmed within {timeout}s"
            ) from e
        except (Web3Exception, OSError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Waiting for receipt of {tx_hash} failed: {e}") from e

        return {
            "transactionHash": Web3.to_hex(receipt["transactionHash"]),
            "blockNumber": receipt["blockNumber"],
            "status": receipt["status"],
            "gasUsed": receipt.get("gasUsed"),
            "logs": [
                {
                    "address": log["address"],
                    "topics": [bytes(t) for t in log["topics"]],
                    "data": bytes(log["data"]),
                }
                for log in receipt.get("logs", [])
            ],
        }


def _settlement_args(params: SettlementParameters) -> tuple:
    """calculateCommitment arguments with checksummed addresses."""
    args = list(params.commitment_args())
    for i in (0, 1, 6, 8):
        args[i] = _checksum(args[i])
    return tuple(args)
