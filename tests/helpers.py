import time
from typing import Any, Callable, Optional

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import AsyncWeb3, Web3
from web3.providers.async_base import AsyncBaseProvider
from web3.types import RPCEndpoint, RPCResponse

from cronos_x402_sdk.chain import ChainClient
from cronos_x402_sdk.exceptions import SettlementRevertedError
from cronos_x402_sdk.models import Authorization, ServiceDescriptor
from cronos_x402_sdk.registry import find_service
from cronos_x402_sdk.signers import verify_authorization

PAYER_KEY = "0x" + "11" * 32
CHAIN_ID = 338


def address(byte: str) -> str:
    return Web3.to_checksum_address("0x" + byte * 20)


ROUTER = address("a1")
USDC = address("c0")
NFT_HOOK = address("b1")
NFT_CONTRACT = address("b2")
REWARD_HOOK = address("d1")
REWARD_TOKEN = address("d2")
SPLIT_HOOK = address("e1")
MERCHANT = address("f1")
ALICE = address("f2")
BOB = address("f3")

_COMMITMENT_TYPES = [
    "uint256",
    "address",
    "address",
    "address",
    "uint256",
    "uint256",
    "uint256",
    "bytes32",
    "address",
    "uint256",
    "address",
    "bytes",
]


def service_payload(
    service_id: str, hook_type: str, hook: str, supporting: dict[str, str]
) -> dict[str, Any]:
    return {
        "id": service_id,
        "title": service_id.replace("-", " ").title(),
        "description": f"{hook_type} demo",
        "hookType": hook_type,
        "hookAddress": hook,
        "network": "cronos-testnet",
        "chainId": CHAIN_ID,
        "settlementRouter": ROUTER,
        "usdcAddress": USDC,
        "supportingContracts": supporting,
        "defaults": {"paymentAmount": "0.1", "facilitatorFee": "0", "payTo": MERCHANT},
    }


NFT_SERVICE = service_payload("nft-mint-demo", "nft-mint", NFT_HOOK, {"nftContract": NFT_CONTRACT})
REWARD_SERVICE = service_payload(
    "reward-points-demo", "reward-points", REWARD_HOOK, {"rewardToken": REWARD_TOKEN}
)
SPLIT_SERVICE = service_payload("split-demo", "transfer-split", SPLIT_HOOK, {})


class StubChain:
    """
    In-memory settlement router and stablecoin.

    Mirrors what the deployed router enforces: the commitment binds every
    parameter, the authorization must be signed by the payer over that
    commitment, the window must be open at "block time", and a commitment
    settles at most once.
    """

    def __init__(self, chain_id: int = CHAIN_ID) -> None:
        self.chain_id = chain_id
        self.token_name = "Bridged USDC (Stargate)"
        self.token_version = "1"
        self.balance = 10**9
        self.block_time_offset = 0
        self.settled: set[bytes] = set()
        self.pending: list[bytes] = []
        self.sent: list[bytes] = []
        self.metadata_reads = 0
        self.receipt_logs: list[dict[str, Any]] = []
        self.receipt_status = 1
        self.block_number = 1000
        self.closed = False

    def block_time(self) -> int:
        return int(time.time()) + self.block_time_offset

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_token_metadata(self, token: str) -> tuple[str, str]:
        self.metadata_reads += 1
        return self.token_name, self.token_version

    async def get_token_balance(self, token: str, owner: str) -> int:
        return self.balance

    def commitment_for(self, router: str, params) -> bytes:
        return Web3.keccak(
            encode(_COMMITMENT_TYPES, [self.chain_id, router, *params.commitment_args()])
        )

    async def calculate_commitment(self, router: str, params) -> bytes:
        return bytes(self.commitment_for(router, params))

    async def build_settle_transaction(
        self, router: str, params, authorization: Authorization, sender: str
    ) -> dict[str, Any]:
        commitment = self.commitment_for(router, params)
        if authorization.message.nonce != commitment:
            raise SettlementRevertedError("Settlement rejected by router: InvalidCommitment")
        if verify_authorization(authorization) != params.from_address:
            raise SettlementRevertedError("Settlement rejected by router: invalid signature")
        if not params.is_valid_at(self.block_time()):
            raise SettlementRevertedError(
                "Settlement rejected by router: FiatTokenV2: authorization is expired"
            )
        if commitment in self.settled:
            raise SettlementRevertedError(
                "Settlement rejected by router: execution reverted: AlreadySettled"
            )
        self.pending.append(bytes(commitment))
        return {
            "to": router,
            "data": "0x" + commitment.hex().removeprefix("0x"),
            "gas": 300_000,
            "maxFeePerGas": 2 * 10**9,
            "maxPriorityFeePerGas": 10**9,
            "nonce": len(self.sent),
            "chainId": self.chain_id,
            "value": 0,
        }

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        self.sent.append(bytes(raw_transaction))
        self.settled.add(self.pending.pop())
        return Web3.to_hex(Web3.keccak(raw_transaction))

    async def wait_for_receipt(self, tx_hash: str, timeout: float = 120) -> dict[str, Any]:
        self.block_number += 1
        return {
            "transactionHash": tx_hash,
            "blockNumber": self.block_number,
            "status": self.receipt_status,
            "gasUsed": 180_000,
            "logs": list(self.receipt_logs),
        }

    async def aclose(self) -> None:
        self.closed = True


def returns(types: list[str], values: list[Any]) -> str:
    """ABI-encoded eth_call result."""
    return "0x" + encode(types, values).hex()


def selector(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


class RpcError(Exception):
    """JSON-RPC error object a FakeProvider handler answers with."""

    def __init__(self, message: str, code: int = -32000, data: Any = None) -> None:
        super().__init__(message)
        self.payload: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            self.payload["data"] = data


def revert(reason: str) -> RpcError:
    return RpcError(
        f"execution reverted: {reason}",
        code=3,
        data=selector("Error(string)") + encode(["string"], [reason]).hex(),
    )


class FakeProvider(AsyncBaseProvider):
    """
    JSON-RPC node answering from canned results.

    ``contracts`` maps (address, selector) to an eth_call result or an
    RpcError; any other eth_call returns empty data. ``handlers`` override
    whole methods.
    """

    def __init__(self, chain_id: int = CHAIN_ID) -> None:
        super().__init__()
        self.chain_id = chain_id
        self.code: dict[str, str] = {}
        self.contracts: dict[tuple[str, str], Any] = {}
        self.handlers: dict[str, Callable[[Any], Any]] = {}
        self.requests: list[tuple[str, Any]] = []

    def deploy(self, contract: str, results: dict[str, Any]) -> None:
        self.code[contract.lower()] = "0x6080"
        for signature, result in results.items():
            self.contracts[(contract.lower(), selector(signature))] = result

    def calls_to(self, signature: str) -> list[dict[str, Any]]:
        return [
            params[0]
            for method, params in self.requests
            if method == "eth_call" and params[0]["data"][:10] == selector(signature)
        ]

    def _answer(self, method: str, params: Any) -> Any:
        if method in self.handlers:
            return self.handlers[method](params)
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "eth_getCode":
            return self.code.get(params[0].lower(), "0x")
        if method == "eth_call":
            tx = params[0]
            return self.contracts.get((tx["to"].lower(), tx["data"][:10]), "0x")
        raise AssertionError(f"unexpected RPC method {method}")

    async def make_request(self, method: RPCEndpoint, params: Any) -> RPCResponse:
        self.requests.append((method, params))
        try:
            result = self._answer(method, params)
            if isinstance(result, RpcError):
                raise result
        except RpcError as e:
            return {"jsonrpc": "2.0", "id": len(self.requests), "error": e.payload}
        return {"jsonrpc": "2.0", "id": len(self.requests), "result": result}

    async def is_connected(self, show_traceback: bool = False) -> bool:
        return True


def fake_chain(provider: FakeProvider) -> ChainClient:
    return ChainClient("http://fake-node", w3=AsyncWeb3(provider))


class StubRegistry:
    base_url = "https://resources.test"

    def __init__(self, services: list[dict[str, Any]]) -> None:
        self.services = [ServiceDescriptor.model_validate(s) for s in services]
        self.closed = False

    async def list_services(self, *, refresh: bool = False) -> list[ServiceDescriptor]:
        return list(self.services)

    async def get_service(self, service_id: str) -> ServiceDescriptor:
        return find_service(self.services, service_id)

    async def aclose(self) -> None:
        self.closed = True


class WalletError(Exception):
    def __init__(self, message: str, code: Any = None) -> None:
        super().__init__(message)
        self.code = code


class StubWallet:
    """Browser-wallet stand-in: signs eth_signTypedData_v4 payloads."""

    def __init__(
        self, private_key: str = PAYER_KEY, chain_id: int = CHAIN_ID, reject: bool = False
    ) -> None:
        self.account = Account.from_key(private_key)
        self.chain_id = chain_id
        self.reject = reject
        self.sign_requests: list[dict[str, Any]] = []
        self.chain: Optional[StubChain] = None

    async def get_address(self) -> str:
        return self.account.address.lower()

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> Optional[str]:
        self.sign_requests.append(typed_data)
        if self.reject:
            raise WalletError("MetaMask Tx Signature: User denied transaction signature.", 4001)
        message = dict(typed_data["message"])
        for key in ("value", "validAfter", "validBefore"):
            message[key] = int(message[key])
        message["nonce"] = bytes.fromhex(message["nonce"].removeprefix("0x"))
        signable = encode_typed_data(
            domain_data=typed_data["domain"],
            message_types={"TransferWithAuthorization": typed_data["types"]["TransferWithAuthorization"]},
            message_data=message,
        )
        return self.account.sign_message(signable).signature.hex()

    async def send_transaction(self, transaction: dict[str, Any]) -> str:
        assert self.chain is not None
        tx = dict(transaction, nonce=len(self.chain.sent))
        signed = self.account.sign_transaction(tx)
        return await self.chain.send_raw_transaction(signed.raw_transaction)
