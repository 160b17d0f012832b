"""
Authorization signers.

Two interchangeable ways to produce the EIP-3009 TransferWithAuthorization
signature:

- HeldKeySigner: a private key held by this process (developer wallet,
  automated flows). No user interaction.
- DelegatedWalletSigner: an external wallet (browser wallet bridge, remote
  signer). The call waits for the wallet holder for as long as it takes; a
  decline surfaces as UserRejectedError.

Both derive the EIP-712 domain the same way before asking for a signature:
the connected chain id must equal the service's chain id, and the token's
name/version are read from the deployed contract. A signature over the wrong
domain is cryptographically valid but useless on-chain, so a mismatch aborts
before signing.

Example:
    >>> signer = HeldKeySigner(os.environ["CRONOS_DEVELOPER_PRIVATE_KEY"])
    >>> authorization = await signer.sign(chain, service, params, commitment)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Optional, Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from cronos_x402_sdk.exceptions import (
    ChainMismatchError,
    ConfigurationError,
    SigningError,
    UserRejectedError,
)
from cronos_x402_sdk.models import (
    TRANSFER_WITH_AUTHORIZATION_TYPES,
    Authorization,
    ServiceDescriptor,
    SettlementParameters,
    TransferAuthorizationMessage,
    TypedDataDomain,
)

logger = logging.getLogger(__name__)

# EIP-1193 "user rejected request" and the ethers.js equivalent
_REJECTION_CODES = {4001, "4001", "ACTION_REJECTED"}


class ChainReader(Protocol):
    async def get_chain_id(self) -> int:
        ...

    async def get_token_metadata(self, token: str) -> tuple[str, str]:
        ...

    async def send_raw_transaction(self, raw_transaction: bytes) -> str:
        ...


@runtime_checkable
class WalletConnection(Protocol):
    """
    Externally managed signing capability.

    ``sign_typed_data`` receives the full eth_signTypedData_v4 payload and
    returns a 0x-prefixed signature, or None / raises when the holder
    declines.
    """

    async def get_address(self) -> str:
        ...

    async def get_chain_id(self) -> int:
        ...

    async def sign_typed_data(self, typed_data: dict[str, Any]) -> Optional[str]:
        ...

    async def send_transaction(self, transaction: dict[str, Any]) -> str:
        ...


def _hex_signature(signature: Any) -> str:
    sig_hex = signature.hex() if isinstance(signature, (bytes, bytearray)) else str(signature)
    # HexBytes.hex() may include 0x prefix in newer versions
    return sig_hex if sig_hex.startswith("0x") else "0x" + sig_hex


def _signable(authorization: Authorization):
    return encode_typed_data(
        domain_data=authorization.domain.to_dict(),
        message_types=TRANSFER_WITH_AUTHORIZATION_TYPES,
        message_data=authorization.message.to_dict(),
    )


def verify_authorization(authorization: Authorization) -> str:
    """Recover the address that signed an authorization."""
    return Account.recover_message(_signable(authorization), signature=authorization.signature)


def is_rejection(error: BaseException) -> bool:
    """Whether a wallet error means the holder declined the request."""
    if isinstance(error, UserRejectedError):
        return True
    if getattr(error, "code", None) in _REJECTION_CODES:
        return True
    text = str(error).lower()
    return "user rejected" in text or "user denied" in text


class SigningStrategy(ABC):
    """Common interface of both signing modes."""

    mode: str = ""

    @abstractmethod
    async def get_address(self) -> str:
        """Payer address."""

    @abstractmethod
    async def connected_chain_id(self, chain: ChainReader) -> int:
        """Chain id the signer is actually connected to."""

    @abstractmethod
    async def sign_typed_data(self, authorization: Authorization) -> str:
        """Sign an unsigned authorization and return the 0x signature."""

    @abstractmethod
    async def send_transaction(self, chain: ChainReader, transaction: dict[str, Any]) -> str:
        """Broadcast a transaction from the payer and return its hash."""

    async def ensure_chain(self, chain: ChainReader, expected_chain_id: int) -> int:
        """
        Return the connected chain id, which must be ``expected_chain_id``.

        Raises:
            ChainMismatchError: Connected chain differs from the expected one
        """
        connected = await self.connected_chain_id(chain)
        if connected != expected_chain_id:
            raise ChainMismatchError(connected, expected_chain_id)
        return connected

    async def resolve_token_domain(
        self, chain: ChainReader, token: str, expected_chain_id: int
    ) -> TypedDataDomain:
        """Read the EIP-712 domain of ``token`` after checking the chain."""
        connected = await self.ensure_chain(chain, expected_chain_id)
        name, version = await chain.get_token_metadata(token)
        return TypedDataDomain(
            name=name,
            version=version,
            chain_id=connected,
            verifying_contract=Web3.to_checksum_address(token),
        )

    async def resolve_domain(
        self, chain: ChainReader, service: ServiceDescriptor
    ) -> TypedDataDomain:
        """
        Derive the token's EIP-712 domain for this service.

        Raises:
            ChainMismatchError: Connected chain differs from the service chain
        """
        return await self.resolve_token_domain(
            chain, service.stablecoin_address, service.chain_id
        )

    async def sign(
        self,
        chain: ChainReader,
        service: ServiceDescriptor,
        params: SettlementParameters,
        commitment: bytes,
    ) -> Authorization:
        """
        Sign the transfer authorization for a settlement.

        The authorization lets the router (``to``) pull ``params.value`` from
        the payer, with the commitment as nonce.
        """
        address = await self.get_address()
        if address.lower() != params.from_address.lower():
            raise SigningError(
                f"Signer {address} is not the payer {params.from_address} of these parameters"
            )

        domain = await self.resolve_domain(chain, service)
        draft = Authorization(
            domain=domain,
            message=TransferAuthorizationMessage(
                from_address=Web3.to_checksum_address(params.from_address),
                to=Web3.to_checksum_address(service.settlement_router_address),
                value=params.value,
                valid_after=params.valid_after,
                valid_before=params.valid_before,
                nonce=commitment,
            ),
        )
        logger.info(
            "Requesting %s signature for %s (domain %s v%s, chain %s)",
            self.mode,
            service.id,
            domain.name,
            domain.version,
            domain.chain_id,
        )
        signature = await self.sign_typed_data(draft)
        return replace(draft, signature=signature)


class HeldKeySigner(SigningStrategy):
    """
    Signs with a private key resident in this process.

    Args:
        private_key: Hex-encoded private key
    """

    mode = "held-key"

    def __init__(self, private_key: str):
        try:
            self.account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid private key: {e}") from None

    @property
    def address(self) -> str:
        return self.account.address

    async def get_address(self) -> str:
        return self.account.address

    async def connected_chain_id(self, chain: ChainReader) -> int:
        return await chain.get_chain_id()

    async def sign_typed_data(self, authorization: Authorization) -> str:
        signed = self.account.sign_message(_signable(authorization))
        return _hex_signature(signed.signature)

    async def send_transaction(self, chain: ChainReader, transaction: dict[str, Any]) -> str:
        signed = self.account.sign_transaction(transaction)
        return await chain.send_raw_transaction(signed.raw_transaction)


class DelegatedWalletSigner(SigningStrategy):
    """
    Signs through an external wallet.

    Wallet calls are awaited without a timeout. The authorization's
    validBefore bounds how long a late signature stays usable.
    """

    mode = "delegated-wallet"

    def __init__(self, wallet: WalletConnection):
        self.wallet = wallet

    async def get_address(self) -> str:
        return Web3.to_checksum_address(await self.wallet.get_address())

    async def connected_chain_id(self, chain: ChainReader) -> int:
        return int(await self.wallet.get_chain_id())

    async def sign_typed_data(self, authorization: Authorization) -> str:
        try:
            signature = await self.wallet.sign_typed_data(authorization.to_typed_data())
        except Exception as e:
            if is_rejection(e):
                raise UserRejectedError() from e
            raise SigningError(f"Wallet failed to sign: {e}") from e

        if not signature:
            raise UserRejectedError()
        return _hex_signature(signature)

    async def send_transaction(self, chain: ChainReader, transaction: dict[str, Any]) -> str:
        # the wallet tracks its own account nonce
        tx = {k: v for k, v in transaction.items() if k != "nonce"}
        try:
            return await self.wallet.send_transaction(tx)
        except Exception as e:
            if is_rejection(e):
                raise UserRejectedError() from e
            raise
