"""
Hook data codec.

Builds the opaque ``hookData`` payload handed to the hook contract by the
settlement router. The layout depends on the hook type:

    nft-mint        abi.encode((address nftContract))
    reward-points   abi.encode((address rewardToken))
    transfer-split  abi.encode((address recipient, uint16 bips)[])  or b"" for
                    a plain transfer to payTo

Example:
    >>> data = encode_hook_data(
    ...     HookType.TRANSFER_SPLIT,
    ...     {},
    ...     [SplitRecipient(recipient="0x...", bips=8000),
    ...      SplitRecipient(recipient="0x...", bips=2000)],
    ... )
    >>> decode_hook_data(HookType.TRANSFER_SPLIT, data).splits
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

from eth_abi import decode, encode
from web3 import Web3

from cronos_x402_sdk.exceptions import HookValidationError
from cronos_x402_sdk.models import HookType, SplitRecipient
from cronos_x402_sdk.networks.base import is_valid_address, is_zero_address

TOTAL_BIPS = 10_000

# supportingContracts key holding the address each single-address hook needs
SUPPORTING_CONTRACT_KEYS = {
    HookType.NFT_MINT: "nftContract",
    HookType.REWARD_POINTS: "rewardToken",
}

_SINGLE_ADDRESS_TYPES = ["(address)"]
_SPLIT_TYPES = ["(address,uint16)[]"]


@dataclass(frozen=True)
class HookPayload:
    """Decoded hook data."""

    hook_type: HookType
    contract: Optional[str] = None
    splits: tuple[SplitRecipient, ...] = field(default_factory=tuple)


SplitLike = Union[SplitRecipient, Mapping]


def _coerce_splits(splits: Optional[Iterable[SplitLike]]) -> list[SplitRecipient]:
    result = []
    for item in splits or []:
        if isinstance(item, SplitRecipient):
            result.append(item)
        else:
            try:
                result.append(SplitRecipient.model_validate(item))
            except ValueError as e:
                raise HookValidationError(f"Invalid split entry {item!r}: {e}") from None
    return result


def validate_splits(splits: Optional[Iterable[SplitLike]]) -> list[SplitRecipient]:
    """
    Validate a transfer-split recipient set.

    Every address must be well formed, every share must be in (0, 10000] bips,
    and the shares must add up to exactly 10000. An empty set is valid and
    means "pay payTo directly".

    Returns:
        The splits as SplitRecipient models

    Raises:
        HookValidationError: On the first rule that fails
    """
    recipients = _coerce_splits(splits)
    for split in recipients:
        if not is_valid_address(split.recipient):
            raise HookValidationError(f"Invalid address: {split.recipient}")
        if split.bips <= 0 or split.bips > TOTAL_BIPS:
            raise HookValidationError(
                f"Invalid bips value: {split.bips}. Must be between 1 and {TOTAL_BIPS}."
            )

    if recipients:
        total = sum(s.bips for s in recipients)
        if total != TOTAL_BIPS:
            raise HookValidationError(
                f"Total bips must equal {TOTAL_BIPS} (100%), got {total}"
            )
    return recipients


def required_supporting_contract(
    hook_type: HookType, supporting_contracts: Optional[Mapping[str, str]]
) -> str:
    """
    Resolve the supporting contract a single-address hook needs.

    A missing or zero address is a configuration problem of the service, not
    something to encode and let the hook trip over.
    """
    key = SUPPORTING_CONTRACT_KEYS[hook_type]
    address = (supporting_contracts or {}).get(key)
    if is_zero_address(address):
        raise HookValidationError(
            f"Service is missing supportingContracts.{key} required by {hook_type.value} hook"
        )
    if not is_valid_address(address):
        raise HookValidationError(f"Invalid address for supportingContracts.{key}: {address}")
    return Web3.to_checksum_address(address)


def encode_hook_data(
    hook_type: HookType,
    supporting_contracts: Optional[Mapping[str, str]] = None,
    splits: Optional[Iterable[SplitLike]] = None,
) -> bytes:
    """
    Encode the hook payload for a service.

    Args:
        hook_type: Hook type of the service
        supporting_contracts: Service's supportingContracts map
        splits: Recipients for transfer-split (ignored by other hooks)

    Returns:
        ABI-encoded hookData (b"" for a transfer-split without splits)

    Raises:
        HookValidationError: Missing supporting contract or invalid splits
    """
    hook_type = HookType(hook_type)

    if hook_type in SUPPORTING_CONTRACT_KEYS:
        address = required_supporting_contract(hook_type, supporting_contracts)
        return encode(_SINGLE_ADDRESS_TYPES, [(address,)])

    recipients = validate_splits(splits)
    if not recipients:
        return b""
    return encode(
        _SPLIT_TYPES,
        [[(Web3.to_checksum_address(s.recipient), s.bips) for s in recipients]],
    )


def decode_hook_data(hook_type: HookType, data: bytes) -> HookPayload:
    """Exact inverse of encode_hook_data. Used for diagnostics and tests."""
    hook_type = HookType(hook_type)

    if hook_type in SUPPORTING_CONTRACT_KEYS:
        ((address,),) = decode(_SINGLE_ADDRESS_TYPES, data)
        return HookPayload(hook_type=hook_type, contract=Web3.to_checksum_address(address))

    if not data:
        return HookPayload(hook_type=hook_type)

    (entries,) = decode(_SPLIT_TYPES, data)
    return HookPayload(
        hook_type=hook_type,
        splits=tuple(
            SplitRecipient(recipient=Web3.to_checksum_address(addr), bips=bips)
            for addr, bips in entries
        ),
    )
