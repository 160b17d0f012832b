import pytest
from eth_abi import decode

from cronos_x402_sdk.exceptions import HookValidationError
from cronos_x402_sdk.hook_codec import decode_hook_data, encode_hook_data, validate_splits
from cronos_x402_sdk.models import HookType, SplitRecipient
from cronos_x402_sdk.networks import ZERO_ADDRESS
from tests.helpers import ALICE, BOB, NFT_CONTRACT, REWARD_TOKEN


def test_nft_mint_encodes_single_address_tuple() -> None:
    data = encode_hook_data(HookType.NFT_MINT, {"nftContract": NFT_CONTRACT.lower()})

    assert len(data) == 32
    assert decode(["(address)"], data)[0][0].lower() == NFT_CONTRACT.lower()
    assert decode_hook_data(HookType.NFT_MINT, data).contract == NFT_CONTRACT


def test_reward_points_round_trip() -> None:
    data = encode_hook_data("reward-points", {"rewardToken": REWARD_TOKEN})

    payload = decode_hook_data("reward-points", data)
    assert payload.hook_type == HookType.REWARD_POINTS
    assert payload.contract == REWARD_TOKEN


def test_transfer_split_round_trip_preserves_order() -> None:
    splits = [{"recipient": ALICE, "bips": 8000}, {"recipient": BOB, "bips": 2000}]

    data = encode_hook_data(HookType.TRANSFER_SPLIT, splits=splits)

    payload = decode_hook_data(HookType.TRANSFER_SPLIT, data)
    assert payload.splits == (
        SplitRecipient(recipient=ALICE, bips=8000),
        SplitRecipient(recipient=BOB, bips=2000),
    )


def test_transfer_split_without_splits_is_empty_hook_data() -> None:
    assert encode_hook_data(HookType.TRANSFER_SPLIT) == b""
    assert encode_hook_data(HookType.TRANSFER_SPLIT, splits=[]) == b""
    assert decode_hook_data(HookType.TRANSFER_SPLIT, b"").splits == ()


def test_single_recipient_with_full_share_is_accepted() -> None:
    recipients = validate_splits([{"recipient": ALICE, "bips": 10000}])
    assert recipients[0].percentage == "100%"


@pytest.mark.parametrize(
    "splits, message",
    [
        ([(ALICE, 8000), (BOB, 1999)], "got 9999"),
        ([(ALICE, 8000), (BOB, 2001)], "got 10001"),
        ([(ALICE, 10000), (BOB, 0)], "Invalid bips value: 0"),
        ([(ALICE, 10001)], "Invalid bips value: 10001"),
        ([("0x1234", 10000)], "Invalid address: 0x1234"),
    ],
)
def test_invalid_splits_are_rejected(splits, message) -> None:
    entries = [{"recipient": r, "bips": b} for r, b in splits]

    with pytest.raises(HookValidationError, match=message):
        validate_splits(entries)
    with pytest.raises(HookValidationError):
        encode_hook_data(HookType.TRANSFER_SPLIT, splits=entries)


def test_malformed_split_entry_is_a_validation_error() -> None:
    with pytest.raises(HookValidationError, match="Invalid split entry"):
        validate_splits([{"recipient": ALICE}])


@pytest.mark.parametrize("supporting", [{}, None, {"nftContract": ZERO_ADDRESS}])
def test_missing_supporting_contract_is_rejected(supporting) -> None:
    with pytest.raises(HookValidationError, match="supportingContracts.nftContract"):
        encode_hook_data(HookType.NFT_MINT, supporting)


def test_malformed_supporting_contract_is_rejected() -> None:
    with pytest.raises(HookValidationError, match="Invalid address"):
        encode_hook_data(HookType.REWARD_POINTS, {"rewardToken": "not-an-address"})


def test_percentage_display() -> None:
    assert SplitRecipient(recipient=ALICE, bips=8000).percentage == "80%"
    assert SplitRecipient(recipient=ALICE, bips=2550).percentage == "25.5%"
    assert SplitRecipient(recipient=ALICE, bips=1).percentage == "0.01%"
