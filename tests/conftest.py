import pytest

from cronos_x402_sdk.models import ServiceDescriptor
from cronos_x402_sdk.signers import HeldKeySigner
from tests.helpers import (
    NFT_SERVICE,
    PAYER_KEY,
    REWARD_SERVICE,
    SPLIT_SERVICE,
    StubChain,
    StubRegistry,
)


@pytest.fixture
def chain() -> StubChain:
    return StubChain()


@pytest.fixture
def registry() -> StubRegistry:
    return StubRegistry([NFT_SERVICE, REWARD_SERVICE, SPLIT_SERVICE])


@pytest.fixture
def signer() -> HeldKeySigner:
    return HeldKeySigner(PAYER_KEY)


@pytest.fixture
def nft_service() -> ServiceDescriptor:
    return ServiceDescriptor.model_validate(NFT_SERVICE)


@pytest.fixture
def split_service() -> ServiceDescriptor:
    return ServiceDescriptor.model_validate(SPLIT_SERVICE)
