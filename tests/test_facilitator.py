import asyncio
import base64
import json

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from cronos_x402_sdk.exceptions import ConfigurationError, ValidationError
from cronos_x402_sdk.facilitator import (
    FacilitatorClient,
    FacilitatorPaymentFlow,
    PaymentParams,
    PaymentStatus,
    parse_payment_params,
)
from cronos_x402_sdk.models import TRANSFER_WITH_AUTHORIZATION_TYPES
from cronos_x402_sdk.networks import CRONOS_TESTNET
from tests.helpers import MERCHANT, FakeProvider, fake_chain, returns

FACILITATOR_URL = "https://facilitator.test/v2/x402"
TX_HASH = "0x" + "ab" * 32


class FakeFacilitator:
    def __init__(self, *, valid=True, tx_hash=TX_HASH, settle_status=200) -> None:
        self.valid = valid
        self.tx_hash = tx_hash
        self.settle_status = settle_status
        self.requests: list[tuple[str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content) if request.content else {}
        self.requests.append((path, body))
        if path == "supported":
            return httpx.Response(200, json={"kinds": [{"scheme": "exact", "network": "cronos-testnet"}]})
        if path == "verify":
            if self.valid:
                return httpx.Response(200, json={"isValid": True})
            return httpx.Response(200, json={"isValid": False, "invalidReason": "invalid_signature"})
        if self.settle_status != 200:
            return httpx.Response(self.settle_status, json={"error": "settlement failed"})
        return httpx.Response(200, json={"txHash": self.tx_hash, "network": "cronos-testnet"})


def _client(fake: FakeFacilitator) -> FacilitatorClient:
    return FacilitatorClient(
        FACILITATOR_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(fake))
    )


def _with_flow(fake: FakeFacilitator, signer, action, *, chain=None):
    async def run():
        async with _client(fake) as facilitator:
            flow = FacilitatorPaymentFlow("cronos-testnet", facilitator, signer, chain=chain)
            return await action(flow)

    return asyncio.run(run())


def _params() -> PaymentParams:
    return PaymentParams(recipient_address=MERCHANT, amount="1000000", description="Coffee")


def _recover(payload: dict, domain: dict) -> str:
    signable = encode_typed_data(
        domain_data=domain,
        message_types=TRANSFER_WITH_AUTHORIZATION_TYPES,
        message_data={
            "from": payload["from"],
            "to": payload["to"],
            "value": int(payload["value"]),
            "validAfter": 0,
            "validBefore": payload["validBefore"],
            "nonce": bytes.fromhex(payload["nonce"][2:]),
        },
    )
    return Account.recover_message(signable, signature=payload["signature"])


def _testnet_token_node(name: str, version: str, chain_id: int = 338) -> FakeProvider:
    provider = FakeProvider(chain_id=chain_id)
    provider.deploy(
        CRONOS_TESTNET.usdc_address,
        {"name()": returns(["string"], [name]), "version()": returns(["string"], [version])},
    )
    return provider


def test_successful_payment_goes_through_all_states(signer) -> None:
    fake = FakeFacilitator()
    states = []

    result = _with_flow(fake, signer, lambda flow: flow.execute(_params(), on_status=states.append))

    assert result.success
    assert result.tx_hash == TX_HASH
    assert [s.status for s in states] == [
        PaymentStatus.GENERATING,
        PaymentStatus.GENERATING,
        PaymentStatus.VERIFYING,
        PaymentStatus.SETTLING,
        PaymentStatus.SUCCESS,
    ]
    assert [path for path, _ in fake.requests] == ["verify", "settle"]
    verify_body = fake.requests[0][1]
    assert verify_body["x402Version"] == 1
    assert verify_body["paymentRequirements"]["payTo"] == MERCHANT
    assert verify_body["paymentRequirements"]["maxAmountRequired"] == "1000000"
    assert verify_body["paymentRequirements"]["network"] == "cronos-testnet"
    assert verify_body["paymentRequirements"]["description"] == "Coffee"


def test_failed_verification_never_settles(signer) -> None:
    fake = FakeFacilitator(valid=False)
    states = []

    result = _with_flow(fake, signer, lambda flow: flow.execute(_params(), on_status=states.append))

    assert not result.success
    assert result.error == "Payment verification failed: invalid_signature"
    assert [path for path, _ in fake.requests] == ["verify"]
    assert states[-1].status == PaymentStatus.ERROR


def test_settlement_without_tx_hash_is_an_error(signer) -> None:
    result = _with_flow(
        FakeFacilitator(tx_hash=None), signer, lambda flow: flow.execute(_params())
    )

    assert not result.success
    assert "no transaction hash" in result.error


def test_facilitator_http_error_is_reported(signer) -> None:
    states = []

    async def on_status(state):
        states.append(state)

    result = _with_flow(
        FakeFacilitator(settle_status=500),
        signer,
        lambda flow: flow.execute(_params(), on_status=on_status),
    )

    assert not result.success
    assert "settlement failed" in result.error
    assert states[-1].status == PaymentStatus.ERROR


def test_payment_header_without_chain_uses_configured_domain(signer) -> None:
    header = _with_flow(
        FakeFacilitator(),
        signer,
        lambda flow: flow.generate_header(_params(), valid_before=2_000_000_000),
    )

    decoded = json.loads(base64.b64decode(header))
    assert decoded["scheme"] == "exact"
    assert decoded["network"] == "cronos-testnet"
    payload = decoded["payload"]
    assert payload["to"] == MERCHANT
    assert payload["validBefore"] == 2_000_000_000
    assert payload["asset"] == CRONOS_TESTNET.usdc_address

    domain = {
        "name": CRONOS_TESTNET.usdc_domain_name,
        "version": CRONOS_TESTNET.usdc_domain_version,
        "chainId": CRONOS_TESTNET.chain_id,
        "verifyingContract": CRONOS_TESTNET.usdc_address,
    }
    assert _recover(payload, domain) == signer.address


def test_payment_is_signed_over_the_deployed_token_domain(signer) -> None:
    fake = FakeFacilitator()
    chain = fake_chain(_testnet_token_node("Bridged USDC (Stargate)", "1"))

    result = _with_flow(fake, signer, lambda flow: flow.execute(_params()), chain=chain)

    assert result.success
    verify_body = fake.requests[0][1]
    assert verify_body["paymentRequirements"]["extra"] == {
        "name": "Bridged USDC (Stargate)",
        "version": "1",
    }
    payload = json.loads(base64.b64decode(verify_body["paymentHeader"]))["payload"]
    live_domain = {
        "name": "Bridged USDC (Stargate)",
        "version": "1",
        "chainId": 338,
        "verifyingContract": CRONOS_TESTNET.usdc_address,
    }
    assert _recover(payload, live_domain) == signer.address


def test_payment_against_wrong_chain_node_is_not_signed(signer) -> None:
    fake = FakeFacilitator()
    provider = _testnet_token_node("USD Coin", "2", chain_id=25)
    states = []

    result = _with_flow(
        fake,
        signer,
        lambda flow: flow.execute(_params(), on_status=states.append),
        chain=fake_chain(provider),
    )

    assert not result.success
    assert "Current chainId: 25, expected: 338" in result.error
    assert fake.requests == []
    assert [method for method, _ in provider.requests if method == "eth_call"] == []
    assert states[-1].status == PaymentStatus.ERROR


def test_each_header_uses_a_fresh_nonce(signer) -> None:
    async def two_headers(flow):
        return [await flow.generate_header(_params()) for _ in range(2)]

    headers = _with_flow(FakeFacilitator(), signer, two_headers)

    nonces = {json.loads(base64.b64decode(h))["payload"]["nonce"] for h in headers}
    assert len(nonces) == 2


def test_get_supported() -> None:
    async def supported():
        async with _client(FakeFacilitator()) as facilitator:
            return await facilitator.get_supported()

    assert asyncio.run(supported())["kinds"][0]["network"] == "cronos-testnet"


@pytest.mark.parametrize(
    "data",
    [
        {"recipientAddress": "0x123", "amount": "1000"},
        {"recipientAddress": MERCHANT, "amount": "0"},
        {"recipientAddress": MERCHANT, "amount": "1.5"},
        {"recipientAddress": MERCHANT, "amount": "-5"},
    ],
)
def test_payment_params_validation(data) -> None:
    with pytest.raises(ValidationError, match="Invalid payment parameters"):
        parse_payment_params(data)


def test_unknown_network_is_configuration_error(signer) -> None:
    async def build():
        async with _client(FakeFacilitator()) as facilitator:
            FacilitatorPaymentFlow("no-such-chain", facilitator, signer)

    with pytest.raises(ConfigurationError, match="Unknown network"):
        asyncio.run(build())
