"""
Plain payment through the remote facilitator (no hook, no router).

Environment variables:
    CRONOS_DEVELOPER_PRIVATE_KEY: Payer key
    CRONOS_FACILITATOR_URL: Facilitator base URL (optional)

Usage:
    python examples/facilitator_example.py 0xRecipient 1000000
"""

import asyncio
import sys

from cronos_x402_sdk import (
    ChainClient,
    FacilitatorClient,
    FacilitatorPaymentFlow,
    HeldKeySigner,
    PaymentParams,
    X402Settings,
)


async def main(recipient: str, amount: str) -> int:
    settings = X402Settings.from_env()
    signer = HeldKeySigner(settings.require_private_key())

    async with FacilitatorClient(settings.facilitator_url) as facilitator, ChainClient(
        settings.resolved_rpc_url()
    ) as chain:
        flow = FacilitatorPaymentFlow(
            settings.network_config(), facilitator, signer, chain=chain
        )
        result = await flow.execute(
            PaymentParams(recipient_address=recipient, amount=amount),
            on_status=lambda state: print(state.status.value, state.current_step or ""),
        )

    if result.success:
        print(f"Settled: {settings.network_config().tx_url(result.tx_hash)}")
        return 0
    print(f"Payment failed: {result.error}")
    return 1


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2])))
