"""
Command-line example: execute a service with the developer wallet.

Environment variables:
    RESOURCE_SERVICE_URL: Resource service publishing /api/x402/services
    CRONOS_DEVELOPER_PRIVATE_KEY: Payer key (holds devUSDC.e and tCRO)

Usage:
    python examples/execute_example.py nft-mint-demo
    python examples/execute_example.py split-demo 0xAlice:8000 0xBob:2000
"""

import asyncio
import logging
import sys

from cronos_x402_sdk import (
    CallbackSink,
    ChainClient,
    ExecutionOrchestrator,
    HeldKeySigner,
    ServiceRegistryClient,
    X402Settings,
)

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def parse_splits(args: list[str]) -> list[dict]:
    splits = []
    for arg in args:
        recipient, _, bips = arg.partition(":")
        splits.append({"recipient": recipient, "bips": int(bips)})
    return splits


def print_event(event) -> None:
    step = event.step.value if event.step else "-"
    print(f"[{step:>8}] {event.message}")


async def main(service_id: str, splits: list[dict]) -> int:
    settings = X402Settings.from_env()
    signer = HeldKeySigner(settings.require_private_key())

    async with ServiceRegistryClient(settings.require_registry_url()) as registry, ChainClient(
        settings.resolved_rpc_url()
    ) as chain:
        orchestrator = ExecutionOrchestrator(
            registry,
            chain,
            validity_seconds=settings.authorization_validity_seconds,
            confirmation_timeout=settings.confirmation_timeout,
        )
        result = await orchestrator.execute(
            service_id, splits or None, signer=signer, sinks=[CallbackSink(print_event)]
        )

    if result.success:
        print(f"Paid {result.amount} in {result.transaction_hash}")
        print(f"Explorer: {result.explorer_url}")
        return 0
    print(f"Failed ({result.error_category}): {result.error}")
    return 1


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], parse_splits(sys.argv[2:]))))
