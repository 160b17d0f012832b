"""
FastAPI integration.

Mounts the server-side execution endpoints on an APIRouter:

    POST /api/x402/execute            run a session, progress as SSE
    GET  /api/x402/services           services published by the registry
    GET  /api/x402/services/{id}      one service
    GET  /api/x402/wallet-status      whether a developer wallet is configured

Executions started here sign with the developer key from settings
(held-key mode). Browser flows that sign in the user's wallet drive the
orchestrator themselves with a DelegatedWalletSigner.

Example:
    >>> from fastapi import FastAPI
    >>> from cronos_x402_sdk.integrations.fastapi_integration import create_x402_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_x402_router(X402Settings.from_env()))
"""

import logging
from typing import Any, AsyncIterator, Callable, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from cronos_x402_sdk.chain import ChainClient
from cronos_x402_sdk.config import X402Settings
from cronos_x402_sdk.exceptions import (
    ConfigurationError,
    DiscoveryError,
    ServiceNotFoundError,
    X402Error,
)
from cronos_x402_sdk.models import ExecutionStep, ProgressEvent
from cronos_x402_sdk.orchestrator import ExecutionOrchestrator
from cronos_x402_sdk.registry import ServiceRegistryClient
from cronos_x402_sdk.signers import HeldKeySigner

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

RegistryFactory = Callable[[str], Any]
ChainFactory = Callable[[], Any]


class ExecuteRequest(BaseModel):
    """Body of POST /execute."""

    service_id: str = Field(..., alias="serviceId", min_length=1)
    # validated by the session so bad splits arrive as an error event
    splits: Optional[list[dict[str, Any]]] = None

    class Config:
        populate_by_name = True


class WalletStatus(BaseModel):
    configured: bool
    address: Optional[str] = None
    error: Optional[str] = None


def error_event(error: X402Error) -> ProgressEvent:
    return ProgressEvent(
        type="error",
        message=error.message,
        step=ExecutionStep.ERROR,
        data={"category": error.category},
    )


def create_x402_router(
    settings: Optional[X402Settings] = None,
    *,
    registry_factory: Optional[RegistryFactory] = None,
    chain_factory: Optional[ChainFactory] = None,
    prefix: str = "/api/x402",
) -> APIRouter:
    """
    Build the x402 APIRouter.

    Args:
        settings: SDK settings (defaults to X402Settings.from_env())
        registry_factory: Builds a registry client for a base URL
        chain_factory: Builds the chain client used by one execution
        prefix: Route prefix
    """
    if settings is None:
        settings = X402Settings.from_env()

    def default_registry(base_url: str) -> ServiceRegistryClient:
        return ServiceRegistryClient(base_url, timeout=settings.request_timeout)

    def default_chain() -> ChainClient:
        return ChainClient(settings.resolved_rpc_url())

    make_registry = registry_factory or default_registry
    make_chain = chain_factory or default_chain

    router = APIRouter(prefix=prefix, tags=["x402"])

    async def execution_events(request: ExecuteRequest) -> AsyncIterator[str]:
        try:
            registry_url = settings.require_registry_url()
            signer = HeldKeySigner(settings.require_private_key())
        except X402Error as e:
            logger.warning("Execution refused: %s", e.message)
            yield error_event(e).to_sse()
            return

        registry = make_registry(registry_url)
        chain = make_chain()
        try:
            orchestrator = ExecutionOrchestrator(
                registry,
                chain,
                validity_seconds=settings.authorization_validity_seconds,
                confirmation_timeout=settings.confirmation_timeout,
            )
            async for event in orchestrator.stream(
                request.service_id, request.splits, signer=signer
            ):
                yield event.to_sse()
        finally:
            await registry.aclose()
            await chain.aclose()

    @router.post("/execute")
    async def execute(request: ExecuteRequest) -> StreamingResponse:
        return StreamingResponse(
            execution_events(request),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @router.get("/services")
    async def list_services() -> dict[str, Any]:
        registry = _open_registry(settings, make_registry)
        try:
            services = await registry.list_services()
        except DiscoveryError as e:
            raise HTTPException(status_code=502, detail=e.to_dict()) from e
        finally:
            await registry.aclose()
        return {"services": [s.model_dump(mode="json", by_alias=True) for s in services]}

    @router.get("/services/{service_id}")
    async def get_service(service_id: str) -> dict[str, Any]:
        registry = _open_registry(settings, make_registry)
        try:
            service = await registry.get_service(service_id)
        except ServiceNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.to_dict()) from e
        except DiscoveryError as e:
            raise HTTPException(status_code=502, detail=e.to_dict()) from e
        finally:
            await registry.aclose()
        return service.model_dump(mode="json", by_alias=True)

    @router.get("/wallet-status", response_model=WalletStatus, response_model_exclude_none=True)
    async def wallet_status() -> WalletStatus:
        try:
            signer = HeldKeySigner(settings.require_private_key())
        except ConfigurationError as e:
            return WalletStatus(configured=False, error=e.message)
        return WalletStatus(configured=True, address=signer.address)

    return router


def _open_registry(settings: X402Settings, make_registry: RegistryFactory) -> Any:
    try:
        return make_registry(settings.require_registry_url())
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=e.to_dict()) from e
