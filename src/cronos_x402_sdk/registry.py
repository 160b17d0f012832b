"""
Service registry client.

Fetches the service descriptors published by a resource service at
``GET {base_url}/api/x402/services`` (``{"services": [...]}``). Lookup by id
happens client-side over the returned list.

Example:
    >>> async with ServiceRegistryClient("https://resources.example") as registry:
    ...     service = await registry.get_service("nft-mint-demo")
"""

import logging
import time
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from cronos_x402_sdk.exceptions import DiscoveryError, ServiceNotFoundError
from cronos_x402_sdk.models import ServiceDescriptor

logger = logging.getLogger(__name__)

SERVICES_PATH = "/api/x402/services"


class ServiceRegistryClient:
    """
    Read-only client for the resource service's x402 registry.

    Args:
        base_url: Resource service base URL (RESOURCE_SERVICE_URL)
        timeout: Request timeout in seconds
        cache_ttl: Seconds to reuse the last fetched list (0 disables caching)
        client: Optional pre-configured httpx.AsyncClient
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        cache_ttl: float = 0.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.cache_ttl = cache_ttl
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._cache: Optional[tuple[float, list[ServiceDescriptor]]] = None

    async def __aenter__(self) -> "ServiceRegistryClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def list_services(self, *, refresh: bool = False) -> list[ServiceDescriptor]:
        """
        Fetch all published services.

        Entries that do not parse as service descriptors are skipped with a
        warning rather than failing the whole listing.

        Raises:
            DiscoveryError: Registry unreachable or response unusable
        """
        if not refresh and self._cache is not None:
            fetched_at, services = self._cache
            if time.monotonic() - fetched_at < self.cache_ttl:
                return services

        url = f"{self.base_url}{SERVICES_PATH}"
        try:
            response = await self._client.get(url, headers=self._get_headers())
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                f"Failed to fetch services: {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Failed to connect to service registry: {e}") from e
        except ValueError as e:
            raise DiscoveryError(f"Service registry returned invalid JSON: {e}") from e

        raw_services = body.get("services") if isinstance(body, dict) else None
        if not isinstance(raw_services, list):
            raise DiscoveryError("Service registry response has no 'services' list")

        services = []
        for raw in raw_services:
            try:
                services.append(ServiceDescriptor.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping malformed service %r: %s",
                    raw.get("id") if isinstance(raw, dict) else raw,
                    e,
                )

        self._cache = (time.monotonic(), services)
        return services

    async def get_service(self, service_id: str) -> ServiceDescriptor:
        """
        Look up one service by id.

        Raises:
            ServiceNotFoundError: No service with that id
            DiscoveryError: Registry unreachable
        """
        services = await self.list_services()
        return find_service(services, service_id)


def find_service(services: list[ServiceDescriptor], service_id: str) -> ServiceDescriptor:
    for service in services:
        if service.id == service_id:
            return service
    raise ServiceNotFoundError(service_id, [s.id for s in services])
