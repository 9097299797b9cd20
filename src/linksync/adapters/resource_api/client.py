"""HTTP gateway to the primary/secondary resource API."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from linksync.adapters.http_resilience import ResilientClient
from linksync.domain.errors import (
    ResourceGatewayError,
    ResourceNotFoundError,
    TransientResourceError,
)
from linksync.domain.model import ArchiveOutcome, ResourceKind

from .schema import (
    ArchiveRequest,
    ErrorPayload,
    OccupancyUpdate,
    PrimaryPayload,
    SecondaryPayload,
    StatusPayload,
)
from .translator import to_primary, to_secondary

if TYPE_CHECKING:
    from types import TracebackType

    from linksync.config.gateway import GatewayConfig
    from linksync.domain.model import PrimaryResource, SecondaryResource
    from linksync.domain.ports.gateway import ResourceGateway

log = getLogger(__name__)

_TRANSIENT_STATUS = frozenset({408, 425, 429})


def _error_message(response: httpx.Response) -> str:
    try:
        payload = ErrorPayload.model_validate(response.json())
    except (ValueError, ValidationError):
        return response.text or response.reason_phrase
    return payload.message or response.reason_phrase


def _raise_for_status(
    response: httpx.Response,
    *,
    kind: ResourceKind | None = None,
    resource_id: str | None = None,
) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == 404 and kind is not None and resource_id is not None:
        raise ResourceNotFoundError(kind, resource_id)
    message = f"{response.request.method} {response.request.url.path} -> {status}: "
    message += _error_message(response)
    if status in _TRANSIENT_STATUS or status >= 500:
        raise TransientResourceError(message, status_code=status)
    raise ResourceGatewayError(message, status_code=status)


class HttpResourceGateway:
    """``ResourceGateway`` over a REST API.

    Endpoints (relative to the configured base URL)::

        GET  status
        GET  primaries/{id}
        GET  secondaries/{id}
        POST secondaries/{id}/occupancy   {"count": int, "capacity": int | null}
        POST secondaries/{id}/archive     {"reason": str}
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        client: ResilientClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._client = client or ResilientClient(config.resilience, transport=transport)

    async def __aenter__(self) -> HttpResourceGateway:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def ready(self) -> bool:
        try:
            response = await self._request("GET", "status")
        except ResourceGatewayError as exc:
            log.debug("Resource API not ready: %s", exc)
            return False
        if response.status_code >= 400:
            return False
        try:
            return StatusPayload.model_validate(response.json()).ready
        except (ValueError, ValidationError):
            log.warning("Unexpected status payload from resource API")
            return False

    async def get_primary(self, primary_id: str) -> PrimaryResource:
        response = await self._request("GET", f"primaries/{primary_id}")
        _raise_for_status(response, kind=ResourceKind.PRIMARY, resource_id=primary_id)
        payload = self._parse(response, PrimaryPayload)
        if payload.deleted:
            raise ResourceNotFoundError(ResourceKind.PRIMARY, primary_id)
        return to_primary(payload)

    async def get_secondary(self, secondary_id: str) -> SecondaryResource:
        response = await self._request("GET", f"secondaries/{secondary_id}")
        _raise_for_status(response, kind=ResourceKind.SECONDARY, resource_id=secondary_id)
        return to_secondary(self._parse(response, SecondaryPayload))

    async def write_occupancy(self, secondary_id: str, count: int, capacity: int | None) -> None:
        body = OccupancyUpdate(count=count, capacity=capacity)
        response = await self._request(
            "POST",
            f"secondaries/{secondary_id}/occupancy",
            json=body.model_dump(),
        )
        _raise_for_status(response, kind=ResourceKind.SECONDARY, resource_id=secondary_id)

    async def archive_secondary(self, secondary_id: str, *, reason: str) -> ArchiveOutcome:
        response = await self._request(
            "POST",
            f"secondaries/{secondary_id}/archive",
            json=ArchiveRequest(reason=reason).model_dump(),
        )
        if response.status_code == 409:
            return ArchiveOutcome.ALREADY_ARCHIVED
        _raise_for_status(response, kind=ResourceKind.SECONDARY, resource_id=secondary_id)
        return ArchiveOutcome.ARCHIVED

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: object | None = None,
    ) -> httpx.Response:
        try:
            if json is None:
                return await self._client.request(method, path)
            return await self._client.request(method, path, json=json)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientResourceError(f"{method} {path} failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ResourceGatewayError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _parse[TPayload: PrimaryPayload | SecondaryPayload](
        response: httpx.Response,
        model: type[TPayload],
    ) -> TPayload:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ResourceGatewayError(
                f"Unexpected payload from {response.request.url.path}",
                status_code=response.status_code,
            ) from exc


if TYPE_CHECKING:

    def _gateway_check(config: GatewayConfig) -> ResourceGateway:
        return HttpResourceGateway(config)
