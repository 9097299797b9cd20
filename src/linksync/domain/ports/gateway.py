"""Port for reading and mutating the remote resources."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from linksync.domain.model import ArchiveOutcome, PrimaryResource, SecondaryResource


@runtime_checkable
class ResourceGateway(Protocol):
    """Remote API contract consumed by the engine.

    Lookups raise ``ResourceNotFoundError`` only when the API confirms absence.
    Timeouts, rate limits and server errors raise ``TransientResourceError``.
    """

    async def ready(self) -> bool: ...

    async def get_primary(self, primary_id: str) -> PrimaryResource: ...

    async def get_secondary(self, secondary_id: str) -> SecondaryResource: ...

    async def write_occupancy(
        self,
        secondary_id: str,
        count: int,
        capacity: int | None,
    ) -> None: ...

    async def archive_secondary(self, secondary_id: str, *, reason: str) -> ArchiveOutcome: ...
