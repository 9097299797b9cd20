"""Ports for persisting linkages."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from linksync.domain.model import Linkage


@runtime_checkable
class LinkageRepository(Protocol):
    """Synchronous persistence contract used inside a unit of work."""

    def load_all(self) -> Sequence[Linkage]: ...

    def get(self, primary_id: str) -> Linkage | None: ...

    def upsert(self, linkage: Linkage) -> None: ...

    def delete(self, primary_id: str) -> bool: ...


@runtime_checkable
class MappingRepository(Protocol):
    """Durable store of linkages as seen by the async engine.

    Failures raise ``RepositoryError``.
    """

    async def load_all(self) -> Sequence[Linkage]: ...

    async def upsert(self, linkage: Linkage) -> None: ...

    async def delete(self, primary_id: str) -> None: ...
