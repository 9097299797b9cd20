"""In-memory registry of active linkages.

The table never performs I/O and never awaits, so each call runs atomically on
the event loop that owns the engine. Readers always receive copies; the stored
``Linkage`` objects never leave this module.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from linksync.domain.errors import AlreadyLinkedError, SecondaryAlreadyLinkedError
from linksync.domain.model import Linkage, LinkageHealth, utcnow

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime


class LinkageTable:
    """Primary id to linkage map with a secondary id index."""

    def __init__(self) -> None:
        self._by_primary: dict[str, Linkage] = {}
        self._primary_by_secondary: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_primary)

    def __contains__(self, primary_id: object) -> bool:
        return primary_id in self._by_primary

    def __iter__(self) -> Iterator[Linkage]:
        return iter(self.all())

    def put(self, primary_id: str, secondary_id: str, *, at: datetime | None = None) -> Linkage:
        """Insert a fresh healthy linkage.

        Raises ``AlreadyLinkedError`` when ``primary_id`` is present and
        ``SecondaryAlreadyLinkedError`` when ``secondary_id`` is claimed by
        another primary.
        """

        timestamp = at or utcnow()
        return self.load(
            Linkage(
                primary_id=primary_id,
                secondary_id=secondary_id,
                created_at=timestamp,
                updated_at=timestamp,
            )
        )

    def load(self, linkage: Linkage) -> Linkage:
        """Insert an existing linkage record (used when recovering state)."""

        existing = self._by_primary.get(linkage.primary_id)
        if existing is not None:
            raise AlreadyLinkedError(linkage.primary_id, existing.secondary_id)
        owner = self._primary_by_secondary.get(linkage.secondary_id)
        if owner is not None:
            raise SecondaryAlreadyLinkedError(linkage.secondary_id, owner)

        stored = linkage.copy()
        self._by_primary[stored.primary_id] = stored
        self._primary_by_secondary[stored.secondary_id] = stored.primary_id
        return stored.copy()

    def remove(self, primary_id: str) -> Linkage | None:
        """Drop the linkage for ``primary_id``; a no-op when absent."""

        linkage = self._by_primary.pop(primary_id, None)
        if linkage is None:
            return None
        if self._primary_by_secondary.get(linkage.secondary_id) == primary_id:
            del self._primary_by_secondary[linkage.secondary_id]
        return linkage

    def get(self, primary_id: str) -> Linkage | None:
        linkage = self._by_primary.get(primary_id)
        return linkage.copy() if linkage is not None else None

    def find_by_primary(self, primary_id: str) -> Linkage | None:
        return self.get(primary_id)

    def find_by_secondary(self, secondary_id: str) -> Linkage | None:
        primary_id = self._primary_by_secondary.get(secondary_id)
        if primary_id is None:
            return None
        return self.get(primary_id)

    def all(self) -> tuple[Linkage, ...]:
        """Snapshot of every linkage, safe to iterate while the table changes."""

        return tuple(linkage.copy() for linkage in self._by_primary.values())

    def record_propagation(
        self,
        primary_id: str,
        secondary_id: str,
        count: int,
        *,
        at: datetime | None = None,
    ) -> Linkage | None:
        """Store a confirmed occupancy write.

        Returns ``None`` without touching anything when the linkage was removed
        or re-pointed at another secondary while the write was in flight.
        """

        linkage = self._by_primary.get(primary_id)
        if linkage is None or linkage.secondary_id != secondary_id:
            return None
        linkage.last_known_count = count
        linkage.health = LinkageHealth.HEALTHY
        linkage.touch(at)
        return linkage.copy()

    def set_health(
        self,
        primary_id: str,
        health: LinkageHealth,
        *,
        secondary_id: str | None = None,
        at: datetime | None = None,
    ) -> Linkage | None:
        """Set health, skipped when ``secondary_id`` is given and no longer matches."""

        linkage = self._by_primary.get(primary_id)
        if linkage is None:
            return None
        if secondary_id is not None and linkage.secondary_id != secondary_id:
            return None
        if linkage.health is not health:
            linkage.health = health
            linkage.touch(at)
        return linkage.copy()
