"""The primary to secondary association tracked by the mapping engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime

from .enums import LinkageHealth


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True, kw_only=True)
class Linkage:
    """One tracked primary/secondary pair.

    ``last_known_count`` is the occupancy most recently confirmed on the
    secondary; it is only advanced after a successful write.
    """

    primary_id: str
    secondary_id: str
    last_known_count: int = 0
    health: LinkageHealth = LinkageHealth.HEALTHY
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self) -> Linkage:
        return replace(self)

    def touch(self, at: datetime | None = None) -> None:
        self.updated_at = at or utcnow()
