"""Snapshots of the externally-managed resources a linkage points at."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True, kw_only=True)
class PrimaryResource:
    """Ephemeral session resource (for example a live voice channel)."""

    id: str
    name: str
    occupancy: int


@dataclass(frozen=True, slots=True, kw_only=True)
class SecondaryResource:
    """Durable record mirroring a primary (for example a forum thread)."""

    id: str
    title: str
    archived: bool = False
    locked: bool = False

    @property
    def finalized(self) -> bool:
        return self.archived or self.locked
