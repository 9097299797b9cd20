"""Result objects returned by engine operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from linksync.domain.model import Linkage, LinkageHealth

    from .validator import ValidationResult


@dataclass(frozen=True, slots=True)
class RecoveryReport:
    success: bool
    loaded: int = 0
    restored: int = 0
    removed: int = 0
    unverified: int = 0
    skipped: int = 0
    deferred: bool = False
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SyncReport:
    written: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class LinkageStat:
    primary_id: str
    secondary_id: str
    last_known_count: int
    health: LinkageHealth


@dataclass(frozen=True, slots=True)
class MappingStats:
    total: int = 0
    queued: int = 0
    healthy: int = 0
    degraded: int = 0
    error: int = 0
    average_occupancy: float = 0.0
    linkages: tuple[LinkageStat, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class LinkageDetails:
    linkage: Linkage
    validation: ValidationResult
    health: LinkageHealth
    queued: bool
