"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class LinkageHealth(StrEnum):
    """Operability of a linkage.

    Only ``HEALTHY`` and ``ERROR`` are ever stored. ``DEGRADED`` is a reporting
    label for linkages whose propagation currently has retries in flight.
    """

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    ERROR = "error"


class ArchiveOutcome(StrEnum):
    ARCHIVED = "archived"
    ALREADY_ARCHIVED = "already_archived"


class ResourceKind(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
