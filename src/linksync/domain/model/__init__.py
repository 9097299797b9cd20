"""Domain model for linksync."""

from __future__ import annotations

from .enums import ArchiveOutcome, LinkageHealth, ResourceKind
from .linkage import Linkage, utcnow
from .resources import PrimaryResource, SecondaryResource

__all__ = [
    "ArchiveOutcome",
    "Linkage",
    "LinkageHealth",
    "PrimaryResource",
    "ResourceKind",
    "SecondaryResource",
    "utcnow",
]
