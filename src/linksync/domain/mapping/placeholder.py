"""Recognition of standalone placeholder linkages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .settings import DEFAULT_PLACEHOLDER_PREFIX

if TYPE_CHECKING:
    from linksync.domain.model import Linkage


@runtime_checkable
class PlaceholderPolicy(Protocol):
    """Decides which linkages stand in for a primary that does not exist yet.

    A secondary held by a placeholder may be claimed by a real primary; the
    engine upgrades the linkage instead of rejecting the bind.
    """

    def is_placeholder(self, linkage: Linkage) -> bool: ...

    def placeholder_id(self, secondary_id: str) -> str: ...


@dataclass(frozen=True, slots=True)
class PrefixPlaceholderPolicy:
    """Placeholders are keyed ``<prefix><secondary id>``."""

    prefix: str = DEFAULT_PLACEHOLDER_PREFIX

    def is_placeholder(self, linkage: Linkage) -> bool:
        return linkage.primary_id.startswith(self.prefix)

    def placeholder_id(self, secondary_id: str) -> str:
        return f"{self.prefix}{secondary_id}"
