"""Inbound notifications about primary resources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@dataclass(frozen=True, slots=True)
class PrimaryCreated:
    primary_id: str


@dataclass(frozen=True, slots=True)
class PrimaryDeleted:
    primary_id: str


@dataclass(frozen=True, slots=True)
class OccupancyChanged:
    primary_id: str
    count: int


type ResourceEvent = PrimaryCreated | PrimaryDeleted | OccupancyChanged


@runtime_checkable
class EventSource(Protocol):
    """Async stream of resource events; iteration ends when the source closes."""

    def events(self) -> AsyncIterator[ResourceEvent]: ...
