"""Domain port definitions for adapters."""

from __future__ import annotations

from .events import EventSource, OccupancyChanged, PrimaryCreated, PrimaryDeleted, ResourceEvent
from .gateway import ResourceGateway
from .persistence import LinkageRepository, MappingRepository
from .unit_of_work import LinkageRepositories, LinkageUnitOfWork, RepositoryCollection, UnitOfWork

__all__ = [
    "EventSource",
    "LinkageRepositories",
    "LinkageRepository",
    "LinkageUnitOfWork",
    "MappingRepository",
    "OccupancyChanged",
    "PrimaryCreated",
    "PrimaryDeleted",
    "RepositoryCollection",
    "ResourceEvent",
    "ResourceGateway",
    "UnitOfWork",
]
