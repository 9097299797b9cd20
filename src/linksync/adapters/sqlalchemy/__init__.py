"""SQLAlchemy adapter package for linksync."""

from __future__ import annotations

from .mappings import create_all_tables, linkage_table, metadata
from .repositories import SqlAlchemyLinkageRepository, UnitOfWorkMappingRepository
from .unit_of_work import (
    SqlAlchemyUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyLinkageRepository",
    "SqlAlchemyUnitOfWork",
    "StartupError",
    "UnitOfWorkMappingRepository",
    "configured_engine",
    "create_all_tables",
    "is_started",
    "linkage_table",
    "metadata",
    "shutdown",
    "startup",
]
