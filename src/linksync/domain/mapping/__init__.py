"""Mapping engine: linkage table, reconciliation queue, validation and health."""

from __future__ import annotations

from .capacity import extract_capacity
from .engine import MappingEngine
from .history import UpdateHistory, UpdateRecord
from .monitor import HealthMonitor, HealthReceiver, SweepReport
from .placeholder import PlaceholderPolicy, PrefixPlaceholderPolicy
from .queue import QueuedUpdate, ReconciliationQueue
from .reports import LinkageDetails, LinkageStat, MappingStats, RecoveryReport, SyncReport
from .settings import DEFAULT_PLACEHOLDER_PREFIX, BackoffPolicy, EngineSettings
from .table import LinkageTable
from .validator import Existence, ValidationResult, ValidationStatus, Validator

__all__ = [
    "DEFAULT_PLACEHOLDER_PREFIX",
    "BackoffPolicy",
    "EngineSettings",
    "Existence",
    "HealthMonitor",
    "HealthReceiver",
    "LinkageDetails",
    "LinkageStat",
    "LinkageTable",
    "MappingEngine",
    "MappingStats",
    "PlaceholderPolicy",
    "PrefixPlaceholderPolicy",
    "QueuedUpdate",
    "ReconciliationQueue",
    "RecoveryReport",
    "SweepReport",
    "SyncReport",
    "UpdateHistory",
    "UpdateRecord",
    "ValidationResult",
    "ValidationStatus",
    "Validator",
    "extract_capacity",
]
