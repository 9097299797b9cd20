from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002

from linksync.adapters.sqlalchemy import SqlAlchemyUnitOfWork, create_all_tables, shutdown, startup
from linksync.domain.mapping import BackoffPolicy, EngineSettings, MappingEngine
from tests.helpers.clock import ManualSleeper
from tests.helpers.gateway import FakeGateway
from tests.helpers.repository import InMemoryMappingRepository

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


@pytest.fixture
def sleeper() -> ManualSleeper:
    return ManualSleeper()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def repository() -> InMemoryMappingRepository:
    return InMemoryMappingRepository()


@pytest.fixture
def engine_settings() -> EngineSettings:
    return EngineSettings(
        debounce_seconds=2.0,
        bind_delay_seconds=1.0,
        backoff=BackoffPolicy(max_retries=3, base_delay=5.0, multiplier=2.0, max_delay=30.0),
        health_interval_seconds=600.0,
        sync_interval_seconds=300.0,
        gateway_timeout_seconds=5.0,
        recovery_attempts=3,
        recovery_retry_seconds=1.0,
        history_size=20,
    )


@pytest.fixture
def mapping_engine(
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
    engine_settings: EngineSettings,
    sleeper: ManualSleeper,
) -> MappingEngine:
    return MappingEngine(gateway, repository, settings=engine_settings, sleep=sleeper)


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'linksync.db'}")
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()
