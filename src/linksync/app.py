"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from linksync.adapters.event_queue import AsyncQueueEventSource
from linksync.adapters.resource_api import HttpResourceGateway
from linksync.adapters.sqlalchemy import (
    SqlAlchemyUnitOfWork,
    UnitOfWorkMappingRepository,
    is_started,
    startup,
)
from linksync.config import get_engine_settings, get_gateway_config
from linksync.domain.mapping import MappingEngine, SweepReport
from linksync.domain.ports.unit_of_work import LinkageUnitOfWork

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from linksync.domain.mapping import (
        EngineSettings,
        MappingStats,
        PlaceholderPolicy,
        RecoveryReport,
        SyncReport,
    )
    from linksync.domain.model import Linkage
    from linksync.domain.ports import EventSource, MappingRepository, ResourceGateway

UnitOfWorkFactory = Callable[[], LinkageUnitOfWork]

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ServiceReport:
    recovery: RecoveryReport | None
    handled_events: int
    stats: MappingStats


@dataclass(frozen=True, slots=True)
class CheckReport:
    recovery: RecoveryReport
    sweep: SweepReport
    sync: SyncReport
    stats: MappingStats


def build_repository(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    database_uri: str | None = None,
) -> MappingRepository:
    """Persistence backed by the SQLAlchemy adapter, started on first use."""

    if unit_of_work_factory is None:
        if not is_started():
            startup(database_uri=database_uri)
        unit_of_work_factory = SqlAlchemyUnitOfWork
    return UnitOfWorkMappingRepository(unit_of_work_factory)


def build_engine(
    gateway: ResourceGateway,
    *,
    repository: MappingRepository | None = None,
    settings: EngineSettings | None = None,
    placeholders: PlaceholderPolicy | None = None,
) -> MappingEngine:
    return MappingEngine(
        gateway,
        repository or build_repository(),
        settings=settings or get_engine_settings(),
        placeholders=placeholders,
    )


@asynccontextmanager
async def _gateway_scope(gateway: ResourceGateway | None) -> AsyncIterator[ResourceGateway]:
    if gateway is not None:
        yield gateway
        return
    async with HttpResourceGateway(get_gateway_config()) as http_gateway:
        yield http_gateway


def build_event_source(maxsize: int = 0) -> AsyncQueueEventSource:
    """In-process source for callers that observe primaries themselves and publish events."""

    return AsyncQueueEventSource(maxsize)


class _EventPump:
    def __init__(self, engine: MappingEngine, source: EventSource) -> None:
        self._engine = engine
        self._source = source
        self.handled = 0

    async def run(self) -> None:
        async for event in self._source.events():
            try:
                await self._engine.handle(event)
            except Exception:
                log.exception("Failed to handle %r", event)
            self.handled += 1
        log.info("Event stream ended after %s events", self.handled)


async def run_service(
    *,
    gateway: ResourceGateway | None = None,
    repository: MappingRepository | None = None,
    events: EventSource | None = None,
    settings: EngineSettings | None = None,
    stop: asyncio.Event | None = None,
    stop_when_exhausted: bool = True,
) -> ServiceReport:
    """Recover, start background loops and feed events until stopped.

    Returns when ``stop`` is set, or when the event source is exhausted if
    ``stop_when_exhausted`` is true; otherwise sweeps and syncs keep running
    until ``stop``. The engine is always stopped (with a final repository sync)
    on the way out.
    """

    if events is None:
        log.warning(
            "No event source attached; occupancy changes will not be propagated, "
            "only health sweeps and repository syncs run"
        )
        source: EventSource = build_event_source()
    else:
        source = events
    stop_event = stop or asyncio.Event()

    async with _gateway_scope(gateway) as resolved_gateway:
        engine = build_engine(resolved_gateway, repository=repository, settings=settings)
        recovery = await engine.start()
        pump = _EventPump(engine, source)
        pump_task = asyncio.create_task(pump.run(), name="event-pump")
        stop_task = asyncio.create_task(stop_event.wait(), name="stop-signal")
        log.info("linksync service running with %s linkages", len(engine))
        try:
            await asyncio.wait({pump_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if not stop_task.done() and not stop_when_exhausted:
                log.info("Event source exhausted; serving until stopped")
                await stop_task
        finally:
            for task in (pump_task, stop_task):
                task.cancel()
            await asyncio.gather(pump_task, stop_task, return_exceptions=True)
            await engine.stop()
        log.info("linksync service stopped")
        return ServiceReport(recovery=recovery, handled_events=pump.handled, stats=engine.stats())


async def check_linkages(
    *,
    gateway: ResourceGateway | None = None,
    repository: MappingRepository | None = None,
    settings: EngineSettings | None = None,
) -> CheckReport:
    """Recover persisted linkages, run one health sweep and write the result back."""

    async with _gateway_scope(gateway) as resolved_gateway:
        engine = build_engine(resolved_gateway, repository=repository, settings=settings)
        recovery = await engine.recover_on_startup()
        sweep = SweepReport() if recovery.deferred else await engine.cleanup()
        sync = await engine.sync_to_repository()
        return CheckReport(recovery=recovery, sweep=sweep, sync=sync, stats=engine.stats())


async def list_linkages(*, repository: MappingRepository | None = None) -> Sequence[Linkage]:
    """Return the persisted linkages without contacting the resource API."""

    effective_repository = repository or build_repository()
    return await effective_repository.load_all()
