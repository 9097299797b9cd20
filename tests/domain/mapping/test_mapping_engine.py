from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import pytest

from linksync.domain.errors import (
    InvalidLinkageError,
    ResourceNotFoundError,
    SecondaryAlreadyLinkedError,
    TransientResourceError,
)
from linksync.domain.mapping import EngineSettings, MappingEngine
from linksync.domain.model import Linkage, LinkageHealth, ResourceKind
from linksync.domain.ports import OccupancyChanged, PrimaryCreated, PrimaryDeleted
from tests.helpers.clock import ManualSleeper, settle
from tests.helpers.gateway import FakeGateway
from tests.helpers.repository import InMemoryMappingRepository


def _persisted(primary_id: str, secondary_id: str, **kwargs: object) -> Linkage:
    at = datetime(2024, 3, 1, tzinfo=UTC)
    return Linkage(
        primary_id=primary_id,
        secondary_id=secondary_id,
        created_at=at,
        updated_at=at,
        **kwargs,  # type: ignore[arg-type]
    )


# -- bind -------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_bind_inserts_persists_and_schedules(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
) -> None:
    gateway.add_pair("P1", "S1")

    linkage = await mapping_engine.bind("P1", "S1")

    assert linkage.primary_id == "P1"
    assert linkage.secondary_id == "S1"
    assert mapping_engine.get("P1") == linkage
    assert "P1" in repository.rows
    assert [update.primary_id for update in mapping_engine.queued_updates()] == ["P1"]
    assert mapping_engine.queued_updates()[0].delay == 1.0


@pytest.mark.asyncio
async def test_bind_same_pair_returns_existing(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_pair("P1", "S1")
    first = await mapping_engine.bind("P1", "S1")

    second = await mapping_engine.bind("P1", "S1")

    assert second == first
    assert len(mapping_engine) == 1


@pytest.mark.asyncio
async def test_bind_missing_resources_raise_not_found(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_secondary("S1")
    gateway.add_primary("P2")

    with pytest.raises(ResourceNotFoundError) as missing_primary:
        await mapping_engine.bind("P1", "S1")
    with pytest.raises(ResourceNotFoundError) as missing_secondary:
        await mapping_engine.bind("P2", "S2")

    assert missing_primary.value.kind is ResourceKind.PRIMARY
    assert missing_secondary.value.kind is ResourceKind.SECONDARY
    assert len(mapping_engine) == 0


@pytest.mark.asyncio
async def test_bind_rejects_finalized_secondary(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_primary("P1")
    gateway.add_secondary("S1", archived=True)

    with pytest.raises(InvalidLinkageError):
        await mapping_engine.bind("P1", "S1")

    assert mapping_engine.get("P1") is None


@pytest.mark.asyncio
async def test_bind_unverifiable_raises_transient(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_pair("P1", "S1")
    gateway.broken["get_primary"] = TransientResourceError("503")

    with pytest.raises(TransientResourceError):
        await mapping_engine.bind("P1", "S1")

    assert len(mapping_engine) == 0


@pytest.mark.asyncio
async def test_bind_secondary_owned_by_real_primary_conflicts(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_pair("P1", "S1")
    gateway.add_primary("P2")
    await mapping_engine.bind("P1", "S1")

    with pytest.raises(SecondaryAlreadyLinkedError):
        await mapping_engine.bind("P2", "S1")

    linkage = mapping_engine.find_by_secondary("S1")
    assert linkage is not None
    assert linkage.primary_id == "P1"


@pytest.mark.asyncio
async def test_rebind_to_new_secondary_drops_old_without_archiving(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
) -> None:
    gateway.add_pair("P1", "S1")
    gateway.add_secondary("S2")
    await mapping_engine.bind("P1", "S1")

    await mapping_engine.bind("P1", "S2")

    linkage = mapping_engine.get("P1")
    assert linkage is not None
    assert linkage.secondary_id == "S2"
    assert mapping_engine.find_by_secondary("S1") is None
    assert gateway.archived == []
    assert repository.rows["P1"].secondary_id == "S2"


@pytest.mark.asyncio
async def test_bind_survives_repository_failure(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
) -> None:
    gateway.add_pair("P1", "S1")
    repository.fail_writes = True

    await mapping_engine.bind("P1", "S1")

    assert mapping_engine.get("P1") is not None
    assert repository.rows == {}

    repository.fail_writes = False
    report = await mapping_engine.sync_to_repository()
    assert report.written == 1
    assert "P1" in repository.rows


@pytest.mark.asyncio
async def test_no_duplicate_primary_keys_across_bind_and_unbind(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    for index in range(4):
        gateway.add_pair(f"P{index}", f"S{index}")
    gateway.add_secondary("S9")

    await mapping_engine.bind("P0", "S0")
    await mapping_engine.bind("P1", "S1")
    await mapping_engine.bind("P0", "S0")
    await mapping_engine.unbind("P1")
    await mapping_engine.bind("P1", "S2")
    await mapping_engine.bind("P1", "S9")
    await mapping_engine.bind("P3", "S3")
    await mapping_engine.unbind("P3")
    gateway.add_secondary("S8")
    await mapping_engine.bind("P3", "S8")

    primaries = [linkage.primary_id for linkage in mapping_engine.linkages()]
    secondaries = [linkage.secondary_id for linkage in mapping_engine.linkages()]
    assert len(primaries) == len(set(primaries)) == 3
    assert len(secondaries) == len(set(secondaries))


# -- placeholders -----------------------------------------------------------------


@pytest.mark.asyncio
async def test_bind_upgrades_placeholder_and_leaves_others_alone(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
    caplog: pytest.LogCaptureFixture,
) -> None:
    gateway.add_secondary("S1")
    gateway.add_pair("P9", "S9")
    gateway.add_primary("P2")
    placeholder = await mapping_engine.register_placeholder("S1")
    await mapping_engine.bind("P9", "S9")

    with caplog.at_level(logging.WARNING, logger="linksync.domain.mapping.engine"):
        linkage = await mapping_engine.bind("P2", "S1")

    assert placeholder.primary_id == "STANDALONE_S1"
    assert linkage.primary_id == "P2"
    assert mapping_engine.get("STANDALONE_S1") is None
    assert "STANDALONE_S1" not in repository.rows
    assert gateway.archived == []
    assert "Upgrading placeholder" in caplog.text
    other = mapping_engine.get("P9")
    assert other is not None
    assert other.secondary_id == "S9"


@pytest.mark.asyncio
async def test_placeholder_is_never_propagated(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_secondary("S1")
    await mapping_engine.register_placeholder("S1")

    assert mapping_engine.observe("STANDALONE_S1", 4) is True
    await sleeper.advance(5.0)

    assert gateway.writes == []
    assert gateway.calls["get_primary"] == 0


@pytest.mark.asyncio
async def test_register_placeholder_for_owned_secondary_conflicts(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")

    with pytest.raises(SecondaryAlreadyLinkedError):
        await mapping_engine.register_placeholder("S1")


# -- observe and propagation ------------------------------------------------------


@pytest.mark.asyncio
async def test_observe_propagate_and_sweep_scenario(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_primary("P1")
    gateway.add_secondary("S1", title="Raid night 0/4")
    await mapping_engine.bind("P1", "S1")
    await sleeper.advance(1.0)
    assert gateway.writes == []

    gateway.set_occupancy("P1", 3)
    assert mapping_engine.observe("P1", 3) is True
    await sleeper.advance(2.0)

    linkage = mapping_engine.get("P1")
    assert linkage is not None
    assert linkage.last_known_count == 3
    assert gateway.writes == [("S1", 3, 4)]
    assert repository.rows["P1"].last_known_count == 3

    assert mapping_engine.observe("P1", 3) is False
    assert mapping_engine.queued_updates() == []

    gateway.delete_primary("P1")
    report = await mapping_engine.cleanup()

    assert report.removed == 1
    assert gateway.archived == [("S1", "primary deleted")]
    assert mapping_engine.get("P1") is None
    assert "P1" not in repository.rows


@pytest.mark.asyncio
async def test_observe_burst_yields_single_write(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    await sleeper.advance(1.0)
    gateway.set_occupancy("P1", 5)

    for count in range(1, 6):
        mapping_engine.observe("P1", count)
        await sleeper.advance(0.5)
    await sleeper.advance(2.0)

    assert gateway.writes == [("S1", 5, 4)]


@pytest.mark.asyncio
async def test_observe_without_linkage_is_noop(mapping_engine: MappingEngine) -> None:
    assert mapping_engine.observe("P-unknown", 3) is False
    assert mapping_engine.queued_updates() == []


@pytest.mark.asyncio
async def test_unchanged_occupancy_skips_write(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")

    # the event says 2 but the API still reports the stored count
    mapping_engine.observe("P1", 2)
    await sleeper.advance(2.0)

    assert gateway.writes == []
    assert mapping_engine.history(1)[0].detail == "occupancy unchanged"


@pytest.mark.asyncio
async def test_propagation_finds_primary_gone(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    gateway.delete_primary("P1")

    await sleeper.advance(1.0)

    assert mapping_engine.get("P1") is None
    assert gateway.archived == [("S1", "primary deleted")]
    assert repository.rows == {}


@pytest.mark.asyncio
async def test_propagation_drops_locked_secondary_without_archiving(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    gateway.add_secondary("S1", locked=True)

    await sleeper.advance(1.0)

    assert mapping_engine.get("P1") is None
    assert gateway.archived == []


@pytest.mark.asyncio
async def test_unbind_before_debounce_prevents_write(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    await sleeper.advance(1.0)
    gateway.set_occupancy("P1", 3)
    mapping_engine.observe("P1", 3)

    await mapping_engine.unbind("P1")
    await sleeper.advance(10.0)

    assert gateway.writes == []
    assert mapping_engine.get("P1") is None


@pytest.mark.asyncio
async def test_retry_budget_exhaustion_marks_error_until_next_observe(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    await sleeper.advance(1.0)
    gateway.set_occupancy("P1", 3)
    gateway.broken["write_occupancy"] = TransientResourceError("503", status_code=503)

    mapping_engine.observe("P1", 3)
    await sleeper.advance(2.0)
    assert mapping_engine.health_of("P1") is LinkageHealth.DEGRADED

    await sleeper.advance(5.0)
    await sleeper.advance(10.0)
    await sleeper.advance(20.0)

    assert gateway.calls["write_occupancy"] == 4
    assert mapping_engine.health_of("P1") is LinkageHealth.ERROR
    assert mapping_engine.stats().error == 1

    await sleeper.advance(1000.0)
    assert gateway.calls["write_occupancy"] == 4

    del gateway.broken["write_occupancy"]
    gateway.set_occupancy("P1", 4)
    mapping_engine.observe("P1", 4)
    await sleeper.advance(2.0)

    assert gateway.writes == [("S1", 4, 4)]
    assert mapping_engine.health_of("P1") is LinkageHealth.HEALTHY
    failures = [record for record in mapping_engine.history() if not record.success]
    assert len(failures) == 4


# -- unbind and events ------------------------------------------------------------


@pytest.mark.asyncio
async def test_unbind_twice_never_raises(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")

    assert await mapping_engine.unbind("P1") is True
    assert await mapping_engine.unbind("P1") is False

    assert gateway.archived == [("S1", "unlinked")]
    assert repository.rows == {}


@pytest.mark.asyncio
async def test_unbind_removes_even_when_archive_fails(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    gateway.broken["archive_secondary"] = TransientResourceError("timeout")

    assert await mapping_engine.unbind("P1") is True
    assert mapping_engine.get("P1") is None


@pytest.mark.asyncio
async def test_unbind_treats_missing_secondary_as_archived(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    gateway.delete_secondary("S1")

    assert await mapping_engine.unbind("P1") is True
    assert mapping_engine.get("P1") is None


@pytest.mark.asyncio
async def test_handle_dispatches_events(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    await sleeper.advance(1.0)

    await mapping_engine.handle(PrimaryCreated("P2"))
    gateway.set_occupancy("P1", 2)
    await mapping_engine.handle(OccupancyChanged("P1", 2))
    await sleeper.advance(2.0)
    assert gateway.writes == [("S1", 2, 4)]

    await mapping_engine.handle(PrimaryDeleted("P1"))

    assert mapping_engine.get("P1") is None
    assert gateway.archived == [("S1", "primary deleted")]
    assert mapping_engine.get("P2") is None


# -- recovery ---------------------------------------------------------------------


@pytest.mark.asyncio
async def test_recovery_drops_linkages_whose_primary_is_gone(
    gateway: FakeGateway,
    engine_settings: EngineSettings,
    sleeper: ManualSleeper,
) -> None:
    persisted = [_persisted(f"P{index}", f"S{index}", last_known_count=index) for index in range(5)]
    repository = InMemoryMappingRepository(persisted)
    for index in range(5):
        gateway.add_secondary(f"S{index}")
    for index in range(3):
        gateway.add_primary(f"P{index}")
    engine = MappingEngine(gateway, repository, settings=engine_settings, sleep=sleeper)

    report = await engine.recover_on_startup()

    assert report.success
    assert report.loaded == 5
    assert report.restored == 3
    assert report.removed == 2
    assert len(engine) == 3
    assert sorted(repository.rows) == ["P0", "P1", "P2"]
    assert sorted(repository.deleted) == ["P3", "P4"]
    assert sorted(secondary for secondary, _ in gateway.archived) == ["S3", "S4"]
    restored = engine.get("P2")
    assert restored is not None
    assert restored.last_known_count == 2


@pytest.mark.asyncio
async def test_recovery_keeps_unverifiable_linkages(
    gateway: FakeGateway,
    engine_settings: EngineSettings,
    sleeper: ManualSleeper,
) -> None:
    repository = InMemoryMappingRepository(
        [
            _persisted("P1", "S1", health=LinkageHealth.ERROR),
            _persisted("P2", "S2"),
        ]
    )
    gateway.add_pair("P1", "S1")
    gateway.add_pair("P2", "S2")
    gateway.broken["get_primary"] = TransientResourceError("503")
    engine = MappingEngine(gateway, repository, settings=engine_settings, sleep=sleeper)

    report = await engine.recover_on_startup()

    assert report.unverified == 2
    assert report.removed == 0
    assert engine.health_of("P1") is LinkageHealth.ERROR
    assert engine.health_of("P2") is LinkageHealth.HEALTHY
    assert gateway.archived == []


@pytest.mark.asyncio
async def test_recovery_skips_records_claiming_the_same_secondary(
    gateway: FakeGateway,
    engine_settings: EngineSettings,
    sleeper: ManualSleeper,
) -> None:
    repository = InMemoryMappingRepository([_persisted("P1", "S1"), _persisted("P2", "S1")])
    gateway.add_pair("P1", "S1")
    gateway.add_primary("P2")
    engine = MappingEngine(gateway, repository, settings=engine_settings, sleep=sleeper)

    report = await engine.recover_on_startup()

    assert report.restored == 1
    assert report.skipped == 1
    assert len(engine) == 1


@pytest.mark.asyncio
async def test_recovery_defers_when_gateway_never_ready(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.is_ready = False

    task = asyncio.create_task(mapping_engine.recover_on_startup())
    await sleeper.advance(1.0)
    await sleeper.advance(2.0)
    report = await task

    assert report.deferred
    assert not report.success
    assert gateway.calls["ready"] == 3
    assert sleeper.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_recovery_reports_repository_failure(
    mapping_engine: MappingEngine,
    repository: InMemoryMappingRepository,
) -> None:
    repository.fail_loads = True

    report = await mapping_engine.recover_on_startup()

    assert not report.success
    assert report.error == "database unavailable"
    assert len(mapping_engine) == 0


@pytest.mark.asyncio
async def test_recovery_keeps_row_bound_again_during_validation(
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
    engine_settings: EngineSettings,
    sleeper: ManualSleeper,
) -> None:
    repository.rows["P1"] = _persisted("P1", "S1")
    gateway.add_primary("P1")
    gateway.add_secondary("S2")
    release = gateway.hold_secondary("S1")
    engine = MappingEngine(gateway, repository, settings=engine_settings, sleep=sleeper)

    recovery = asyncio.create_task(engine.recover_on_startup())
    await settle()
    await engine.bind("P1", "S2")
    release.set()
    report = await recovery

    assert report.removed == 0
    assert report.skipped == 1
    assert repository.rows["P1"].secondary_id == "S2"
    assert repository.deleted == []
    linkage = engine.get("P1")
    assert linkage is not None
    assert linkage.secondary_id == "S2"


@pytest.mark.asyncio
async def test_sweep_result_for_old_pair_does_not_touch_rebound_linkage(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
) -> None:
    gateway.add_pair("P1", "S1")
    gateway.add_secondary("S2")
    await mapping_engine.bind("P1", "S1")
    gateway.delete_secondary("S1")
    release = gateway.hold_secondary("S1")

    sweep = asyncio.create_task(mapping_engine.cleanup())
    await settle()
    await mapping_engine.bind("P1", "S2")
    release.set()
    report = await sweep

    assert report.invalid == 1
    assert report.removed == 0
    linkage = mapping_engine.get("P1")
    assert linkage is not None
    assert linkage.secondary_id == "S2"
    assert linkage.health is LinkageHealth.HEALTHY


# -- reporting and lifecycle ------------------------------------------------------


@pytest.mark.asyncio
async def test_stats_and_details(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    sleeper: ManualSleeper,
) -> None:
    gateway.add_pair("P1", "S1", occupancy=4)
    gateway.add_pair("P2", "S2", occupancy=2)
    await mapping_engine.bind("P1", "S1")
    await mapping_engine.bind("P2", "S2")

    assert mapping_engine.stats().queued == 2
    await sleeper.advance(1.0)

    stats = mapping_engine.stats()
    assert stats.total == 2
    assert stats.healthy == 2
    assert stats.queued == 0
    assert stats.average_occupancy == 3.0

    details = await mapping_engine.details("P1")
    assert details is not None
    assert details.validation.valid
    assert details.health is LinkageHealth.HEALTHY
    assert details.queued is False
    assert await mapping_engine.details("P-unknown") is None

    assert [record.primary_id for record in mapping_engine.history()] == ["P2", "P1"]


@pytest.mark.asyncio
async def test_sync_counts_failures(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
) -> None:
    gateway.add_pair("P1", "S1")
    await mapping_engine.bind("P1", "S1")
    repository.fail_writes = True

    report = await mapping_engine.sync_to_repository()

    assert report.written == 0
    assert report.failed == 1


@pytest.mark.asyncio
async def test_context_manager_recovers_and_syncs_on_exit(
    mapping_engine: MappingEngine,
    gateway: FakeGateway,
    repository: InMemoryMappingRepository,
) -> None:
    gateway.add_pair("P1", "S1")

    async with mapping_engine as engine:
        await engine.bind("P1", "S1")
        upserts = repository.upserts

    assert repository.upserts == upserts + 1
    assert "P1" in repository.rows
