"""Facade that owns the linkage table and drives reconciliation.

All compound mutations (bind, unbind, removal, recovery) run under a single
``asyncio.Lock``; propagation work for different primaries runs concurrently
inside the reconciliation queue. Background failures never escape: they end
as a log record and a health transition.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from logging import getLogger
from typing import TYPE_CHECKING

from linksync.domain.errors import (
    InvalidLinkageError,
    LinkageConflictError,
    RepositoryError,
    ResourceNotFoundError,
    SecondaryAlreadyLinkedError,
    TransientResourceError,
)
from linksync.domain.model import LinkageHealth, ResourceKind
from linksync.domain.ports.events import OccupancyChanged, PrimaryCreated, PrimaryDeleted

from .capacity import extract_capacity
from .history import UpdateHistory
from .monitor import HealthMonitor
from .placeholder import PrefixPlaceholderPolicy
from .queue import ReconciliationQueue
from .reports import (
    LinkageDetails,
    LinkageStat,
    MappingStats,
    RecoveryReport,
    SyncReport,
)
from .settings import EngineSettings
from .table import LinkageTable
from .validator import Existence, ValidationStatus, Validator

if TYPE_CHECKING:
    from collections.abc import Awaitable
    from types import TracebackType

    from linksync.domain.errors import PropagationExhaustedError
    from linksync.domain.model import Linkage
    from linksync.domain.ports.events import ResourceEvent
    from linksync.domain.ports.gateway import ResourceGateway
    from linksync.domain.ports.persistence import MappingRepository

    from .history import UpdateRecord
    from .monitor import SweepReport
    from .placeholder import PlaceholderPolicy
    from .queue import QueuedUpdate, Sleep
    from .validator import ValidationResult

log = getLogger(__name__)


class MappingEngine:
    def __init__(
        self,
        gateway: ResourceGateway,
        repository: MappingRepository,
        *,
        settings: EngineSettings | None = None,
        placeholders: PlaceholderPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._gateway = gateway
        self._repository = repository
        self._placeholders = placeholders or PrefixPlaceholderPolicy(
            self._settings.placeholder_prefix
        )
        self._sleep = sleep

        self._table = LinkageTable()
        self._mutations = asyncio.Lock()
        self._history = UpdateHistory(self._settings.history_size)
        self._validator = Validator(
            gateway,
            timeout=self._settings.gateway_timeout_seconds,
            placeholders=self._placeholders,
        )
        self._queue = ReconciliationQueue(
            self._propagate,
            debounce=self._settings.debounce_seconds,
            policy=self._settings.backoff,
            on_exhausted=self._on_exhausted,
            sleep=sleep,
        )
        self._monitor = HealthMonitor(
            self._table.all,
            self._validator,
            self,
            interval=self._settings.health_interval_seconds,
            sleep=sleep,
        )
        self._sync_task: asyncio.Task[None] | None = None
        self._recovery_task: asyncio.Task[None] | None = None

    # -- read side -----------------------------------------------------------------

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def __len__(self) -> int:
        return len(self._table)

    def get(self, primary_id: str) -> Linkage | None:
        return self._table.get(primary_id)

    def find_by_secondary(self, secondary_id: str) -> Linkage | None:
        return self._table.find_by_secondary(secondary_id)

    def linkages(self) -> tuple[Linkage, ...]:
        return self._table.all()

    def health_of(self, primary_id: str) -> LinkageHealth | None:
        """Reported health; ``DEGRADED`` while retries are in flight."""

        linkage = self._table.get(primary_id)
        if linkage is None:
            return None
        if linkage.health is LinkageHealth.HEALTHY and self._queue.retrying(primary_id):
            return LinkageHealth.DEGRADED
        return linkage.health

    def history(self, limit: int = 50) -> list[UpdateRecord]:
        return self._history.latest(limit)

    def queued_updates(self) -> list[QueuedUpdate]:
        return self._queue.queued()

    def stats(self) -> MappingStats:
        rows: list[LinkageStat] = []
        counts = dict.fromkeys(LinkageHealth, 0)
        for linkage in self._table.all():
            health = self.health_of(linkage.primary_id) or linkage.health
            counts[health] += 1
            rows.append(
                LinkageStat(
                    primary_id=linkage.primary_id,
                    secondary_id=linkage.secondary_id,
                    last_known_count=linkage.last_known_count,
                    health=health,
                )
            )
        total = len(rows)
        occupancy = sum(row.last_known_count for row in rows)
        return MappingStats(
            total=total,
            queued=len(self._queue),
            healthy=counts[LinkageHealth.HEALTHY],
            degraded=counts[LinkageHealth.DEGRADED],
            error=counts[LinkageHealth.ERROR],
            average_occupancy=occupancy / total if total else 0.0,
            linkages=tuple(rows),
        )

    async def details(self, primary_id: str) -> LinkageDetails | None:
        linkage = self._table.get(primary_id)
        if linkage is None:
            return None
        validation = await self._validator.validate(linkage)
        return LinkageDetails(
            linkage=linkage,
            validation=validation,
            health=self.health_of(primary_id) or linkage.health,
            queued=self._queue.pending(primary_id),
        )

    # -- commands ------------------------------------------------------------------

    async def bind(self, primary_id: str, secondary_id: str) -> Linkage:
        """Link ``primary_id`` to ``secondary_id`` after checking both exist.

        A secondary held by a placeholder linkage is taken over (logged); one
        held by a real primary raises ``SecondaryAlreadyLinkedError``.
        """

        if not primary_id or not secondary_id:
            raise ValueError("Both a primary id and a secondary id are required")

        async with self._mutations:
            current = self._table.get(primary_id)
            if current is not None and current.secondary_id == secondary_id:
                log.info("Primary %s is already linked to %s", primary_id, secondary_id)
                return current

            owner = self._table.find_by_secondary(secondary_id)
            if owner is not None and not self._placeholders.is_placeholder(owner):
                raise SecondaryAlreadyLinkedError(secondary_id, owner.primary_id)

            result = await self._validator.check(primary_id, secondary_id)
            self._ensure_bindable(primary_id, secondary_id, result)

            if owner is not None:
                log.warning(
                    "Upgrading placeholder linkage %s: secondary %s now follows primary %s",
                    owner.primary_id,
                    secondary_id,
                    primary_id,
                )
                await self._drop(owner.primary_id)
            if current is not None:
                log.info(
                    "Re-linking primary %s from %s to %s",
                    primary_id,
                    current.secondary_id,
                    secondary_id,
                )
                await self._drop(primary_id)

            linkage = self._table.put(primary_id, secondary_id)
            await self._persist(linkage)

        self._queue.schedule(primary_id, self._settings.bind_delay_seconds)
        log.info("Linked %s -> %s", primary_id, secondary_id)
        return linkage

    async def register_placeholder(self, secondary_id: str) -> Linkage:
        """Track a standalone secondary that has no primary yet."""

        placeholder_id = self._placeholders.placeholder_id(secondary_id)
        async with self._mutations:
            existing = self._table.find_by_secondary(secondary_id)
            if existing is not None:
                if existing.primary_id == placeholder_id:
                    return existing
                raise SecondaryAlreadyLinkedError(secondary_id, existing.primary_id)

            result = await self._validator.check(placeholder_id, secondary_id, skip_primary=True)
            self._ensure_bindable(placeholder_id, secondary_id, result)
            linkage = self._table.put(placeholder_id, secondary_id)
            await self._persist(linkage)

        log.info("Registered placeholder %s for secondary %s", placeholder_id, secondary_id)
        return linkage

    async def unbind(self, primary_id: str, *, reason: str = "unlinked") -> bool:
        """Archive the secondary (best effort) and forget the linkage.

        Returns whether a linkage existed. Safe to call repeatedly.
        """

        async with self._mutations:
            self._queue.cancel(primary_id)
            linkage = self._table.get(primary_id)
            if linkage is None:
                log.debug("Unbind for %s ignored: no linkage", primary_id)
                return False
            await self._archive(linkage.secondary_id, reason=reason)
            await self._drop(primary_id)

        log.info("Unlinked %s -> %s (%s)", primary_id, linkage.secondary_id, reason)
        return True

    def observe(self, primary_id: str, count: int) -> bool:
        """Queue a debounced propagation when ``count`` differs from the last write."""

        linkage = self._table.get(primary_id)
        if linkage is None:
            return False
        if count == linkage.last_known_count:
            log.debug("Occupancy of %s unchanged at %s", primary_id, count)
            return False
        self._queue.schedule(primary_id)
        return True

    async def handle(self, event: ResourceEvent) -> None:
        if isinstance(event, OccupancyChanged):
            self.observe(event.primary_id, event.count)
        elif isinstance(event, PrimaryDeleted):
            await self.unbind(event.primary_id, reason="primary deleted")
        elif isinstance(event, PrimaryCreated):
            log.debug("Primary %s created; waiting for an explicit bind", event.primary_id)

    async def cleanup(self) -> SweepReport:
        """Run one health sweep now."""

        return await self._monitor.sweep()

    async def recover_on_startup(self) -> RecoveryReport:
        """Rebuild the table from the repository, discarding stale linkages."""

        if not await self._wait_until_ready():
            log.warning("Resource gateway not ready; deferring linkage recovery")
            return RecoveryReport(success=False, deferred=True, error="gateway not ready")

        try:
            records = await self._repository.load_all()
        except RepositoryError as exc:
            log.exception("Could not load persisted linkages")
            return RecoveryReport(success=False, error=str(exc))

        restored = removed = unverified = skipped = 0
        for record in records:
            if not record.primary_id or not record.secondary_id:
                log.warning("Skipping malformed linkage record %r", record)
                skipped += 1
                continue
            if record.primary_id in self._table:
                skipped += 1
                continue

            result = await self._validator.validate(record)
            status = result.status
            if status is ValidationStatus.INVALID:
                async with self._mutations:
                    if record.primary_id in self._table:
                        log.info(
                            "Keeping %s: bound again while its persisted record was checked",
                            record.primary_id,
                        )
                        skipped += 1
                        continue
                    if (
                        self._should_archive(result)
                        and self._table.find_by_secondary(record.secondary_id) is None
                    ):
                        await self._archive(record.secondary_id, reason="primary deleted")
                    await self._forget_persisted(record.primary_id)
                log.info(
                    "Discarded stale linkage %s -> %s (%s)",
                    record.primary_id,
                    record.secondary_id,
                    result.describe(),
                )
                removed += 1
                continue

            health = LinkageHealth.HEALTHY if status is ValidationStatus.VALID else record.health
            async with self._mutations:
                try:
                    self._table.load(replace(record, health=health))
                except LinkageConflictError as exc:
                    log.warning("Skipping persisted linkage %s: %s", record.primary_id, exc)
                    skipped += 1
                    continue
            if status is ValidationStatus.VALID:
                restored += 1
            else:
                unverified += 1
                log.info(
                    "Restored %s -> %s without verification (%s)",
                    record.primary_id,
                    record.secondary_id,
                    result.describe(),
                )

        report = RecoveryReport(
            success=True,
            loaded=len(records),
            restored=restored,
            removed=removed,
            unverified=unverified,
            skipped=skipped,
        )
        log.info(
            "Recovery finished: loaded=%s, restored=%s, removed=%s, unverified=%s, skipped=%s",
            report.loaded,
            report.restored,
            report.removed,
            report.unverified,
            report.skipped,
        )
        return report

    async def sync_to_repository(self) -> SyncReport:
        """Write every linkage through to the repository."""

        written = failed = 0
        for linkage in self._table.all():
            try:
                await self._repository.upsert(linkage)
            except RepositoryError as exc:
                failed += 1
                log.warning("Could not persist linkage %s: %s", linkage.primary_id, exc)
            else:
                written += 1
        log.info("Repository sync finished: written=%s, failed=%s", written, failed)
        return SyncReport(written=written, failed=failed)

    # -- lifecycle -----------------------------------------------------------------

    async def start(self, *, recover: bool = True) -> RecoveryReport | None:
        report: RecoveryReport | None = None
        if recover:
            report = await self.recover_on_startup()
            if report.deferred:
                self._recovery_task = asyncio.get_running_loop().create_task(
                    self._retry_recovery(), name="linkage-recovery"
                )
        self._monitor.start()
        if self._sync_task is None:
            self._sync_task = asyncio.get_running_loop().create_task(
                self._sync_loop(), name="linkage-sync"
            )
        return report

    async def stop(self) -> None:
        for task in (self._recovery_task, self._sync_task):
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._recovery_task = None
        self._sync_task = None
        await self._monitor.stop()
        await self._queue.shutdown()
        await self.sync_to_repository()

    async def __aenter__(self) -> MappingEngine:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # -- health receiver -----------------------------------------------------------

    def mark_health(self, primary_id: str, secondary_id: str, health: LinkageHealth) -> None:
        self._table.set_health(primary_id, health, secondary_id=secondary_id)

    async def retire(self, linkage: Linkage, result: ValidationResult) -> bool:
        """Remove a linkage that failed validation, archiving when the primary is gone."""

        reason = "primary deleted" if result.primary is Existence.ABSENT else "secondary unusable"
        return await self._retire(linkage, archive=self._should_archive(result), reason=reason)

    # -- internals -----------------------------------------------------------------

    def _ensure_bindable(
        self,
        primary_id: str,
        secondary_id: str,
        result: ValidationResult,
    ) -> None:
        if result.primary is Existence.ABSENT:
            raise ResourceNotFoundError(ResourceKind.PRIMARY, primary_id)
        if result.secondary is Existence.ABSENT:
            raise ResourceNotFoundError(ResourceKind.SECONDARY, secondary_id)
        if result.secondary_finalized:
            raise InvalidLinkageError(f"Secondary {secondary_id} is archived or locked")
        if result.status is not ValidationStatus.VALID:
            raise TransientResourceError(
                f"Could not verify {primary_id} -> {secondary_id} ({result.describe()})"
            )

    @staticmethod
    def _should_archive(result: ValidationResult) -> bool:
        return (
            result.primary is Existence.ABSENT
            and result.secondary is not Existence.ABSENT
            and result.secondary_finalized is not True
        )

    async def _call[T](self, call: Awaitable[T]) -> T:
        async with asyncio.timeout(self._settings.gateway_timeout_seconds):
            return await call

    async def _propagate(self, primary_id: str) -> None:
        try:
            await self._propagate_once(primary_id)
        except Exception as exc:
            self._history.record(primary_id, success=False, detail=str(exc) or type(exc).__name__)
            raise

    async def _propagate_once(self, primary_id: str) -> None:
        linkage = self._table.get(primary_id)
        if linkage is None:
            log.debug("Propagation for %s skipped: linkage removed", primary_id)
            return
        if self._placeholders.is_placeholder(linkage):
            return

        try:
            primary = await self._call(self._gateway.get_primary(primary_id))
        except ResourceNotFoundError:
            self._history.record(primary_id, success=False, detail="primary not found")
            log.info("Primary %s is gone; archiving %s", primary_id, linkage.secondary_id)
            await self._retire(linkage, archive=True, reason="primary deleted")
            return

        try:
            secondary = await self._call(self._gateway.get_secondary(linkage.secondary_id))
        except ResourceNotFoundError:
            self._history.record(primary_id, success=False, detail="secondary not found")
            await self._retire(linkage, archive=False, reason="secondary deleted")
            return
        if secondary.finalized:
            self._history.record(primary_id, success=False, detail="secondary finalized")
            await self._retire(linkage, archive=False, reason="secondary finalized")
            return

        count = primary.occupancy
        if count == linkage.last_known_count:
            self._table.set_health(
                primary_id, LinkageHealth.HEALTHY, secondary_id=linkage.secondary_id
            )
            self._history.record(primary_id, success=True, detail="occupancy unchanged")
            return

        capacity = extract_capacity(secondary.title)
        await self._call(self._gateway.write_occupancy(secondary.id, count, capacity))

        updated = self._table.record_propagation(primary_id, linkage.secondary_id, count)
        if updated is None:
            log.info("Linkage %s changed while its occupancy was written", primary_id)
            return
        await self._persist(updated)
        self._history.record(primary_id, success=True)
        log.info(
            "Propagated occupancy %s/%s for %s -> %s",
            count,
            "N" if capacity is None else capacity,
            primary_id,
            linkage.secondary_id,
        )

    async def _on_exhausted(self, report: PropagationExhaustedError) -> None:
        self._table.set_health(report.primary_id, LinkageHealth.ERROR)

    async def _retire(self, linkage: Linkage, *, archive: bool, reason: str) -> bool:
        async with self._mutations:
            current = self._table.get(linkage.primary_id)
            if current is None or current.secondary_id != linkage.secondary_id:
                return False
            self._queue.cancel(linkage.primary_id)
            if archive:
                await self._archive(linkage.secondary_id, reason=reason)
            await self._drop(linkage.primary_id)
        log.info("Removed linkage %s -> %s (%s)", linkage.primary_id, linkage.secondary_id, reason)
        return True

    async def _drop(self, primary_id: str) -> None:
        """Forget a linkage everywhere without touching the remote resources."""

        self._queue.cancel(primary_id)
        self._table.remove(primary_id)
        await self._forget_persisted(primary_id)

    async def _archive(self, secondary_id: str, *, reason: str) -> bool:
        try:
            outcome = await self._call(
                self._gateway.archive_secondary(secondary_id, reason=reason)
            )
        except ResourceNotFoundError:
            log.info("Secondary %s already gone; nothing to archive", secondary_id)
            return True
        except Exception as exc:  # noqa: BLE001
            log.warning("Could not archive secondary %s: %s", secondary_id, exc)
            return False
        log.info("Archived secondary %s (%s, %s)", secondary_id, outcome, reason)
        return True

    async def _persist(self, linkage: Linkage) -> None:
        try:
            await self._repository.upsert(linkage)
        except RepositoryError as exc:
            log.warning(
                "Could not persist linkage %s; the next sync will retry: %s",
                linkage.primary_id,
                exc,
            )

    async def _forget_persisted(self, primary_id: str) -> None:
        try:
            await self._repository.delete(primary_id)
        except RepositoryError as exc:
            log.warning("Could not delete persisted linkage %s: %s", primary_id, exc)

    async def _wait_until_ready(self) -> bool:
        attempts = self._settings.recovery_attempts
        delay = self._settings.recovery_retry_seconds
        for attempt in range(1, attempts + 1):
            try:
                ready = await self._call(self._gateway.ready())
            except Exception as exc:  # noqa: BLE001
                log.warning("Readiness check failed: %s", exc)
                ready = False
            if ready:
                return True
            if attempt < attempts:
                log.info(
                    "Resource gateway not ready (attempt %s/%s); retrying in %.1fs",
                    attempt,
                    attempts,
                    delay,
                )
                await self._sleep(delay)
                delay = min(delay * 2, self._settings.backoff.max_delay)
        return False

    async def _retry_recovery(self) -> None:
        while True:
            await self._sleep(self._settings.recovery_retry_seconds)
            try:
                report = await self.recover_on_startup()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Deferred linkage recovery failed")
                continue
            if not report.deferred:
                return

    async def _sync_loop(self) -> None:
        while True:
            await self._sleep(self._settings.sync_interval_seconds)
            try:
                await self.sync_to_repository()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Periodic repository sync failed")
