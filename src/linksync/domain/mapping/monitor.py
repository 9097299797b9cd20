"""Periodic re-validation of every linkage.

Catches deletions the event stream never reported. The monitor only reads a
snapshot of the table; every state change goes back through the engine.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from linksync.domain.model import LinkageHealth

from .validator import ValidationStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from linksync.domain.model import Linkage

    from .queue import Sleep
    from .validator import ValidationResult, Validator

log = getLogger(__name__)


class HealthReceiver(Protocol):
    """Engine-side callbacks the monitor reports into."""

    def mark_health(self, primary_id: str, secondary_id: str, health: LinkageHealth) -> None: ...

    async def retire(self, linkage: Linkage, result: ValidationResult) -> bool: ...


@dataclass(frozen=True, slots=True)
class SweepReport:
    checked: int = 0
    healthy: int = 0
    invalid: int = 0
    unknown: int = 0
    removed: int = 0


class HealthMonitor:
    def __init__(
        self,
        snapshot: Callable[[], Sequence[Linkage]],
        validator: Validator,
        receiver: HealthReceiver,
        *,
        interval: float = 600.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._snapshot = snapshot
        self._validator = validator
        self._receiver = receiver
        self._interval = interval
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> SweepReport:
        linkages = self._snapshot()
        if not linkages:
            log.debug("Health sweep skipped: no linkages")
            return SweepReport()

        log.info("Health sweep started for %s linkages", len(linkages))
        healthy = invalid = unknown = removed = 0
        for linkage in linkages:
            result = await self._validator.validate(linkage)
            status = result.status
            if status is ValidationStatus.VALID:
                healthy += 1
                self._receiver.mark_health(
                    linkage.primary_id, linkage.secondary_id, LinkageHealth.HEALTHY
                )
            elif status is ValidationStatus.INVALID:
                invalid += 1
                log.warning(
                    "Linkage %s -> %s failed validation (%s)",
                    linkage.primary_id,
                    linkage.secondary_id,
                    result.describe(),
                )
                self._receiver.mark_health(
                    linkage.primary_id, linkage.secondary_id, LinkageHealth.ERROR
                )
                if await self._receiver.retire(linkage, result):
                    removed += 1
            else:
                unknown += 1
                log.info(
                    "Linkage %s -> %s could not be verified (%s); leaving health unchanged",
                    linkage.primary_id,
                    linkage.secondary_id,
                    result.describe(),
                )

        report = SweepReport(
            checked=len(linkages),
            healthy=healthy,
            invalid=invalid,
            unknown=unknown,
            removed=removed,
        )
        log.info(
            "Health sweep finished: checked=%s, healthy=%s, invalid=%s, unknown=%s, removed=%s",
            report.checked,
            report.healthy,
            report.invalid,
            report.unknown,
            report.removed,
        )
        return report

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="health-monitor")
        log.info("Health monitor started (every %.0fs)", self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _loop(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("Health sweep failed")
