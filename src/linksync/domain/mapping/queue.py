"""Coalescing, per-key delayed scheduler for propagations.

Each key owns at most one *waiting* task. Scheduling again while a task is
still waiting cancels it and starts a new one, so a burst of events collapses
into a single attempt once the key has been quiet for the debounce delay.
Once a task finishes waiting it detaches from the pending slot and runs under
a per-key lock: a newer schedule never cancels an attempt that is already
talking to the remote API, and two attempts for one key never overlap.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from logging import getLogger

from linksync.domain.errors import PropagationExhaustedError
from linksync.domain.model import utcnow

from .settings import BackoffPolicy

log = getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
PropagateFn = Callable[[str], Awaitable[None]]
ExhaustedHook = Callable[[PropagationExhaustedError], Awaitable[None] | None]


@dataclass(frozen=True, slots=True)
class QueuedUpdate:
    """Public view of a waiting task."""

    primary_id: str
    scheduled_at: datetime
    delay: float
    retry_count: int


@dataclass(slots=True)
class _PendingTask:
    task: asyncio.Task[None]
    info: QueuedUpdate


class ReconciliationQueue:
    def __init__(
        self,
        propagate: PropagateFn,
        *,
        debounce: float = 2.0,
        policy: BackoffPolicy | None = None,
        on_exhausted: ExhaustedHook | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._propagate = propagate
        self._debounce = debounce
        self._policy = policy or BackoffPolicy()
        self._on_exhausted = on_exhausted
        self._sleep = sleep

        self._pending: dict[str, _PendingTask] = {}
        self._running: set[asyncio.Task[None]] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._generations: dict[str, int] = {}
        self._counter = itertools.count(1)
        self._active: dict[str, int] = {}
        self._retries: dict[str, int] = {}

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    def schedule(self, primary_id: str, delay: float | None = None) -> None:
        """Request a propagation for ``primary_id`` after ``delay`` seconds.

        Supersedes any task still waiting for the same key and resets its retry
        counter.
        """

        self._retries.pop(primary_id, None)
        self._spawn(primary_id, self._debounce if delay is None else delay, retry_count=0)

    def cancel(self, primary_id: str) -> bool:
        """Drop waiting work for ``primary_id`` and stop its retry chain."""

        self._generations.pop(primary_id, None)
        self._retries.pop(primary_id, None)
        pending = self._pending.pop(primary_id, None)
        if pending is None:
            self._prune(primary_id)
            return False
        pending.task.cancel()
        log.debug("Cancelled queued propagation for %s", primary_id)
        return True

    def pending(self, primary_id: str) -> bool:
        return primary_id in self._pending

    def retrying(self, primary_id: str) -> bool:
        """Whether the key has failed at least once and is waiting for a retry."""

        return self._retries.get(primary_id, 0) > 0

    def retry_count(self, primary_id: str) -> int:
        return self._retries.get(primary_id, 0)

    def queued(self) -> list[QueuedUpdate]:
        return [pending.info for pending in self._pending.values()]

    def __len__(self) -> int:
        return len(self._pending)

    async def shutdown(self) -> None:
        """Cancel every waiting and running task and wait for them to unwind."""

        tasks = [pending.task for pending in self._pending.values()]
        tasks.extend(self._running)
        self._pending.clear()
        self._retries.clear()
        self._generations.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, primary_id: str, delay: float, *, retry_count: int) -> None:
        previous = self._pending.pop(primary_id, None)
        if previous is not None:
            previous.task.cancel()

        generation = self._generations.get(primary_id)
        if generation is None:
            # tokens are never reused: a task from before a cancel cannot match later work
            generation = next(self._counter)
            self._generations[primary_id] = generation
        task = asyncio.get_running_loop().create_task(
            self._run(primary_id, delay, retry_count, generation),
            name=f"propagate:{primary_id}",
        )
        self._pending[primary_id] = _PendingTask(
            task=task,
            info=QueuedUpdate(
                primary_id=primary_id,
                scheduled_at=utcnow(),
                delay=delay,
                retry_count=retry_count,
            ),
        )
        self._running.add(task)
        self._active[primary_id] = self._active.get(primary_id, 0) + 1
        task.add_done_callback(self._running.discard)
        task.add_done_callback(lambda _: self._finished(primary_id))
        log.debug(
            "Queued propagation for %s in %.2fs (retry %s)", primary_id, delay, retry_count
        )

    async def _run(self, primary_id: str, delay: float, retry_count: int, generation: int) -> None:
        await self._sleep(delay)

        pending = self._pending.get(primary_id)
        if pending is not None and pending.task is asyncio.current_task():
            del self._pending[primary_id]

        lock = self._locks.setdefault(primary_id, asyncio.Lock())
        async with lock:
            if self._generations.get(primary_id) != generation:
                return
            try:
                await self._propagate(primary_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                await self._handle_failure(primary_id, retry_count, generation, exc)
            else:
                if primary_id not in self._pending:
                    self._retries.pop(primary_id, None)

    async def _handle_failure(
        self,
        primary_id: str,
        retry_count: int,
        generation: int,
        exc: Exception,
    ) -> None:
        if self._generations.get(primary_id) != generation:
            return
        if primary_id in self._pending:
            # a newer intent is already waiting and will retry on its own
            log.debug("Propagation for %s failed; superseded by a newer request", primary_id)
            return

        if retry_count < self._policy.max_retries:
            delay = self._policy.delay_for(retry_count)
            log.warning(
                "Propagation for %s failed (%s); retry %s/%s in %.1fs",
                primary_id,
                exc,
                retry_count + 1,
                self._policy.max_retries,
                delay,
            )
            self._spawn(primary_id, delay, retry_count=retry_count + 1)
            self._retries[primary_id] = retry_count + 1
            return

        self._retries.pop(primary_id, None)
        report = PropagationExhaustedError(primary_id, exc, attempts=retry_count + 1)
        log.error("%s", report)
        if self._on_exhausted is None:
            return
        result = self._on_exhausted(report)
        if inspect.isawaitable(result):
            await result

    def _finished(self, primary_id: str) -> None:
        remaining = self._active.get(primary_id, 0) - 1
        if remaining > 0:
            self._active[primary_id] = remaining
            return
        self._active.pop(primary_id, None)
        self._prune(primary_id)

    def _prune(self, primary_id: str) -> None:
        """Forget per-key state once no task for the key is alive."""

        if primary_id in self._active or primary_id in self._pending:
            return
        self._locks.pop(primary_id, None)
        self._generations.pop(primary_id, None)
        self._retries.pop(primary_id, None)
