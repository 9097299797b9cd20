"""In-process ``EventSource`` fed by whatever observes the primary resources."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from linksync.domain.ports.events import EventSource, ResourceEvent

log = getLogger(__name__)

_CLOSED = object()


class AsyncQueueEventSource:
    """Buffer events in an ``asyncio.Queue`` until the engine consumes them.

    ``close()`` ends iteration once the already-published events are drained.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[ResourceEvent | object] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self._queue.qsize()

    async def publish(self, event: ResourceEvent) -> None:
        if self._closed:
            raise RuntimeError("Event source is closed")
        await self._queue.put(event)

    def publish_nowait(self, event: ResourceEvent) -> None:
        if self._closed:
            raise RuntimeError("Event source is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[ResourceEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                log.debug("Event source closed")
                return
            yield item  # pyright: ignore[reportReturnType]


if TYPE_CHECKING:
    _source_check: EventSource = AsyncQueueEventSource()
