"""JSON-lines ``EventSource`` for an external observer piping events in.

One event per line::

    {"type": "occupancy_changed", "primary_id": "P1", "count": 3}
    {"type": "primary_deleted", "primary_id": "P1"}
    {"type": "primary_created", "primary_id": "P2"}

Malformed lines are logged and skipped; iteration ends at end of input.
"""

from __future__ import annotations

import asyncio
import os
import stat
import sys
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from linksync.domain.ports.events import OccupancyChanged, PrimaryCreated, PrimaryDeleted

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from linksync.domain.ports.events import EventSource, ResourceEvent

log = getLogger(__name__)

STDIN_TARGET = "-"


class _EventLine(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    primary_id: str = Field(min_length=1)


class PrimaryCreatedLine(_EventLine):
    type: Literal["primary_created"]


class PrimaryDeletedLine(_EventLine):
    type: Literal["primary_deleted"]


class OccupancyChangedLine(_EventLine):
    type: Literal["occupancy_changed"]
    count: int = Field(ge=0)


EventLine = Annotated[
    PrimaryCreatedLine | PrimaryDeletedLine | OccupancyChangedLine,
    Field(discriminator="type"),
]

_EVENT_LINE = TypeAdapter(EventLine)


def parse_event_line(raw: str | bytes) -> ResourceEvent:
    """Decode one line into a domain event; raises ``ValidationError`` when malformed."""

    line = _EVENT_LINE.validate_json(raw)
    match line:
        case OccupancyChangedLine():
            return OccupancyChanged(line.primary_id, line.count)
        case PrimaryDeletedLine():
            return PrimaryDeleted(line.primary_id)
        case PrimaryCreatedLine():
            return PrimaryCreated(line.primary_id)


class JsonLinesEventSource:
    def __init__(self, reader: asyncio.StreamReader, *, name: str = "stream") -> None:
        self._reader = reader
        self._name = name
        self.received = 0
        self.skipped = 0

    @property
    def name(self) -> str:
        return self._name

    async def events(self) -> AsyncIterator[ResourceEvent]:
        while True:
            raw = await self._reader.readline()
            if not raw:
                log.info(
                    "Event stream %s ended (%s events, %s skipped)",
                    self._name,
                    self.received,
                    self.skipped,
                )
                return
            if not raw.strip():
                continue
            try:
                event = parse_event_line(raw)
            except ValidationError as exc:
                self.skipped += 1
                log.warning(
                    "Skipping malformed event line from %s: %s",
                    self._name,
                    exc.errors(include_url=False),
                )
                continue
            self.received += 1
            yield event


async def open_event_stream(target: str) -> JsonLinesEventSource:
    """Open ``target`` (a file path, or ``-`` for standard input) as an event source."""

    reader = asyncio.StreamReader()
    if target != STDIN_TARGET:
        data = await asyncio.to_thread(Path(target).read_bytes)
        reader.feed_data(data)
        reader.feed_eof()
        return JsonLinesEventSource(reader, name=target)

    if stat.S_ISREG(os.fstat(sys.stdin.fileno()).st_mode):
        # redirected from a regular file, which pipe transports reject
        data = await asyncio.to_thread(sys.stdin.buffer.read)
        reader.feed_data(data)
        reader.feed_eof()
    else:
        loop = asyncio.get_running_loop()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return JsonLinesEventSource(reader, name="stdin")


if TYPE_CHECKING:
    _source_check: EventSource = JsonLinesEventSource(asyncio.StreamReader())
