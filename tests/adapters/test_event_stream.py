from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from linksync.adapters.event_stream import (
    JsonLinesEventSource,
    open_event_stream,
    parse_event_line,
)
from linksync.domain.ports import OccupancyChanged, PrimaryCreated, PrimaryDeleted

if TYPE_CHECKING:
    from pathlib import Path

LINES = (
    b'{"type": "occupancy_changed", "primary_id": "P1", "count": 3}\n'
    b"\n"
    b"not json\n"
    b'{"type": "occupancy_changed", "primary_id": "P1", "count": -1}\n'
    b'{"type": "primary_deleted", "primary_id": "P1"}\n'
    b'{"type": "primary_created", "primary_id": 7}\n'
    b'{"type": "primary_created", "primary_id": "P2", "source": "poller"}'
)


async def _collect(source: JsonLinesEventSource) -> list[object]:
    return [event async for event in source.events()]


def test_parse_event_line_maps_types() -> None:
    assert parse_event_line('{"type": "primary_deleted", "primary_id": "P9"}') == PrimaryDeleted(
        "P9"
    )
    with pytest.raises(ValidationError):
        parse_event_line('{"type": "renamed", "primary_id": "P9"}')


@pytest.mark.asyncio
async def test_stream_skips_malformed_lines() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(LINES)
    reader.feed_eof()
    source = JsonLinesEventSource(reader)

    events = await _collect(source)

    assert events == [
        OccupancyChanged("P1", 3),
        PrimaryDeleted("P1"),
        PrimaryCreated("P2"),
    ]
    assert source.received == 3
    assert source.skipped == 3


@pytest.mark.asyncio
async def test_open_event_stream_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    path.write_bytes(b'{"type": "occupancy_changed", "primary_id": "P4", "count": 1}\n')

    source = await open_event_stream(str(path))

    assert source.name == str(path)
    assert await _collect(source) == [OccupancyChanged("P4", 1)]
