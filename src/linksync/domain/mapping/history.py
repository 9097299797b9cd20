"""Bounded log of propagation outcomes."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from linksync.domain.model import utcnow

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class UpdateRecord:
    primary_id: str
    success: bool
    detail: str | None = None
    at: datetime = field(default_factory=utcnow)


class UpdateHistory:
    def __init__(self, maxlen: int = 100) -> None:
        self._records: deque[UpdateRecord] = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._records)

    def record(self, primary_id: str, *, success: bool, detail: str | None = None) -> None:
        self._records.append(UpdateRecord(primary_id=primary_id, success=success, detail=detail))

    def latest(self, limit: int = 50) -> list[UpdateRecord]:
        """Most recent records first."""

        if limit <= 0:
            return []
        return list(reversed(self._records))[:limit]
