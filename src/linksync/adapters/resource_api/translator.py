"""Translate resource API payloads into domain resources."""

from __future__ import annotations

from typing import TYPE_CHECKING

from linksync.domain.model import PrimaryResource, SecondaryResource

if TYPE_CHECKING:
    from .schema import PrimaryPayload, SecondaryPayload


def to_primary(payload: PrimaryPayload) -> PrimaryResource:
    return PrimaryResource(
        id=payload.id,
        name=payload.name,
        occupancy=max(payload.occupancy, 0),
    )


def to_secondary(payload: SecondaryPayload) -> SecondaryResource:
    return SecondaryResource(
        id=payload.id,
        title=payload.title,
        archived=payload.archived,
        locked=payload.locked,
    )
