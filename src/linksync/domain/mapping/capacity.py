"""Capacity hints embedded in secondary titles, e.g. ``"Raid night 2/5"``."""

from __future__ import annotations

import re
from typing import Final

_CAPACITY_PATTERN: Final = re.compile(r"(\d+)/(\d+|[Nn])")


def extract_capacity(title: str | None) -> int | None:
    """Return the maximum occupancy advertised in ``title``.

    ``None`` means unbounded: the title has no ``count/max`` marker or uses
    ``N`` as the maximum.
    """

    if not title:
        return None
    match = _CAPACITY_PATTERN.search(title)
    if match is None:
        return None
    maximum = match.group(2)
    if maximum in {"N", "n"}:
        return None
    return int(maximum)
