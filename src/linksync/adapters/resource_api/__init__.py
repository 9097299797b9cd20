"""Public interface for the resource API adapter."""

from __future__ import annotations

from .client import HttpResourceGateway
from .schema import PrimaryPayload, SecondaryPayload
from .translator import to_primary, to_secondary

__all__ = [
    "HttpResourceGateway",
    "PrimaryPayload",
    "SecondaryPayload",
    "to_primary",
    "to_secondary",
]
