"""Three-valued existence checks for linkages.

A flaky network call must never be mistaken for a deleted resource, so every
lookup resolves to ``PRESENT``, ``ABSENT`` (the API confirmed it is gone) or
``UNKNOWN`` (anything else).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from linksync.domain.errors import ResourceNotFoundError

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from linksync.domain.model import Linkage, PrimaryResource, SecondaryResource
    from linksync.domain.ports.gateway import ResourceGateway

    from .placeholder import PlaceholderPolicy

log = getLogger(__name__)


class Existence(StrEnum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


class ValidationStatus(StrEnum):
    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ValidationResult:
    primary: Existence
    secondary: Existence
    secondary_finalized: bool | None = None
    primary_resource: PrimaryResource | None = None
    secondary_resource: SecondaryResource | None = None

    @property
    def primary_exists(self) -> bool | None:
        return _as_tristate(self.primary)

    @property
    def secondary_exists(self) -> bool | None:
        return _as_tristate(self.secondary)

    @property
    def status(self) -> ValidationStatus:
        if (
            self.primary is Existence.ABSENT
            or self.secondary is Existence.ABSENT
            or self.secondary_finalized is True
        ):
            return ValidationStatus.INVALID
        if self.primary is Existence.PRESENT and self.secondary_finalized is False:
            return ValidationStatus.VALID
        return ValidationStatus.UNKNOWN

    @property
    def valid(self) -> bool:
        return self.status is ValidationStatus.VALID

    def describe(self) -> str:
        finalized = "unknown" if self.secondary_finalized is None else self.secondary_finalized
        return f"primary={self.primary}, secondary={self.secondary}, finalized={finalized}"


def _as_tristate(existence: Existence) -> bool | None:
    if existence is Existence.UNKNOWN:
        return None
    return existence is Existence.PRESENT


class Validator:
    def __init__(
        self,
        gateway: ResourceGateway,
        *,
        timeout: float,
        placeholders: PlaceholderPolicy | None = None,
    ) -> None:
        self._gateway = gateway
        self._timeout = timeout
        self._placeholders = placeholders

    async def validate(self, linkage: Linkage) -> ValidationResult:
        return await self.check(
            linkage.primary_id,
            linkage.secondary_id,
            skip_primary=self._placeholders is not None
            and self._placeholders.is_placeholder(linkage),
        )

    async def check(
        self,
        primary_id: str,
        secondary_id: str,
        *,
        skip_primary: bool = False,
    ) -> ValidationResult:
        """Look both resources up concurrently, each under the gateway timeout."""

        if skip_primary:
            primary_state: tuple[Existence, PrimaryResource | None] = (Existence.PRESENT, None)
            secondary_state = await self._lookup(self._gateway.get_secondary(secondary_id))
        else:
            primary_state, secondary_state = await asyncio.gather(
                self._lookup(self._gateway.get_primary(primary_id)),
                self._lookup(self._gateway.get_secondary(secondary_id)),
            )

        secondary_existence, secondary = secondary_state
        finalized = secondary.finalized if secondary is not None else None
        return ValidationResult(
            primary=primary_state[0],
            secondary=secondary_existence,
            secondary_finalized=finalized,
            primary_resource=primary_state[1],
            secondary_resource=secondary,
        )

    async def _lookup[T](self, call: Awaitable[T]) -> tuple[Existence, T | None]:
        try:
            async with asyncio.timeout(self._timeout):
                resource = await call
        except ResourceNotFoundError:
            return Existence.ABSENT, None
        except TimeoutError:
            log.warning("Resource lookup timed out after %.1fs", self._timeout)
            return Existence.UNKNOWN, None
        except Exception as exc:  # noqa: BLE001
            log.warning("Resource lookup failed, existence unknown: %s", exc)
            return Existence.UNKNOWN, None
        return Existence.PRESENT, resource
