"""Error taxonomy shared by the engine, its ports and the adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .model import ResourceKind


class LinkSyncError(RuntimeError):
    """Base class for every error raised by linksync."""


class ResourceNotFoundError(LinkSyncError):
    """The remote API confirmed the resource does not exist (authoritative)."""

    def __init__(self, kind: ResourceKind, resource_id: str) -> None:
        super().__init__(f"{kind} {resource_id} not found")
        self.kind = kind
        self.resource_id = resource_id


class ResourceGatewayError(LinkSyncError):
    """The remote API failed in a way that says nothing about existence."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientResourceError(ResourceGatewayError):
    """Timeout, rate limit or server-side failure; safe to retry."""


class LinkageConflictError(LinkSyncError):
    """A binding collides with an existing linkage."""


class AlreadyLinkedError(LinkageConflictError):
    def __init__(self, primary_id: str, secondary_id: str) -> None:
        super().__init__(f"Primary {primary_id} is already linked to {secondary_id}")
        self.primary_id = primary_id
        self.secondary_id = secondary_id


class SecondaryAlreadyLinkedError(LinkageConflictError):
    def __init__(self, secondary_id: str, primary_id: str) -> None:
        super().__init__(f"Secondary {secondary_id} is already linked to {primary_id}")
        self.secondary_id = secondary_id
        self.primary_id = primary_id


class InvalidLinkageError(LinkSyncError):
    """A bind was rejected because one of the resources is unusable."""


class PropagationExhaustedError(LinkSyncError):
    """Every propagation attempt for a primary failed."""

    def __init__(self, primary_id: str, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"Propagation for {primary_id} failed after {attempts} attempts: {last_error}"
        )
        self.primary_id = primary_id
        self.last_error = last_error
        self.attempts = attempts


class RepositoryError(LinkSyncError):
    """The mapping repository could not read or write linkage records."""
