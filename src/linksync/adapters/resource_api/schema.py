"""Pydantic models describing the resource API payloads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ResourceApiModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StatusPayload(ResourceApiModel):
    ready: bool = False


class PrimaryPayload(ResourceApiModel):
    id: str
    name: str = ""
    occupancy: int = Field(default=0, alias="member_count")
    deleted: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @field_validator("occupancy", mode="before")
    @classmethod
    def _none_to_zero(cls, value: object) -> object:
        if value is None:
            return 0
        return value


class SecondaryPayload(ResourceApiModel):
    id: str
    title: str = Field(default="", alias="name")
    archived: bool = False
    locked: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class OccupancyUpdate(ResourceApiModel):
    count: int
    capacity: int | None = None


class ArchiveRequest(ResourceApiModel):
    reason: str


class ErrorPayload(ResourceApiModel):
    message: str = ""
    code: int | None = None
