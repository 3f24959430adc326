"""Memory record domain model."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from synabun.domain.models.utils import iso_now, parse_timestamp

PREVIEW_LENGTH = 120


class MemorySource(str, Enum):
    """Provenance of a memory."""

    USER_TOLD = "user-told"
    SELF_DISCOVERED = "self-discovered"
    MIGRATION = "migration"
    AUTO_SAVED = "auto-saved"


class MemoryPayload(BaseModel):
    """The payload stored alongside a point's vector.

    Every field has a default so legacy payloads written before a field
    existed still validate.
    """

    model_config = ConfigDict(extra="ignore", use_enum_values=True, validate_default=True)

    content: str = ""
    category: str = ""
    subcategory: str | None = None
    project: str = "global"
    tags: list[str] = Field(default_factory=list)
    importance: int = Field(default=5, ge=1, le=10)
    source: MemorySource = MemorySource.SELF_DISCOVERED
    created_at: str = Field(default_factory=iso_now)
    updated_at: str = Field(default_factory=iso_now)
    accessed_at: str = Field(default_factory=iso_now)
    trashed_at: str | None = None
    access_count: int = 0
    related_files: list[str] = Field(default_factory=list)
    file_checksums: dict[str, str] = Field(default_factory=dict)
    related_memory_ids: list[str] = Field(default_factory=list)

    @field_validator("tags", "related_files", "related_memory_ids", mode="before")
    @classmethod
    def _none_as_empty_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("file_checksums", mode="before")
    @classmethod
    def _none_as_empty_dict(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("importance", mode="before")
    @classmethod
    def _coerce_importance(cls, value: Any) -> Any:
        # Older writers accepted any number in range, fractions included
        if value is None:
            return 5
        try:
            number = round(float(value))
        except (TypeError, ValueError, OverflowError):
            return 5
        return min(10, max(1, number))

    @field_validator("source", mode="before")
    @classmethod
    def _unknown_source_as_default(cls, value: Any) -> Any:
        if value in {s.value for s in MemorySource} or isinstance(value, MemorySource):
            return value
        return MemorySource.SELF_DISCOVERED

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump()
        # Absent rather than null: the active-record filter matches on an empty field
        for key in ("subcategory", "trashed_at"):
            if not payload[key]:
                payload.pop(key)
        return payload


class MemoryRecord(MemoryPayload):
    """A memory as returned from the store: payload plus point id."""

    id: str = Field(default_factory=lambda: str(uuid4()))

    @classmethod
    def from_point(cls, point_id: Any, payload: dict[str, Any] | None) -> "MemoryRecord":
        return cls.model_validate({**(payload or {}), "id": str(point_id)})

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.pop("id")
        return payload

    @property
    def created(self) -> datetime | None:
        return parse_timestamp(self.created_at)

    @property
    def is_trashed(self) -> bool:
        return bool(self.trashed_at)

    @property
    def preview(self) -> str:
        if len(self.content) <= PREVIEW_LENGTH:
            return self.content
        return self.content[:PREVIEW_LENGTH] + "..."


class ScoredMemory(BaseModel):
    """A ranked recall hit."""

    record: MemoryRecord
    raw_score: float
    decay: float
    access_boost: float
    project_boosted: bool = False
    score: float

    @property
    def id(self) -> str:
        return self.record.id


class MemoryStats(BaseModel):
    total: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    by_project: dict[str, int] = Field(default_factory=dict)
    oldest: str | None = None
    newest: str | None = None
