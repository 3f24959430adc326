"""Error levels, codes and the structured detail models carried by every application error."""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from logfire.integrations.pydantic import PluginSettings
from pydantic import BaseModel, Field, field_serializer


class ErrorLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging_level(self) -> int:
        return logging.getLevelNamesMapping()[self.name]


class ErrorCode(str, Enum):
    """Stable codes surfaced to tool and API callers."""

    # Caller input (1xxx)
    INVALID_INPUT = "1002"
    NOT_FOUND = "1003"
    PROCESSING_FAILED = "1004"
    TIMEOUT = "1007"

    # Taxonomy consistency (2xxx)
    CATEGORY_CYCLE = "2001"
    CATEGORY_IN_USE = "2002"

    # Vector store (3xxx)
    STORE_OPERATION = "3002"

    # Embedding provider (4xxx)
    EMBEDDING_FAILED = "4003"

    # Anything else external (5xxx)
    SERVICE_UNAVAILABLE = "5002"


class ErrorDetails(BaseModel, plugin_settings=PluginSettings(logfire={"record": "all"})):
    """Where and when a failure happened."""

    source: str = Field(description="Component that raised, e.g. categories or store")
    operation: str = Field(description="Operation in progress, e.g. rename or upsert")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        return timestamp.isoformat()


class ValidationErrorDetails(ErrorDetails):
    field: str | None = Field(None, description="Argument that was rejected")
    actual_value: Any = Field(None, description="Value the caller sent")
    constraint: str | None = Field(None, description="Rule it broke, e.g. a regex or a range")


class ResourceErrorDetails(ErrorDetails):
    resource_id: str | None = Field(None, description="Category name or memory id")
    resource_type: str = Field(description="category or memory")
    action: str = Field(description="What was attempted on the resource")


class DependentsErrorDetails(ResourceErrorDetails):
    """A taxonomy edit blocked by what depends on the category."""

    children: list[str] = Field(default_factory=list, description="Child categories in the way")
    record_count: int = Field(0, description="Memories still filed under the category")
    ancestors: list[str] = Field(default_factory=list, description="Parent chain that would close a cycle")


class ServiceErrorDetails(ErrorDetails):
    service_name: str = Field(description="External dependency that failed")
    endpoint: str | None = Field(None, description="URL that was called")
    status_code: int | None = Field(None, description="HTTP status, when there was a response")
    latency_ms: float | None = Field(None, description="Time spent before the failure")


class StoreErrorDetails(ServiceErrorDetails):
    collection: str | None = Field(None, description="Collection the call targeted")


class EmbeddingErrorDetails(ServiceErrorDetails):
    model_name: str | None = Field(None, description="Embedding model requested")
    dimensions: int | None = Field(None, description="Vector size requested")


class ApplicationError(Exception):
    """Root of every error the memory core raises on purpose.

    ``details`` may be given as a plain dict; ``source`` and ``operation``
    keys are lifted out of it and anything unknown is dropped.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        level: ErrorLevel = ErrorLevel.ERROR,
        details: ErrorDetails | dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.level = level
        if isinstance(details, ErrorDetails):
            self.details = details
        else:
            fields = dict(details or {})
            self.details = ErrorDetails(
                source=fields.pop("source", "unknown"),
                operation=fields.pop("operation", "unknown"),
            )
        super().__init__(message)
