"""Trace-tagged snapshots of a failure for logs and error responses."""

from datetime import UTC, datetime
from types import TracebackType
from typing import Any
from uuid import uuid4

from .base import ApplicationError
from .logging import get_logger

logger = get_logger(__name__)


class ErrorContext:
    """One failure, a trace id to quote back to the caller, and whatever the raiser knew."""

    def __init__(self, error: Exception, trace_id: str | None = None, **context: Any):
        self.error = error
        self.trace_id = trace_id or str(uuid4())
        self.timestamp = datetime.now(UTC)
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Flat mapping for a structured log event."""
        flat: dict[str, Any] = {
            "error_type": type(self.error).__name__,
            "error_message": str(self.error),
            "trace_id": self.trace_id,
            "timestamp": self.timestamp.isoformat(),
        }
        if isinstance(self.error, ApplicationError):
            flat["error_code"] = self.error.code.value
            flat["error_level"] = self.error.level.value
            flat.update({f"details.{k}": v for k, v in self.error.details.model_dump(mode="json").items()})
        flat.update({f"context.{k}": v for k, v in self.context.items()})
        return flat


class ErrorContextManager:
    """Builds :class:`ErrorContext` objects.

    Used either as a factory (``capture_context``) by the API error handlers,
    or as a ``with`` block around a handler that logs a failure, in which
    case a second exception raised while handling is logged rather than lost.
    """

    def __init__(self, error: Exception | None = None, **context: Any) -> None:
        self._error = error
        self._context = context

    def capture_context(self, error: Exception, **context: Any) -> ErrorContext:
        return ErrorContext(error, **context)

    def _enter(self) -> ErrorContext:
        if self._error is None:
            raise ValueError("ErrorContextManager needs an error to capture")
        return self.capture_context(self._error, **self._context)

    def _exit(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
        # Re-raising the captured error is the normal path
        if exc is not None and exc is not self._error:
            logger.error(f"Failure while handling {type(self._error).__name__}: {exc!r}", exc_info=(exc_type, exc, tb))

    def __enter__(self) -> ErrorContext:
        return self._enter()

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
        self._exit(exc_type, exc, tb)

    async def __aenter__(self) -> ErrorContext:
        return self._enter()

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None
    ) -> None:
        self._exit(exc_type, exc, tb)
