"""Turns application errors into HTTP responses for the admin API."""

from typing import Any

from fastapi import status
from starlette.exceptions import HTTPException

from synabun.core.logging import get_logger

from .base import ApplicationError, ErrorCode, ErrorLevel
from .error_context import ErrorContext, ErrorContextManager
from .errors import ConsistencyError, NotFoundError, ServiceError, ValidationError

logger = get_logger(__name__)


def status_code_for(error: Exception) -> int:
    """HTTP status for an application error."""
    if isinstance(error, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ConsistencyError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, ServiceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(error, HTTPException):
        return error.status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class ErrorHandler:
    """Captures an error and builds the JSON body returned to API clients."""

    def __init__(self, context_manager: ErrorContextManager | None = None):
        self.context_manager = context_manager or ErrorContextManager()

    def _format_response(
        self,
        error_context: ErrorContext,
        level: ErrorLevel,
        additional_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response: dict[str, Any] = {
            "error": str(error_context.error),
            "error_code": (additional_context or {}).get("error_code", ErrorCode.PROCESSING_FAILED.value),
            "level": level.value,
            "trace_id": error_context.trace_id,
            "timestamp": error_context.timestamp.isoformat(),
        }

        if isinstance(error_context.error, ApplicationError):
            response["error_code"] = error_context.error.code.value
            response["details"] = error_context.error.details.model_dump(mode="json")

        if additional_context and additional_context.get("suggested_solution"):
            response["suggested_solution"] = additional_context["suggested_solution"]

        return response

    def handle(self, error: Exception, context: dict[str, Any] | None = None) -> tuple[int, dict[str, Any]]:
        """Capture ``error`` and return ``(status_code, body)``."""
        level = error.level if isinstance(error, ApplicationError) else ErrorLevel.ERROR
        error_context = self.context_manager.capture_context(error, **(context or {}))
        code = status_code_for(error)
        if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(f"Request failed: {error!s}", trace_id=error_context.trace_id)
        else:
            logger.info(f"Request rejected: {error!s}", trace_id=error_context.trace_id)
        return code, self._format_response(error_context, level, context)


class GlobalErrorHandler(ErrorHandler):
    """Handler installed on the admin app; also covers raw HTTP exceptions."""

    def handle_http_exception(self, error: HTTPException) -> dict[str, Any]:
        """Body for a starlette ``HTTPException`` (routing 404s, dependency 503s)."""
        level = (
            ErrorLevel.ERROR
            if error.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR
            else ErrorLevel.WARNING
        )
        error_context = self.context_manager.capture_context(error, status_code=error.status_code)
        response = self._format_response(error_context=error_context, level=level)
        response["error"] = str(error.detail)
        return response
