"""Specific error types for the SynaBun memory core."""

from .base import (
    ApplicationError,
    DependentsErrorDetails,
    EmbeddingErrorDetails,
    ErrorCode,
    ErrorDetails,
    ErrorLevel,
    ResourceErrorDetails,
    ServiceErrorDetails,
    StoreErrorDetails,
    ValidationErrorDetails,
)


class ValidationError(ApplicationError):
    """Caller supplied a value that violates a documented constraint."""

    def __init__(self, message: str, details: ValidationErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.INVALID_INPUT,
            level=ErrorLevel.WARNING,
            details=details,
        )


class NotFoundError(ApplicationError):
    """Referenced memory or category does not exist."""

    def __init__(self, message: str, details: ResourceErrorDetails | dict | None = None):
        super().__init__(
            message=message,
            code=ErrorCode.NOT_FOUND,
            level=ErrorLevel.WARNING,
            details=details,
        )


class ConsistencyError(ApplicationError):
    """Operation rejected because accepting it would break a taxonomy invariant."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        details: DependentsErrorDetails | ErrorDetails | dict | None = None,
    ):
        super().__init__(message=message, code=code, level=ErrorLevel.WARNING, details=details)


class CategoryCycleError(ConsistencyError):
    """Reparenting would make a category its own ancestor."""

    def __init__(self, message: str, details: DependentsErrorDetails | None = None):
        super().__init__(message=message, code=ErrorCode.CATEGORY_CYCLE, details=details)


class CategoryInUseError(ConsistencyError):
    """Delete blocked by child categories or records still using the category."""

    def __init__(self, message: str, details: DependentsErrorDetails):
        super().__init__(message=message, code=ErrorCode.CATEGORY_IN_USE, details=details)

    @property
    def children(self) -> list[str]:
        return getattr(self.details, "children", [])

    @property
    def record_count(self) -> int:
        return getattr(self.details, "record_count", 0)


class ServiceError(ApplicationError):
    """Error from external service calls."""

    def __init__(
        self,
        message: str,
        details: ServiceErrorDetails | None = None,
        code: ErrorCode = ErrorCode.SERVICE_UNAVAILABLE,
    ):
        super().__init__(
            message=message,
            code=code,
            level=ErrorLevel.ERROR,
            details=details or ServiceErrorDetails(
                source="service",
                operation="external_call",
                service_name="unknown"
            )
        )


class StoreError(ServiceError):
    """Vector store call failed or timed out."""

    def __init__(self, message: str, details: StoreErrorDetails | None = None):
        super().__init__(
            message=message,
            details=details or StoreErrorDetails(source="store", operation="unknown", service_name="qdrant"),
            code=ErrorCode.STORE_OPERATION,
        )


class EmbeddingError(ServiceError):
    """Embedding provider rejected the request or could not be reached."""

    def __init__(self, message: str, details: EmbeddingErrorDetails | None = None):
        super().__init__(
            message=message,
            details=details or EmbeddingErrorDetails(source="embeddings", operation="embed", service_name="embeddings"),
            code=ErrorCode.EMBEDDING_FAILED,
        )


class StoreTimeoutError(StoreError):
    """Vector store call exceeded its time bound."""

    def __init__(self, message: str, details: StoreErrorDetails | None = None):
        super().__init__(message=message, details=details)
        self.code = ErrorCode.TIMEOUT
