from .base import ApplicationError, ErrorCode, ErrorDetails, ErrorLevel
from .errors import (
    CategoryCycleError,
    CategoryInUseError,
    ConsistencyError,
    EmbeddingError,
    NotFoundError,
    ServiceError,
    StoreError,
    StoreTimeoutError,
    ValidationError,
)

__all__ = [
    "ApplicationError",
    "CategoryCycleError",
    "CategoryInUseError",
    "ConsistencyError",
    "EmbeddingError",
    "ErrorCode",
    "ErrorDetails",
    "ErrorLevel",
    "NotFoundError",
    "ServiceError",
    "StoreError",
    "StoreTimeoutError",
    "ValidationError",
]
