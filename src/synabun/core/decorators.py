"""Logging wrapper for service entry points."""

import inspect
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar, cast

from .base import ApplicationError, ErrorLevel
from .error_context import ErrorContextManager
from .logging import get_logger

logger = get_logger(__name__)
P = ParamSpec("P")
T = TypeVar("T")

_QUIET_LEVELS = (ErrorLevel.DEBUG, ErrorLevel.INFO, ErrorLevel.WARNING)


def _log_failure(func: Callable[..., Any], error: Exception, level: ErrorLevel, context: dict[str, Any]) -> None:
    # Rejections are expected outcomes; no traceback for them
    logger.log(
        level.to_logging_level(),
        f"{func.__qualname__} failed: {error!s}",
        function=func.__qualname__,
        error_context=context,
        exc_info=level not in _QUIET_LEVELS,
    )


def with_error_handling(
    error_level: ErrorLevel = ErrorLevel.ERROR,
    reraise: bool = True,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Log any exception escaping the wrapped function, then re-raise it.

    An ``ApplicationError`` is logged at its own level, so a rejected
    category name is a warning while a store outage is an error. Anything
    else is logged at ``error_level``. With ``reraise=False`` the wrapper
    returns ``None`` instead.
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        signature = inspect.signature(func)

        def level_for(error: Exception) -> ErrorLevel:
            return error.level if isinstance(error, ApplicationError) else error_level

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                try:
                    return await cast("Callable[P, Awaitable[T]]", func)(*args, **kwargs)
                except Exception as e:
                    async with ErrorContextManager(e) as ctx:
                        _log_failure(func, e, level_for(e), ctx.to_dict())
                        if reraise:
                            raise
                        return cast("T", None)

            async_wrapper.__signature__ = signature  # type: ignore[attr-defined]
            return cast("Callable[P, T]", async_wrapper)

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                with ErrorContextManager(e) as ctx:
                    _log_failure(func, e, level_for(e), ctx.to_dict())
                    if reraise:
                        raise
                    return cast("T", None)

        sync_wrapper.__signature__ = signature  # type: ignore[attr-defined]
        return sync_wrapper

    return decorator
