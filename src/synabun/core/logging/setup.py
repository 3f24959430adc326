"""structlog + Logfire configuration shared by the tool server and the admin API.

Everything renders to stderr: the MCP stdio transport owns stdout. Logfire
only ships spans when ``LOGFIRE_TOKEN`` is set.
"""

import logging
import sys

import logfire
import structlog
from structlog.processors import CallsiteParameter, CallsiteParameterAdder
from structlog.types import EventDict, Processor, WrappedLogger
from structlog.typing import FilteringBoundLogger


def tag_error_code(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    """Surface the type and code of an ``error=`` value as their own keys."""
    error = event_dict.get("error")
    if isinstance(error, BaseException):
        event_dict["error_type"] = type(error).__name__
        code = getattr(error, "code", None)
        if code is not None:
            event_dict["error_code"] = getattr(code, "value", code)
    return event_dict


def setup_logging(level: int = logging.INFO, colors: bool = True) -> None:
    """Configure structlog and route stdlib loggers through the same renderer."""
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        CallsiteParameterAdder(
            parameters=[CallsiteParameter.FILENAME, CallsiteParameter.LINENO, CallsiteParameter.FUNC_NAME]
        ),
        tag_error_code,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    renderer = structlog.dev.ConsoleRenderer(colors=colors)

    structlog.configure(
        processors=[*shared, logfire.StructlogProcessor(), renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # qdrant_client, httpx and uvicorn log through stdlib
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    return structlog.get_logger(name)
