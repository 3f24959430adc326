"""Structured logging for the memory core."""

from .context import operation_context
from .setup import get_logger, setup_logging

__all__ = ["get_logger", "operation_context", "setup_logging"]
