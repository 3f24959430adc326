"""Scoped log context.

Keys bound here are merged into every event by ``merge_contextvars``, so a
category rename or a hot-reload cycle tags all of its log lines, store
client lines included, without passing arguments around.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


@contextmanager
def operation_context(operation: str, **context: Any) -> Iterator[None]:
    """Bind ``operation`` (e.g. ``"category.rename"``) plus extra keys for the block."""
    with structlog.contextvars.bound_contextvars(operation=operation, **context):
        yield
