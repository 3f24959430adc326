"""Filter construction for memory queries.

Every query that reaches the store goes through :func:`scope_filter`, which
wraps the caller's filter so internal bookkeeping points never leak and
trashed records only appear when asked for.
"""

from collections.abc import Iterable
from enum import Enum
from typing import Any

from qdrant_client import models

SYSTEM_TYPE_FIELD = "_type"
SYSTEM_TYPE_VALUE = "system_metadata"
TRASH_FIELD = "trashed_at"


class TrashScope(str, Enum):
    """Which side of the trash a query sees."""

    ACTIVE = "active"
    ALL = "all"
    TRASHED = "trashed"


def match_field(key: str, value: Any) -> models.FieldCondition:
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


def at_least(key: str, value: float) -> models.FieldCondition:
    return models.FieldCondition(key=key, range=models.Range(gte=value))


def build_filter(
    category: str | None = None,
    project: str | None = None,
    tags: Iterable[str] | None = None,
    min_importance: int | None = None,
    subcategory: str | None = None,
) -> models.Filter | None:
    """Structured memory filter; every tag must be present on a match."""
    must: list[models.Condition] = []
    if category:
        must.append(match_field("category", category))
    if subcategory:
        must.append(match_field("subcategory", subcategory))
    if project:
        must.append(match_field("project", project))
    for tag in tags or ():
        must.append(match_field("tags", tag))
    if min_importance is not None:
        must.append(at_least("importance", min_importance))
    return models.Filter(must=must) if must else None


def _trash_condition() -> models.IsEmptyCondition:
    # is_empty also matches legacy points that never had the field
    return models.IsEmptyCondition(is_empty=models.PayloadField(key=TRASH_FIELD))


def scope_filter(
    query_filter: models.Filter | None = None,
    scope: TrashScope = TrashScope.ACTIVE,
) -> models.Filter:
    """Wrap ``query_filter`` with bookkeeping exclusion and the trash predicate."""
    must: list[models.Condition] = []
    must_not: list[models.Condition] = [match_field(SYSTEM_TYPE_FIELD, SYSTEM_TYPE_VALUE)]

    if query_filter is not None:
        must.append(query_filter)

    if scope is TrashScope.ACTIVE:
        must.append(_trash_condition())
    elif scope is TrashScope.TRASHED:
        must_not.append(_trash_condition())

    return models.Filter(must=must or None, must_not=must_not)
