"""Vector store client for memory records."""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import UnexpectedResponse

from synabun.core.base import StoreErrorDetails
from synabun.core.config import Connection, ProfileSource, settings
from synabun.core.errors import ApplicationError, StoreError, StoreTimeoutError
from synabun.core.logging import get_logger
from synabun.domain.models import MemoryRecord, MemoryStats, iso_now

from .filters import (
    SYSTEM_TYPE_FIELD,
    SYSTEM_TYPE_VALUE,
    TrashScope,
    match_field,
    scope_filter,
)

logger = get_logger(__name__)

T = TypeVar("T")

MEMORY_LOCATION = ":memory:"
BOOKKEEPING_ID = "00000000-0000-0000-0000-000000000000"
BOOKKEEPING_NAMESPACE = uuid.UUID("6f1c3b9e-2d4a-4c8e-9a57-5b0e7d1f4a23")

KEYWORD_FIELDS = ("category", "project", "tags", "subcategory", "source", "created_at")
INTEGER_FIELDS = ("importance", "access_count")
TEXT_FIELDS = ("content",)

PointId = str | int
PointSelector = str | Sequence[str] | models.Filter


class Page(BaseModel):
    """One page of a scroll plus the cursor for the next one."""

    records: list[MemoryRecord]
    next_cursor: PointId | None = None


def bookkeeping_id(key: str) -> str:
    if key == "categories":
        return BOOKKEEPING_ID
    return str(uuid.uuid5(BOOKKEEPING_NAMESPACE, key))


def _bookkeeping_vector(dimensions: int) -> list[float]:
    # Cosine distance needs a non-zero norm
    return [1.0] + [0.0] * (dimensions - 1)


class StoreClient:
    """Async wrapper around the Qdrant collection that holds memories.

    The active :class:`Connection` is resolved before every call. When its
    url or credential differs from the one the current handle was built
    with, a fresh ``AsyncQdrantClient`` replaces the old one.
    """

    def __init__(self, profiles: ProfileSource, timeout: float | None = None):
        self.profiles = profiles
        self.timeout = timeout if timeout is not None else settings.store_timeout
        self._handle: AsyncQdrantClient | None = None
        self._handle_key: tuple[str, str | None] | None = None

    @property
    def connection(self) -> Connection:
        return self.profiles.active_connection()

    @property
    def collection(self) -> str:
        return self.connection.collection

    def _build_handle(self, connection: Connection) -> AsyncQdrantClient:
        if connection.url == MEMORY_LOCATION:
            return AsyncQdrantClient(location=MEMORY_LOCATION)
        return AsyncQdrantClient(url=connection.url, api_key=connection.api_key, timeout=self.timeout)

    async def client(self) -> AsyncQdrantClient:
        """Current handle, rebuilt if the active connection moved."""
        connection = self.connection
        key = (connection.url, connection.api_key)
        if self._handle is None or key != self._handle_key:
            previous = self._handle
            self._handle = self._build_handle(connection)
            self._handle_key = key
            logger.info(
                "Store handle built",
                connection_id=connection.id,
                url=connection.url,
                collection=connection.collection,
            )
            if previous is not None:
                await self._close_handle(previous)
        return self._handle

    async def _close_handle(self, handle: AsyncQdrantClient) -> None:
        try:
            await handle.close()
        except Exception as e:
            logger.debug(f"Closing previous store handle failed: {e}")

    async def close(self) -> None:
        if self._handle is not None:
            await self._close_handle(self._handle)
            self._handle = None
            self._handle_key = None

    async def _call(self, operation: str, fn: Callable[[AsyncQdrantClient], Awaitable[T]]) -> T:
        client = await self.client()
        start = time.perf_counter()
        try:
            async with asyncio.timeout(self.timeout):
                return await fn(client)
        except ApplicationError:
            raise
        except Exception as e:
            details = StoreErrorDetails(
                source="store",
                operation=operation,
                service_name="qdrant",
                endpoint=self.connection.url,
                status_code=getattr(e, "status_code", None),
                latency_ms=(time.perf_counter() - start) * 1000,
                collection=self.collection,
            )
            if isinstance(e, TimeoutError):
                raise StoreTimeoutError(
                    f"Store {operation} timed out after {self.timeout}s", details=details
                ) from e
            raise StoreError(f"Store {operation} failed: {str(e) or e.__class__.__name__}", details=details) from e

    # Collection bootstrap

    async def ensure_collection(self, dimensions: int) -> bool:
        """Create the collection and its payload indexes if absent.

        Returns ``True`` when this call created the collection.
        """
        collection = self.collection

        async def _ensure(client: AsyncQdrantClient) -> bool:
            if await client.collection_exists(collection):
                return False
            try:
                await client.create_collection(
                    collection_name=collection,
                    vectors_config=models.VectorParams(size=dimensions, distance=models.Distance.COSINE),
                )
            except UnexpectedResponse as e:
                if e.status_code == 409 or "already exists" in str(e):
                    return False
                raise
            except ValueError as e:
                if "already exists" in str(e):
                    return False
                raise

            indexes = (
                [(f, models.PayloadSchemaType.KEYWORD) for f in KEYWORD_FIELDS]
                + [(f, models.PayloadSchemaType.INTEGER) for f in INTEGER_FIELDS]
                + [(f, models.PayloadSchemaType.TEXT) for f in TEXT_FIELDS]
            )
            for field_name, schema in indexes:
                await client.create_payload_index(
                    collection_name=collection, field_name=field_name, field_schema=schema
                )
            return True

        created = await self._call("ensure_collection", _ensure)
        if created:
            logger.info("Created collection", collection=collection, dimensions=dimensions)
        return created

    # Point operations

    async def upsert(self, point_id: str, vector: list[float], payload: dict[str, Any]) -> None:
        await self._call(
            "upsert",
            lambda c: c.upsert(
                collection_name=self.collection,
                points=[models.PointStruct(id=point_id, vector=vector, payload=payload)],
            ),
        )

    async def search(
        self,
        vector: list[float],
        limit: int,
        query_filter: models.Filter | None = None,
        score_threshold: float | None = None,
        scope: TrashScope = TrashScope.ACTIVE,
    ) -> list[tuple[MemoryRecord, float]]:
        """Similarity search; returns ``(record, raw_score)`` pairs, best first."""
        response = await self._call(
            "search",
            lambda c: c.query_points(
                collection_name=self.collection,
                query=vector,
                query_filter=scope_filter(query_filter, scope),
                limit=limit,
                score_threshold=score_threshold,
                with_payload=True,
            ),
        )
        return [(MemoryRecord.from_point(p.id, p.payload), p.score) for p in response.points]

    async def retrieve(self, ids: Sequence[str]) -> list[MemoryRecord]:
        """Fetch records by id, trashed or not. Bookkeeping points are dropped."""
        if not ids:
            return []
        points = await self._call(
            "retrieve",
            lambda c: c.retrieve(
                collection_name=self.collection, ids=list(ids), with_payload=True, with_vectors=False
            ),
        )
        return [
            MemoryRecord.from_point(p.id, p.payload)
            for p in points
            if (p.payload or {}).get(SYSTEM_TYPE_FIELD) != SYSTEM_TYPE_VALUE
        ]

    async def get(self, point_id: str) -> MemoryRecord | None:
        records = await self.retrieve([point_id])
        return records[0] if records else None

    async def set_payload(
        self,
        target: PointSelector,
        payload: dict[str, Any],
        scope: TrashScope = TrashScope.ALL,
    ) -> None:
        """Partial payload update by id, ids, or filter. The vector is untouched."""
        if isinstance(target, models.Filter):
            selector: dict[str, Any] = {"points": scope_filter(target, scope)}
        else:
            ids = [target] if isinstance(target, str) else list(target)
            if not ids:
                return
            selector = {"points": ids}
        await self._call(
            "set_payload",
            lambda c: c.set_payload(collection_name=self.collection, payload=payload, **selector),
        )

    async def delete_payload(self, point_id: str, keys: Sequence[str]) -> None:
        """Remove payload keys from one point."""
        await self._call(
            "delete_payload",
            lambda c: c.delete_payload(collection_name=self.collection, keys=list(keys), points=[point_id]),
        )

    async def scroll(
        self,
        query_filter: models.Filter | None = None,
        page_size: int = 100,
        cursor: PointId | None = None,
        scope: TrashScope = TrashScope.ACTIVE,
    ) -> Page:
        points, next_offset = await self._call(
            "scroll",
            lambda c: c.scroll(
                collection_name=self.collection,
                scroll_filter=scope_filter(query_filter, scope),
                limit=page_size,
                offset=cursor,
                with_payload=True,
                with_vectors=False,
            ),
        )
        return Page(
            records=[MemoryRecord.from_point(p.id, p.payload) for p in points],
            next_cursor=next_offset,
        )

    async def scroll_all(
        self,
        query_filter: models.Filter | None = None,
        page_size: int = 100,
        scope: TrashScope = TrashScope.ACTIVE,
    ) -> AsyncIterator[Page]:
        cursor: PointId | None = None
        while True:
            page = await self.scroll(query_filter, page_size=page_size, cursor=cursor, scope=scope)
            yield page
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def count(
        self,
        query_filter: models.Filter | None = None,
        scope: TrashScope = TrashScope.ACTIVE,
    ) -> int:
        result = await self._call(
            "count",
            lambda c: c.count(
                collection_name=self.collection,
                count_filter=scope_filter(query_filter, scope),
                exact=True,
            ),
        )
        return result.count

    async def delete(self, point_id: str) -> None:
        await self._call(
            "delete",
            lambda c: c.delete(
                collection_name=self.collection,
                points_selector=models.PointIdsList(points=[point_id]),
            ),
        )

    # Bulk rewrite

    async def reassign_field(self, field: str, old: str, new: str, page_size: int | None = None) -> int:
        """Rewrite ``field`` from ``old`` to ``new`` on every record, trashed ones included.

        Pages through matches with the store's cursor and issues one partial
        update per page. Not atomic: a failure leaves earlier pages rewritten,
        and running again picks up whatever still carries ``old``.
        """
        size = page_size or settings.bulk_page_size
        query = models.Filter(must=[match_field(field, old)])
        updated = 0
        async for page in self.scroll_all(query, page_size=size, scope=TrashScope.ALL):
            ids = [r.id for r in page.records]
            if not ids:
                continue
            await self.set_payload(ids, {field: new, "updated_at": iso_now()})
            updated += len(ids)
            logger.debug("Reassigned page", field=field, old=old, new=new, page=len(ids), total=updated)
        return updated

    # Bookkeeping

    async def read_bookkeeping(self, key: str) -> Any | None:
        point_id = bookkeeping_id(key)
        points = await self._call(
            "read_bookkeeping",
            lambda c: c.retrieve(collection_name=self.collection, ids=[point_id], with_payload=True),
        )
        if not points:
            return None
        payload = points[0].payload or {}
        if payload.get(SYSTEM_TYPE_FIELD) != SYSTEM_TYPE_VALUE:
            return None
        return payload.get("data")

    async def write_bookkeeping(self, key: str, data: Any, dimensions: int) -> None:
        payload = {
            SYSTEM_TYPE_FIELD: SYSTEM_TYPE_VALUE,
            "metadata_key": key,
            "data": data,
            "updated_at": iso_now(),
        }
        await self.upsert(bookkeeping_id(key), _bookkeeping_vector(dimensions), payload)

    # Aggregates

    async def stats(self) -> MemoryStats:
        stats = MemoryStats()
        async for page in self.scroll_all(page_size=settings.bulk_page_size):
            for record in page.records:
                stats.total += 1
                stats.by_category[record.category] = stats.by_category.get(record.category, 0) + 1
                project = record.project or "global"
                stats.by_project[project] = stats.by_project.get(project, 0) + 1
                if stats.oldest is None or record.created_at < stats.oldest:
                    stats.oldest = record.created_at
                if stats.newest is None or record.created_at > stats.newest:
                    stats.newest = record.created_at
        return stats
