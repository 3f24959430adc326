"""Memory record lifecycle.

Creation, the two update paths (metadata-only ``set_payload`` versus a
re-embedded upsert when content changes), soft delete, restore, purge, and
the read paths (ranked recall, browsing, stats, staleness).
"""

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from synabun.core.base import ErrorLevel, ValidationErrorDetails
from synabun.core.config import detect_project, settings
from synabun.core.decorators import with_error_handling
from synabun.core.errors import NotFoundError, ServiceError, ValidationError
from synabun.core.logging import get_logger
from synabun.domain.models import MemoryRecord, MemorySource, MemoryStats, ScoredMemory, iso_now
from synabun.infrastructure.qdrant import StoreClient, TrashScope, build_filter
from synabun.services import EmbeddingService
from synabun.services.ranking import RelevanceRanker
from synabun.services.staleness import StalenessDetector, StalenessReport, compute_checksums
from synabun.services.taxonomy import TaxonomyStore

logger = get_logger(__name__)

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
TAXONOMY_MIRROR_KEY = "categories"

BrowseAction = Literal["recent", "by-category", "by-project"]


class ReflectResult(BaseModel):
    record: MemoryRecord
    changes: list[str] = Field(default_factory=list)
    reembedded: bool = False


def _invalid(message: str, field: str, value: Any, constraint: str | None = None) -> ValidationError:
    return ValidationError(
        message,
        details=ValidationErrorDetails(
            source="memories", operation="validate", field=field, actual_value=value, constraint=constraint
        ),
    )


class MemoryService:
    """Facade over the store, embeddings, taxonomy and ranker."""

    def __init__(
        self,
        store: StoreClient,
        embeddings: EmbeddingService,
        taxonomy: TaxonomyStore,
        ranker: RelevanceRanker | None = None,
        staleness: StalenessDetector | None = None,
        project_root: Path | None = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.taxonomy = taxonomy
        self.ranker = ranker or RelevanceRanker(store)
        self.project_root = project_root or settings.project_root
        self.staleness = staleness or StalenessDetector(store, self.project_root)

    # Startup

    async def initialize(self) -> None:
        """Bootstrap the collection and seed the taxonomy from the store mirror.

        An unreachable store is logged and absorbed; the first real
        operation will fail explicitly instead.
        """
        try:
            await self.store.ensure_collection(self.embeddings.dimensions)
            await self.taxonomy.seed_from_mirror(await self.store.read_bookkeeping(TAXONOMY_MIRROR_KEY))
        except ServiceError as e:
            logger.warning(f"Store unavailable at startup, continuing degraded: {e.message}")

    async def mirror_taxonomy(self, entries: list[dict[str, Any]]) -> None:
        """Write-through target for :class:`TaxonomyStore` commits."""
        await self.store.write_bookkeeping(TAXONOMY_MIRROR_KEY, entries, self.embeddings.dimensions)

    # Validation

    def validate_category(self, category: str) -> None:
        if not self.taxonomy.exists(category):
            raise _invalid(
                f'Unknown category "{category}". Valid categories: {", ".join(self.taxonomy.names) or "(none)"}',
                "category",
                category,
                "existing category",
            )

    @staticmethod
    def validate_id(memory_id: str) -> None:
        if not UUID_PATTERN.match(memory_id):
            raise _invalid(
                f"Invalid memory_id format. Expected full UUID "
                f"(e.g. 8f7cab3b-644e-4cea-8662-de0ca695bdf2), got: {memory_id}",
                "memory_id",
                memory_id,
                "uuid",
            )

    @staticmethod
    def validate_importance(importance: Any) -> int:
        if isinstance(importance, bool) or not isinstance(importance, int):
            raise _invalid(f"Importance must be an integer from 1 to 10. Got {importance!r}.",
                           "importance", importance, "1..10")
        if not 1 <= importance <= 10:
            raise _invalid(f"Importance must be between 1 and 10. Got {importance}.",
                           "importance", importance, "1..10")
        return importance

    async def _require(self, memory_id: str) -> MemoryRecord:
        self.validate_id(memory_id)
        record = await self.store.get(memory_id)
        if record is None:
            raise NotFoundError(
                f'Memory "{memory_id}" not found. Use recall to search for the memory first.',
                details={"source": "memories", "operation": "lookup"},
            )
        return record

    # Writes

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def remember(
        self,
        content: str,
        category: str,
        project: str | None = None,
        tags: list[str] | None = None,
        importance: int = 5,
        subcategory: str | None = None,
        source: MemorySource | str = MemorySource.SELF_DISCOVERED,
        related_files: list[str] | None = None,
        related_memory_ids: list[str] | None = None,
    ) -> MemoryRecord:
        if not content or not content.strip():
            raise _invalid("Memory content must not be empty.", "content", content, "non-empty")
        self.validate_category(category)
        self.validate_importance(importance)
        try:
            source = MemorySource(source)
        except ValueError:
            raise _invalid(
                f'Unknown source "{source}". Use one of: {", ".join(s.value for s in MemorySource)}',
                "source",
                source,
            ) from None

        now = iso_now()
        files = related_files or []
        record = MemoryRecord(
            content=content,
            category=category,
            subcategory=subcategory or None,
            project=project or self.ranker.current_project or detect_project(),
            tags=tags or [],
            importance=importance,
            source=source,
            created_at=now,
            updated_at=now,
            accessed_at=now,
            related_files=files,
            file_checksums=compute_checksums(files, self.project_root) if files else {},
            related_memory_ids=related_memory_ids or [],
        )
        vector = await self.embeddings.embed_text(content)
        await self.store.upsert(record.id, vector, record.to_payload())
        logger.info("Memory stored", memory_id=record.id, category=category, project=record.project)
        return record

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def reflect(
        self,
        memory_id: str,
        content: str | None = None,
        importance: int | None = None,
        tags: list[str] | None = None,
        add_tags: list[str] | None = None,
        subcategory: str | None = None,
        category: str | None = None,
        related_files: list[str] | None = None,
        related_memory_ids: list[str] | None = None,
    ) -> ReflectResult:
        """Update a memory. New content is re-embedded; anything else is a partial payload update."""
        self.validate_id(memory_id)
        if category:
            self.validate_category(category)
        if importance is not None:
            self.validate_importance(importance)
        existing = await self._require(memory_id)

        updates: dict[str, Any] = {}
        changes: list[str] = []
        if content:
            updates["content"] = content
            changes.append("content")
        if importance is not None:
            updates["importance"] = importance
            changes.append(f"importance -> {importance}")
        if category:
            updates["category"] = category
            changes.append(f"category -> {category}")
        if subcategory:
            updates["subcategory"] = subcategory
            changes.append(f"subcategory -> {subcategory}")
        if tags is not None:
            updates["tags"] = list(tags)
            changes.append("tags replaced")
        if add_tags:
            merged = list(updates.get("tags", existing.tags))
            merged.extend(t for t in add_tags if t not in merged)
            updates["tags"] = merged
            changes.append(f"tags added: {', '.join(add_tags)}")
        if related_files is not None:
            updates["related_files"] = list(related_files)
            changes.append("related_files updated")
        if related_memory_ids is not None:
            updates["related_memory_ids"] = list(related_memory_ids)
            changes.append("related_memory_ids updated")

        if not changes:
            raise _invalid("No changes specified.", "memory_id", memory_id, "at least one change")

        if "content" in updates or "related_files" in updates:
            files = updates.get("related_files", existing.related_files)
            updates["file_checksums"] = compute_checksums(files, self.project_root)
        updates["updated_at"] = iso_now()

        record = existing.model_copy(update=updates)
        if "content" in updates:
            vector = await self.embeddings.embed_text(record.content)
            await self.store.upsert(memory_id, vector, record.to_payload())
        else:
            await self.store.set_payload(memory_id, updates)
        logger.info("Memory updated", memory_id=memory_id, changes=changes)
        return ReflectResult(record=record, changes=changes, reembedded="content" in updates)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def forget(self, memory_id: str) -> MemoryRecord:
        """Soft delete: the record moves to the trash and out of every default query."""
        record = await self._require(memory_id)
        if record.is_trashed:
            raise _invalid(f'Memory "{memory_id}" is already in the trash.', "memory_id", memory_id, "active")
        now = iso_now()
        await self.store.set_payload(memory_id, {"trashed_at": now})
        logger.info("Memory trashed", memory_id=memory_id)
        return record.model_copy(update={"trashed_at": now})

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def restore(self, memory_id: str) -> MemoryRecord:
        record = await self._require(memory_id)
        if not record.is_trashed:
            raise _invalid(f'Memory "{memory_id}" is not in the trash.', "memory_id", memory_id, "trashed")
        await self.store.delete_payload(memory_id, ["trashed_at"])
        logger.info("Memory restored", memory_id=memory_id)
        return record.model_copy(update={"trashed_at": None})

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def purge(self, memory_id: str) -> MemoryRecord:
        """Permanent delete."""
        record = await self._require(memory_id)
        await self.store.delete(memory_id)
        logger.info("Memory purged", memory_id=memory_id)
        return record

    # Reads

    async def list_trash(self, limit: int = 50) -> list[MemoryRecord]:
        records: list[MemoryRecord] = []
        async for page in self.store.scroll_all(page_size=settings.bulk_page_size, scope=TrashScope.TRASHED):
            records.extend(page.records)
        records.sort(key=lambda r: r.trashed_at or "", reverse=True)
        return records[:limit]

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def recall(
        self,
        query: str,
        limit: int = 5,
        category: str | None = None,
        project: str | None = None,
        tags: list[str] | None = None,
        min_importance: int | None = None,
        min_score: float | None = None,
    ) -> list[ScoredMemory]:
        if not query or not query.strip():
            raise _invalid("Query must not be empty.", "query", query, "non-empty")
        if category:
            self.validate_category(category)
        if min_importance is not None:
            self.validate_importance(min_importance)
        vector = await self.embeddings.embed_text(query)
        return await self.ranker.rank(
            vector,
            limit=limit,
            category=category,
            project=project,
            tags=tags,
            min_importance=min_importance,
            min_score=min_score,
        )

    async def browse(
        self,
        action: BrowseAction = "recent",
        category: str | None = None,
        project: str | None = None,
        limit: int = 10,
    ) -> list[MemoryRecord]:
        """Newest-first listing, optionally narrowed to a category or project."""
        if category:
            self.validate_category(category)
        if action == "by-category" and not category:
            raise _invalid("by-category needs a category.", "category", category, "required")
        if action == "by-project" and not project:
            raise _invalid("by-project needs a project.", "project", project, "required")
        if action not in ("recent", "by-category", "by-project"):
            raise _invalid(f'Unknown action "{action}". Use recent, by-category or by-project.', "action", action)

        query_filter = build_filter(
            category=category if action in ("recent", "by-category") else None,
            project=project if action in ("recent", "by-project") else None,
        )
        records: list[MemoryRecord] = []
        async for page in self.store.scroll_all(query_filter, page_size=settings.bulk_page_size):
            records.extend(page.records)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]

    async def stats(self) -> MemoryStats:
        return await self.store.stats()

    async def check_staleness(self, project: str | None = None) -> StalenessReport:
        return await self.staleness.check(project=project)
