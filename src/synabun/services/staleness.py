"""Detects memories whose related files changed since they were written."""

import hashlib
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel, Field
from qdrant_client import models

from synabun.core.config import settings
from synabun.core.logging import get_logger
from synabun.domain.models import MemoryRecord
from synabun.infrastructure.qdrant import StoreClient
from synabun.infrastructure.qdrant.filters import match_field

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


def resolve_path(path: str, root: Path) -> Path:
    candidate = Path(path).expanduser()
    return candidate if candidate.is_absolute() else root / candidate


def hash_file(path: Path) -> str | None:
    """SHA-256 of the file's bytes, or ``None`` when it cannot be read."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError:
        return None
    return digest.hexdigest()


def compute_checksums(paths: Iterable[str], root: Path | None = None) -> dict[str, str]:
    """Checksums keyed by the path as given; missing files are left out."""
    base = root or settings.project_root
    checksums: dict[str, str] = {}
    for path in paths:
        digest = hash_file(resolve_path(path, base))
        if digest is not None:
            checksums[path] = digest
    return checksums


def changed_files(record: MemoryRecord, root: Path) -> list[str]:
    """Related paths whose current hash differs from (or is absent in) the stored map."""
    changed: list[str] = []
    for path in record.related_files:
        current = hash_file(resolve_path(path, root))
        if current is None:
            continue
        if record.file_checksums.get(path) != current:
            changed.append(path)
    return changed


class StaleMemory(BaseModel):
    id: str
    category: str
    importance: int
    changed_files: list[str]
    related_files: list[str]
    preview: str
    content: str


class StalenessReport(BaseModel):
    checked: int = 0
    stale: list[StaleMemory] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.stale


class StalenessDetector:
    """Read-only scan comparing stored file checksums against the working tree."""

    def __init__(self, store: StoreClient, project_root: Path | None = None, page_size: int | None = None):
        self.store = store
        self.project_root = project_root or settings.project_root
        self.page_size = page_size or settings.bulk_page_size

    async def check(self, project: str | None = None) -> StalenessReport:
        must: list[models.Condition] = []
        if project:
            must.append(match_field("project", project))
        query = models.Filter(
            must=must or None,
            must_not=[models.IsEmptyCondition(is_empty=models.PayloadField(key="related_files"))],
        )

        report = StalenessReport()
        async for page in self.store.scroll_all(query, page_size=self.page_size):
            for record in page.records:
                if not record.related_files:
                    continue
                report.checked += 1
                changed = changed_files(record, self.project_root)
                if changed:
                    report.stale.append(
                        StaleMemory(
                            id=record.id,
                            category=record.category,
                            importance=record.importance,
                            changed_files=changed,
                            related_files=record.related_files,
                            preview=record.preview,
                            content=record.content,
                        )
                    )

        report.stale.sort(key=lambda m: m.importance, reverse=True)
        logger.info("Staleness check finished", checked=report.checked, stale=len(report.stale), project=project)
        return report
