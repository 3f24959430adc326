"""Category taxonomy store.

The taxonomy lives in a JSON file per vector-store connection and is cached
in-process as an immutable :class:`TaxonomySnapshot`. Writers commit a whole
new category list; readers always see one complete snapshot.
"""

import json
import os
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from synabun.core.config import ProfileSource, settings
from synabun.core.logging import get_logger
from synabun.domain.models import Category, TaxonomyFile, TaxonomySnapshot
from synabun.domain.models.category import TAXONOMY_FILE_VERSION

logger = get_logger(__name__)

MirrorWriter = Callable[[list[dict[str, Any]]], Awaitable[None]]
FileSignature = tuple[int, int]

COLOR_PALETTE = (
    # Blues and cyans
    "#3b82f6", "#0ea5e9", "#06b6d4", "#0891b2", "#1e40af", "#38bdf8",
    # Purples
    "#8b5cf6", "#a855f7", "#6366f1", "#c084fc", "#7c3aed", "#d946ef",
    # Pinks and roses
    "#ec4899", "#f43f5e", "#db2777", "#f472b6", "#be185d", "#fb7185",
    # Reds and oranges
    "#ef4444", "#f97316", "#dc2626", "#fb923c", "#b91c1c", "#fdba74",
    # Yellows and ambers
    "#eab308", "#f59e0b", "#fbbf24", "#fcd34d", "#d97706", "#fde047",
    # Greens and teals
    "#22c55e", "#10b981", "#84cc16", "#4ade80", "#059669", "#14b8a6",
)

ROUTING_GUIDE_HEADER = (
    "Read each category description as a guideline for what belongs there. "
    "Match your memory to the most specific category. "
    "Parent categories group related children."
)


class TaxonomyParseError(Exception):
    """The taxonomy file exists but could not be parsed."""


def palette_color(name: str) -> str:
    return COLOR_PALETTE[sum(ord(ch) for ch in name) % len(COLOR_PALETTE)]


def file_signature(path: Path) -> FileSignature | None:
    try:
        stat = path.stat()
    except OSError:
        return None
    return (stat.st_mtime_ns, stat.st_size)


def read_taxonomy_file(path: Path) -> TaxonomySnapshot:
    """Parse a taxonomy file.

    A missing file or an unrecognised version yields an empty snapshot.
    Unreadable JSON raises :class:`TaxonomyParseError`.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return TaxonomySnapshot()
    except OSError as e:
        raise TaxonomyParseError(f"Cannot read {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise TaxonomyParseError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict) or data.get("version") != TAXONOMY_FILE_VERSION:
        logger.warning("Unrecognised taxonomy file version, treating as empty", path=str(path))
        return TaxonomySnapshot()

    try:
        document = TaxonomyFile.model_validate(data)
    except PydanticValidationError as e:
        raise TaxonomyParseError(f"Invalid taxonomy document in {path}: {e}") from e
    return TaxonomySnapshot(categories=tuple(document.categories))


def write_taxonomy_file(path: Path, snapshot: TaxonomySnapshot) -> None:
    """Replace ``path`` atomically with ``snapshot``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = (json.dumps(snapshot.to_file(), ensure_ascii=False, indent=2) + "\n").encode("utf-8")
    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(mode="wb", delete=False, dir=str(path.parent), prefix=path.name + ".tmp.") as f:
            tmp_path = Path(f.name)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


def render_routing_guide(snapshot: TaxonomySnapshot) -> str:
    """Human-readable guide to where memories belong, built from live descriptions."""
    lines: list[str] = []
    for parent in (c for c in snapshot.categories if c.is_parent):
        lines.append(f"[{parent.name}] (parent) - {parent.description}")
        for child in snapshot.children(parent.name):
            lines.append(f"  {child.name}={child.description}")

    # Children of non-parent nodes are still routable
    listed_parents = {c.name for c in snapshot.categories if c.is_parent}
    for category in snapshot.categories:
        if category.is_parent or category.parent in listed_parents:
            continue
        lines.append(f"{category.name}={category.description}")

    if not lines:
        return ROUTING_GUIDE_HEADER + "\n(no categories defined yet)"
    return ROUTING_GUIDE_HEADER + "\n" + "\n".join(lines)


class TaxonomyStore:
    """Cached, file-backed category hierarchy for the active connection."""

    def __init__(
        self,
        profiles: ProfileSource,
        data_dir: Path | None = None,
        mirror: MirrorWriter | None = None,
    ):
        self.profiles = profiles
        self.data_dir = data_dir or settings.data_dir
        self.mirror = mirror
        self._snapshot: TaxonomySnapshot | None = None
        self._loaded_path: Path | None = None
        self._own_writes: dict[Path, FileSignature] = {}

    @property
    def path(self) -> Path:
        return self.data_dir / f"custom-categories-{self.profiles.active_connection_id()}.json"

    @property
    def snapshot(self) -> TaxonomySnapshot:
        """Current snapshot, loaded lazily and reloaded when the connection moves."""
        path = self.path
        if self._snapshot is None or self._loaded_path != path:
            try:
                self._snapshot = read_taxonomy_file(path)
            except TaxonomyParseError as e:
                logger.warning(f"Taxonomy file unreadable, starting empty: {e}")
                self._snapshot = TaxonomySnapshot()
            self._loaded_path = path
        return self._snapshot

    def invalidate(self) -> bool:
        """Re-read the file for the active connection.

        Returns ``False`` and keeps the cached snapshot when the file cannot be
        parsed, which happens when a writer is caught mid-write.
        """
        path = self.path
        try:
            fresh = read_taxonomy_file(path)
        except TaxonomyParseError as e:
            if self._snapshot is not None and self._loaded_path == path:
                logger.info(f"Ignoring transient taxonomy parse failure: {e}")
                return False
            logger.warning(f"Taxonomy file unreadable, starting empty: {e}")
            fresh = TaxonomySnapshot()
        self._snapshot = fresh
        self._loaded_path = path
        return True

    async def commit(self, categories: list[Category], mirror: bool = True) -> TaxonomySnapshot:
        """Durably replace the taxonomy, then swap the cached snapshot."""
        path = self.path
        snapshot = TaxonomySnapshot(categories=tuple(categories))
        write_taxonomy_file(path, snapshot)
        signature = file_signature(path)
        if signature is not None:
            self._own_writes[path] = signature
        self._snapshot = snapshot
        self._loaded_path = path
        logger.debug("Taxonomy committed", path=str(path), categories=len(categories))

        if mirror and self.mirror is not None:
            try:
                await self.mirror([c.to_file_dict() for c in categories])
            except Exception as e:
                logger.warning(f"Taxonomy mirror write failed: {e}")
        return snapshot

    def is_own_write(self, path: Path, signature: FileSignature | None) -> bool:
        """Whether ``path`` at ``signature`` is exactly what this process last wrote."""
        return signature is not None and self._own_writes.get(path) == signature

    async def seed_from_mirror(self, entries: list[dict[str, Any]] | None) -> bool:
        """Populate an empty taxonomy from the store's mirrored copy."""
        if not entries or self.snapshot.categories:
            return False
        categories: list[Category] = []
        for entry in entries:
            try:
                categories.append(Category.model_validate(entry))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed mirrored category: {e}")
        if not categories:
            return False
        await self.commit(categories, mirror=False)
        logger.info("Seeded taxonomy from store mirror", categories=len(categories))
        return True

    # Hierarchy queries

    @property
    def categories(self) -> tuple[Category, ...]:
        return self.snapshot.categories

    @property
    def names(self) -> list[str]:
        return self.snapshot.names

    def get(self, name: str) -> Category | None:
        return self.snapshot.get(name)

    def exists(self, name: str) -> bool:
        return self.snapshot.exists(name)

    def children(self, name: str) -> list[Category]:
        return self.snapshot.children(name)

    def top_level(self) -> list[Category]:
        return self.snapshot.top_level()

    def tree(self) -> dict[str, list[Category]]:
        return self.snapshot.tree()

    def ancestors(self, name: str) -> list[str]:
        return self.snapshot.ancestors(name)

    def color_for(self, name: str) -> str:
        category = self.get(name)
        if category is not None and category.color:
            return category.color
        return palette_color(name)

    def routing_guide(self) -> str:
        return render_routing_guide(self.snapshot)
