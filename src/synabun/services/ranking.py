"""Relevance ranking for recall.

Raw cosine similarity is blended with recency, usage and project affinity:

    decay        = 0.5 ** (age_days / 90)      (1.0 when importance >= 8)
    access_boost = min(0.1, access_count * 0.01)
    score        = 0.7 * raw + 0.2 * decay + 0.1 * access_boost
    score       *= 1.2 when the record belongs to the caller's project

Twice the requested number of candidates are fetched so re-ranking has room
to reorder them.
"""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime

from synabun.core.config import detect_project, settings
from synabun.core.logging import get_logger
from synabun.domain.models import MemoryRecord, ScoredMemory, iso_now, parse_timestamp, utc_now
from synabun.infrastructure.qdrant import StoreClient, build_filter

logger = get_logger(__name__)

HALF_LIFE_DAYS = 90.0
SHIELD_IMPORTANCE = 8
SIMILARITY_WEIGHT = 0.7
DECAY_WEIGHT = 0.2
ACCESS_WEIGHT = 0.1
ACCESS_STEP = 0.01
ACCESS_CAP = 0.1
PROJECT_BOOST = 1.2
OVERFETCH = 2

_EPOCH = datetime.min.replace(tzinfo=UTC)


def age_in_days(created_at: str | datetime | None, now: datetime) -> float:
    created = parse_timestamp(created_at)
    if created is None:
        return 0.0
    return max(0.0, (now - created).total_seconds() / 86400)


def decay_factor(age_days: float, importance: int) -> float:
    """Time decay with a 90-day half-life; important memories never fade."""
    if importance >= SHIELD_IMPORTANCE:
        return 1.0
    return 0.5 ** (age_days / HALF_LIFE_DAYS)


def access_boost(access_count: int) -> float:
    return min(ACCESS_CAP, access_count * ACCESS_STEP)


def blend(raw: float, decay: float, boost: float, project_match: bool = False) -> float:
    score = SIMILARITY_WEIGHT * raw + DECAY_WEIGHT * decay + ACCESS_WEIGHT * boost
    return score * PROJECT_BOOST if project_match else score


def score_candidate(
    record: MemoryRecord,
    raw: float,
    now: datetime,
    current_project: str | None = None,
    explicit_project: bool = False,
) -> ScoredMemory:
    decay = decay_factor(age_in_days(record.created_at, now), record.importance)
    boost = access_boost(record.access_count)
    project_match = not explicit_project and current_project is not None and record.project == current_project
    return ScoredMemory(
        record=record,
        raw_score=raw,
        decay=decay,
        access_boost=boost,
        project_boosted=project_match,
        score=blend(raw, decay, boost, project_match),
    )


def rank_candidates(
    candidates: Iterable[tuple[MemoryRecord, float]],
    limit: int,
    now: datetime,
    current_project: str | None = None,
    explicit_project: bool = False,
) -> list[ScoredMemory]:
    """Score, order (score desc, then newest first) and truncate."""
    scored = [score_candidate(r, raw, now, current_project, explicit_project) for r, raw in candidates]
    scored.sort(key=lambda s: (s.score, s.record.created or _EPOCH), reverse=True)
    return scored[:limit]


class RelevanceRanker:
    """Fetches candidates from the store and re-ranks them."""

    def __init__(
        self,
        store: StoreClient,
        current_project: str | None = None,
        min_score: float | None = None,
    ):
        self.store = store
        self.current_project = current_project or settings.current_project or detect_project()
        self.min_score = min_score if min_score is not None else settings.recall_min_score
        self._background_tasks: set[asyncio.Task[None]] = set()

    async def rank(
        self,
        vector: list[float],
        limit: int = 5,
        category: str | None = None,
        project: str | None = None,
        tags: list[str] | None = None,
        min_importance: int | None = None,
        min_score: float | None = None,
        current_project: str | None = None,
        track_access: bool = True,
        now: datetime | None = None,
    ) -> list[ScoredMemory]:
        query_filter = build_filter(category=category, project=project, tags=tags, min_importance=min_importance)
        candidates = await self.store.search(
            vector,
            limit=limit * OVERFETCH,
            query_filter=query_filter,
            score_threshold=self.min_score if min_score is None else min_score,
        )
        results = rank_candidates(
            candidates,
            limit,
            now or utc_now(),
            current_project=current_project or self.current_project,
            explicit_project=bool(project),
        )
        logger.debug("Ranked recall", candidates=len(candidates), returned=len(results))
        if track_access:
            self.track_access(r.record for r in results)
        return results

    def track_access(self, records: Iterable[MemoryRecord]) -> None:
        """Bump access metadata in detached tasks; never blocks or fails the caller."""
        for record in records:
            task = asyncio.create_task(self._touch(record))
            self._background_tasks.add(task)
            task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Access tracking task failed: {task.exception()!r}")

    async def _touch(self, record: MemoryRecord) -> None:
        try:
            await self.store.set_payload(
                record.id,
                {"accessed_at": iso_now(), "access_count": record.access_count + 1},
            )
        except Exception as e:
            logger.debug(f"Access tracking for {record.id} failed: {e}")

    async def drain(self) -> None:
        """Wait for outstanding access-tracking tasks."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background_tasks):
            task.cancel()
        await self.drain()
