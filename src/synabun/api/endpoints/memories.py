"""Memory admin endpoints: trash management, stats and staleness."""

from fastapi import APIRouter, Depends, Query

from synabun.api.dependencies import get_memory_service
from synabun.core.logging import get_logger
from synabun.domain.models import MemoryRecord, MemoryStats
from synabun.services.memory_service import MemoryService
from synabun.services.staleness import StalenessReport

logger = get_logger(__name__)
router = APIRouter()


@router.get("/stats", operation_id="memory_stats")
async def memory_stats(memory_service: MemoryService = Depends(get_memory_service)) -> MemoryStats:
    return await memory_service.stats()


@router.get("/trash", operation_id="list_trash")
async def list_trash(
    limit: int = Query(50, ge=1, le=500),
    memory_service: MemoryService = Depends(get_memory_service),
) -> list[MemoryRecord]:
    return await memory_service.list_trash(limit=limit)


@router.delete("/{memory_id}", operation_id="trash_memory")
async def trash_memory(memory_id: str, memory_service: MemoryService = Depends(get_memory_service)) -> MemoryRecord:
    return await memory_service.forget(memory_id)


@router.post("/{memory_id}/restore", operation_id="restore_memory")
async def restore_memory(memory_id: str, memory_service: MemoryService = Depends(get_memory_service)) -> MemoryRecord:
    return await memory_service.restore(memory_id)


@router.delete("/{memory_id}/purge", operation_id="purge_memory")
async def purge_memory(memory_id: str, memory_service: MemoryService = Depends(get_memory_service)) -> MemoryRecord:
    return await memory_service.purge(memory_id)


@router.get("/staleness", operation_id="staleness_report")
async def staleness_report(
    project: str | None = None,
    memory_service: MemoryService = Depends(get_memory_service),
) -> StalenessReport:
    return await memory_service.check_staleness(project)
