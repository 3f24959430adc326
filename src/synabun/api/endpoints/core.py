"""Core API endpoints for SynaBun."""

from fastapi import APIRouter, Depends

from synabun import __version__
from synabun.api.dependencies import get_runtime
from synabun.core.logging import get_logger
from synabun.domain.models import iso_now
from synabun.runtime import Runtime

logger = get_logger(__name__)

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with application status."""
    return {"message": "SynaBun memory API", "version": __version__, "status": "running"}


@router.get("/health", operation_id="health")
async def health_check(runtime: Runtime = Depends(get_runtime)):
    """Health check endpoint. Reports the active connection without touching the store."""
    connection = runtime.profiles.active_connection()
    return {
        "status": "healthy",
        "timestamp": iso_now(),
        "connection": connection.id or "default",
        "collection": connection.collection,
        "categories": len(runtime.taxonomy.categories),
    }
