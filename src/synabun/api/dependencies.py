"""API dependencies."""

from fastapi import HTTPException

from synabun.runtime import Runtime
from synabun.services.categories import CategoryLifecycleManager
from synabun.services.memory_service import MemoryService

# Set by the main.py lifespan
runtime: Runtime | None = None


def get_runtime() -> Runtime:
    if runtime is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return runtime


def get_memory_service() -> MemoryService:
    return get_runtime().memories


def get_category_manager() -> CategoryLifecycleManager:
    return get_runtime().categories
