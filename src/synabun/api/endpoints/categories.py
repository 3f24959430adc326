"""Category admin endpoints."""

from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from synabun.api.dependencies import get_category_manager
from synabun.core.logging import get_logger
from synabun.domain.models import Category
from synabun.services.categories import CategoryLifecycleManager, DeleteResult, UpdateResult

logger = get_logger(__name__)
router = APIRouter()


class CreateCategoryRequest(BaseModel):
    name: str
    description: str
    parent: str | None = None
    color: str | None = None
    is_parent: bool = False


class UpdateCategoryRequest(BaseModel):
    """``None`` leaves a field alone; ``""`` clears parent or color."""

    new_name: str | None = None
    description: str | None = None
    parent: str | None = None
    color: str | None = None
    is_parent: bool | None = None


class DeleteCategoryRequest(BaseModel):
    reassign_records_to: str | None = Field(None, description="Category that receives the memories")
    reassign_children_to: str | None = Field(None, description='New parent for children, "" for top level')


@router.get("", operation_id="list_categories")
async def list_categories(
    format: Literal["flat", "tree", "parents-only"] = "tree",
    manager: CategoryLifecycleManager = Depends(get_category_manager),
) -> dict[str, Any]:
    return {"format": format, "categories": manager.list_categories(format)}


@router.post("", status_code=201, operation_id="create_category")
async def create_category(
    request: CreateCategoryRequest,
    manager: CategoryLifecycleManager = Depends(get_category_manager),
) -> Category:
    return await manager.create(**request.model_dump())


@router.patch("/{name}", operation_id="update_category")
async def update_category(
    name: str,
    request: UpdateCategoryRequest,
    manager: CategoryLifecycleManager = Depends(get_category_manager),
) -> UpdateResult:
    return await manager.update(name, **request.model_dump())


@router.post("/{name}/delete", operation_id="delete_category")
async def delete_category(
    name: str,
    request: DeleteCategoryRequest,
    manager: CategoryLifecycleManager = Depends(get_category_manager),
) -> DeleteResult:
    return await manager.delete(name, **request.model_dump())


@router.get("/routing-guide", operation_id="routing_guide")
async def routing_guide(manager: CategoryLifecycleManager = Depends(get_category_manager)) -> dict[str, str]:
    return {"guide": manager.taxonomy.routing_guide()}
