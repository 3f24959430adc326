"""Category lifecycle: create, rename, reparent, update, delete, list.

The category name is copied into every memory payload, so renames and
deletes have to rewrite records in the store as well as the taxonomy file.
The two are not transactional. A rename commits the taxonomy first and then
rewrites records; a failure in the rewrite is reported as a warning and can
be repaired by running the same rename again. A delete rewrites records first
and only touches the taxonomy once that has succeeded.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field
from qdrant_client import models

from synabun.core.base import DependentsErrorDetails, ValidationErrorDetails
from synabun.core.config import settings
from synabun.core.decorators import with_error_handling
from synabun.core.errors import (
    ApplicationError,
    CategoryCycleError,
    CategoryInUseError,
    NotFoundError,
    ValidationError,
)
from synabun.core.logging import get_logger, operation_context
from synabun.domain.models import Category
from synabun.domain.models.category import COLOR_PATTERN, NAME_MAX_LENGTH, NAME_MIN_LENGTH, NAME_PATTERN
from synabun.infrastructure.qdrant import StoreClient, TrashScope
from synabun.infrastructure.qdrant.filters import match_field
from synabun.services.hot_reload import ChangeNotifier
from synabun.services.taxonomy import TaxonomyStore


logger = get_logger(__name__)

ListFormat = Literal["flat", "tree", "parents-only"]


class RenameResult(BaseModel):
    old_name: str
    new_name: str
    children_updated: list[str] = Field(default_factory=list)
    records_updated: int = 0
    taxonomy_changed: bool = True
    warning: str | None = None


class DeleteResult(BaseModel):
    name: str
    records_reassigned: int = 0
    records_target: str | None = None
    children_moved: list[str] = Field(default_factory=list)
    children_target: str | None = None


class UpdateResult(BaseModel):
    category: Category
    rename: RenameResult | None = None
    changes: list[str] = Field(default_factory=list)


def _invalid(message: str, field: str, value: Any, constraint: str) -> ValidationError:
    return ValidationError(
        message,
        details=ValidationErrorDetails(
            source="categories",
            operation="validate",
            field=field,
            actual_value=value,
            constraint=constraint,
        ),
    )


def _category_filter(name: str) -> models.Filter:
    return models.Filter(must=[match_field("category", name)])


class CategoryLifecycleManager:
    """Applies validated taxonomy edits and keeps stored records in step."""

    def __init__(
        self,
        taxonomy: TaxonomyStore,
        store: StoreClient,
        notifier: ChangeNotifier | None = None,
        page_size: int | None = None,
    ):
        self.taxonomy = taxonomy
        self.store = store
        self.notifier = notifier
        self.page_size = page_size or settings.bulk_page_size

    # Validation

    def validate_name(self, name: str, field: str = "name") -> None:
        """Shape, length and uniqueness of a new category name."""
        if not (NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH):
            raise _invalid(
                f"Category name must be {NAME_MIN_LENGTH}-{NAME_MAX_LENGTH} characters. Got {len(name)}.",
                field,
                name,
                f"length {NAME_MIN_LENGTH}..{NAME_MAX_LENGTH}",
            )
        if not NAME_PATTERN.match(name):
            raise _invalid(
                "Category name must match /^[a-z][a-z0-9-]*$/ "
                "(lowercase, starts with letter, only letters/digits/hyphens).",
                field,
                name,
                NAME_PATTERN.pattern,
            )
        if self.taxonomy.exists(name):
            raise _invalid(f'Category "{name}" already exists.', field, name, "unique")

    def _validate_color(self, color: str) -> None:
        if not COLOR_PATTERN.match(color):
            raise _invalid(f'Color must be a hex value like "#3b82f6". Got "{color}".', "color", color, "#rrggbb")

    def _require(self, name: str, field: str = "name") -> Category:
        category = self.taxonomy.get(name)
        if category is None:
            raise NotFoundError(
                f'Category "{name}" does not exist. Available: {", ".join(self.taxonomy.names) or "(none)"}',
                details={"source": "categories", "operation": "lookup", "field": field},
            )
        return category

    def _require_target(self, target: str, field: str) -> None:
        if not self.taxonomy.exists(target):
            raise _invalid(
                f'Unknown category "{target}". Valid categories: {", ".join(self.taxonomy.names)}',
                field,
                target,
                "existing category",
            )

    def check_parent(self, name: str, new_parent: str) -> None:
        """Reject ``new_parent`` for ``name`` if it is missing or would close a cycle."""
        self._require_target(new_parent, "parent")
        chain = [new_parent, *self.taxonomy.ancestors(new_parent)]
        if name in chain:
            raise CategoryCycleError(
                f'Cannot make "{new_parent}" the parent of "{name}": '
                f'"{name}" would become its own ancestor ({" -> ".join(chain)}).',
                details=DependentsErrorDetails(
                    source="categories",
                    operation="reparent",
                    resource_id=name,
                    resource_type="category",
                    action="reparent",
                    ancestors=chain,
                ),
            )

    async def _publish(self) -> None:
        if self.notifier is not None:
            await self.notifier.publish()

    # Mutations

    @with_error_handling(reraise=True)
    async def create(
        self,
        name: str,
        description: str,
        parent: str | None = None,
        color: str | None = None,
        is_parent: bool = False,
    ) -> Category:
        self.validate_name(name)
        if not description or not description.strip():
            raise _invalid("Category description must not be empty.", "description", description, "non-empty")
        if parent:
            self._require_target(parent, "parent")
        if color:
            self._validate_color(color)

        category = Category(
            name=name,
            description=description.strip(),
            parent=parent or None,
            color=color or None,
            is_parent=is_parent,
        )
        await self.taxonomy.commit([*self.taxonomy.categories, category])
        logger.info("Category created", category=name, parent=parent)
        await self._publish()
        return category

    @with_error_handling(reraise=True)
    async def rename(self, old: str, new: str) -> RenameResult:
        with operation_context("category.rename", old=old, new=new):
            if old == new:
                raise _invalid(f'New name is the same as the current name "{old}".', "new_name", new, "different")

            current = self.taxonomy.get(old)
            if current is None:
                if not self.taxonomy.exists(new):
                    self._require(old)
                # Completed earlier; only the record rewrite may still have work to do
                result = RenameResult(old_name=old, new_name=new, taxonomy_changed=False)
            else:
                self.validate_name(new, field="new_name")
                children: list[str] = []
                categories: list[Category] = []
                for category in self.taxonomy.categories:
                    if category.name == old:
                        categories.append(category.model_copy(update={"name": new}))
                    elif category.parent == old:
                        categories.append(category.model_copy(update={"parent": new}))
                        children.append(category.name)
                    else:
                        categories.append(category)
                await self.taxonomy.commit(categories)
                result = RenameResult(old_name=old, new_name=new, children_updated=children)
                logger.info("Category renamed", children=children)

            try:
                result.records_updated = await self.store.reassign_field("category", old, new, self.page_size)
            except ApplicationError as e:
                result.warning = (
                    f'Renamed "{old}" to "{new}" but updating stored memories failed: {e.message}. '
                    f"Run the same rename again to finish."
                )
                logger.warning("Record rewrite after rename failed", error=e.message)

            if result.taxonomy_changed:
                await self._publish()
            return result

    @with_error_handling(reraise=True)
    async def reparent(self, name: str, new_parent: str | None) -> Category:
        """Move ``name`` under ``new_parent``; ``None`` or ``""`` detaches it."""
        current = self._require(name)
        if new_parent:
            self.check_parent(name, new_parent)
        updated = current.model_copy(update={"parent": new_parent or None})
        await self.taxonomy.commit([updated if c.name == name else c for c in self.taxonomy.categories])
        logger.info("Category reparented", category=name, parent=new_parent or None)
        await self._publish()
        return updated

    @with_error_handling(reraise=True)
    async def update(
        self,
        name: str,
        new_name: str | None = None,
        description: str | None = None,
        parent: str | None = None,
        color: str | None = None,
        is_parent: bool | None = None,
    ) -> UpdateResult:
        """Combined edit. ``None`` leaves a field alone; ``""`` clears parent or color."""
        current = self._require(name)

        # Validate everything before the first write
        if new_name is not None and new_name != name:
            self.validate_name(new_name, field="new_name")
        target = new_name if new_name and new_name != name else name
        if parent:
            self.check_parent(name, parent)
        if color:
            self._validate_color(color)
        if description is not None and not description.strip():
            raise _invalid("Category description must not be empty.", "description", description, "non-empty")

        changes: list[str] = []
        fields: dict[str, Any] = {}
        if description is not None and description.strip() != current.description:
            fields["description"] = description.strip()
        if parent is not None and (parent or None) != current.parent:
            fields["parent"] = parent or None
        if color is not None and (color or None) != current.color:
            fields["color"] = color or None
        if is_parent is not None and is_parent != current.is_parent:
            fields["is_parent"] = is_parent
        if target == name and not fields:
            raise _invalid(f'No changes given for category "{name}".', "name", name, "at least one change")

        rename_result: RenameResult | None = None
        if target != name:
            rename_result = await self.rename(name, target)
            changes.append(f"renamed to {target}")

        if fields:
            renamed = self._require(target)
            updated = renamed.model_copy(update=fields)
            await self.taxonomy.commit([updated if c.name == target else c for c in self.taxonomy.categories])
            changes.extend(f"{key} updated" for key in fields)
            await self._publish()

        category = self._require(target)
        logger.info("Category updated", category=target, changes=changes)
        return UpdateResult(category=category, rename=rename_result, changes=changes)

    @with_error_handling(reraise=True)
    async def delete(
        self,
        name: str,
        reassign_records_to: str | None = None,
        reassign_children_to: str | None = None,
    ) -> DeleteResult:
        """Remove ``name``.

        Children need ``reassign_children_to`` (``""`` moves them to top level)
        and records need ``reassign_records_to``; otherwise the delete is
        rejected without touching anything.
        """
        with operation_context("category.delete", category=name):
            self._require(name)
            children = [c.name for c in self.taxonomy.children(name)]
            record_count = await self.store.count(_category_filter(name), scope=TrashScope.ALL)

            def _blocked(message: str) -> CategoryInUseError:
                return CategoryInUseError(
                    message,
                    details=DependentsErrorDetails(
                        source="categories",
                        operation="delete",
                        resource_id=name,
                        resource_type="category",
                        action="delete",
                        children=children,
                        record_count=record_count,
                    ),
                )

            if children and reassign_children_to is None:
                raise _blocked(
                    f'Category "{name}" has {len(children)} child categories: {", ".join(children)}. '
                    f'Provide reassign_children_to (another category, or "" for top level).'
                )
            if record_count and reassign_records_to is None:
                raise _blocked(
                    f'Category "{name}" is used by {record_count} memories. '
                    f"Provide reassign_records_to to move them first."
                )

            if reassign_records_to is not None:
                if reassign_records_to == name:
                    raise _invalid("Cannot reassign memories to the category being deleted.",
                                   "reassign_records_to", reassign_records_to, "different category")
                self._require_target(reassign_records_to, "reassign_records_to")
            if reassign_children_to:
                if reassign_children_to == name:
                    raise _invalid("Cannot reassign children to the category being deleted.",
                                   "reassign_children_to", reassign_children_to, "different category")
                for child in children:
                    self.check_parent(child, reassign_children_to)

            reassigned = 0
            if record_count and reassign_records_to:
                reassigned = await self.store.reassign_field("category", name, reassign_records_to, self.page_size)

            new_parent = reassign_children_to or None
            categories = [
                c.model_copy(update={"parent": new_parent}) if c.parent == name else c
                for c in self.taxonomy.categories
                if c.name != name
            ]
            await self.taxonomy.commit(categories)
            logger.info("Category deleted", records=reassigned, children=children)
            await self._publish()
            return DeleteResult(
                name=name,
                records_reassigned=reassigned,
                records_target=reassign_records_to if record_count else None,
                children_moved=children,
                children_target=new_parent if children else None,
            )

    # Projections

    def _entry(self, category: Category) -> dict[str, Any]:
        return {
            "name": category.name,
            "description": category.description,
            "parent": category.parent,
            "color": self.taxonomy.color_for(category.name),
            "is_parent": category.is_parent,
        }

    def _subtree(self, category: Category, seen: frozenset[str]) -> dict[str, Any]:
        seen = seen | {category.name}
        return {
            **self._entry(category),
            "children": [
                self._subtree(child, seen)
                for child in self.taxonomy.children(category.name)
                if child.name not in seen
            ],
        }

    def list_categories(self, format: ListFormat = "tree") -> list[dict[str, Any]]:
        """Pure projection over the cached taxonomy; no store access."""
        if format == "flat":
            return [self._entry(c) for c in self.taxonomy.categories]
        if format == "parents-only":
            return [
                {**self._entry(c), "child_count": len(self.taxonomy.children(c.name))}
                for c in self.taxonomy.top_level()
            ]
        if format == "tree":
            return [self._subtree(c, frozenset()) for c in self.taxonomy.top_level()]
        raise _invalid(f'Unknown list format "{format}". Use flat, tree or parents-only.', "format", format,
                       "flat | tree | parents-only")
