"""Category taxonomy domain models."""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from synabun.domain.models.utils import iso_now

TAXONOMY_FILE_VERSION = 1

NAME_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 30
COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


class Category(BaseModel):
    """A node in the category hierarchy."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    description: str = ""
    parent: str | None = None
    color: str | None = None
    is_parent: bool = False
    created_at: str = Field(default_factory=iso_now)

    def to_file_dict(self) -> dict[str, Any]:
        """Shape written to the taxonomy file; unset optionals are omitted."""
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at,
        }
        if self.parent:
            data["parent"] = self.parent
        if self.color:
            data["color"] = self.color
        if self.is_parent:
            data["is_parent"] = True
        return data


class TaxonomyFile(BaseModel):
    """On-disk taxonomy document."""

    version: int
    categories: list[Category] = Field(default_factory=list)


class TaxonomySnapshot(BaseModel):
    """Immutable view of the whole taxonomy at one point in time.

    Every hierarchy query is answered from a snapshot, so a reader holding one
    never observes a half-applied edit.
    """

    model_config = ConfigDict(frozen=True)

    categories: tuple[Category, ...] = ()

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.categories]

    def get(self, name: str) -> Category | None:
        for category in self.categories:
            if category.name == name:
                return category
        return None

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def children(self, name: str) -> list[Category]:
        return [c for c in self.categories if c.parent == name]

    def top_level(self) -> list[Category]:
        return [c for c in self.categories if not c.parent]

    def ancestors(self, name: str) -> list[str]:
        """Names on the parent chain above ``name``, nearest first.

        Stops at a repeated name so a corrupt file with a cycle cannot loop.
        """
        chain: list[str] = []
        seen = {name}
        current = self.get(name)
        while current is not None and current.parent:
            if current.parent in seen:
                break
            chain.append(current.parent)
            seen.add(current.parent)
            current = self.get(current.parent)
        return chain

    def tree(self) -> dict[str, list[Category]]:
        """Top-level categories mapped to their direct children.

        Standalone categories (no parent, no children, not a parent node)
        are grouped under ``_uncategorized``.
        """
        tree: dict[str, list[Category]] = {}
        standalone: list[Category] = []
        for category in self.top_level():
            children = self.children(category.name)
            if children or category.is_parent:
                tree[category.name] = children
            else:
                standalone.append(category)
        if standalone:
            tree["_uncategorized"] = standalone
        return tree

    def to_file(self) -> dict[str, Any]:
        return {
            "version": TAXONOMY_FILE_VERSION,
            "categories": [c.to_file_dict() for c in self.categories],
        }
