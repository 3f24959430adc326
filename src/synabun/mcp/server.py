#!/usr/bin/env python3
"""
SynaBun MCP server over stdio.

Exposes the memory core as assistant tools. Tool descriptions embed the live
category routing guide; whenever the taxonomy or active connection changes,
connected clients are told to re-fetch the tool list.
"""

import inspect
from datetime import datetime
from typing import Any

import anyio
import mcp.types as types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.session import ServerSession
from mcp.server.stdio import stdio_server

from synabun.core.errors import ApplicationError
from synabun.core.logging import get_logger, setup_logging
from synabun.domain.models import MemoryRecord, ScoredMemory, utc_now
from synabun.domain.models.utils import parse_timestamp
from synabun.runtime import Runtime
from synabun.services.staleness import StalenessReport

logger = get_logger(__name__)

SOURCES = ["user-told", "self-discovered", "auto-saved"]


def format_age(timestamp: str | None, now: datetime | None = None) -> str:
    created = parse_timestamp(timestamp)
    if created is None:
        return "n/a"
    days = int(((now or utc_now()) - created).total_seconds() // 86400)
    if days <= 0:
        return "today"
    if days == 1:
        return "1 day ago"
    if days < 30:
        return f"{days} days ago"
    months = days // 30
    return "1 month ago" if months == 1 else f"{months} months ago"


def _clip(text: str, length: int) -> str:
    return text if len(text) <= length else text[:length] + "..."


def format_recall(results: list[ScoredMemory]) -> str:
    if not results:
        return "No memories found matching your query."
    lines = [f"Found {len(results)} relevant memories:\n"]
    for i, hit in enumerate(results, 1):
        r = hit.record
        sub = f"/{r.subcategory}" if r.subcategory else ""
        tags = f" [{', '.join(r.tags)}]" if r.tags else ""
        lines.append(
            f"{i}. [{r.id}] {r.category}{sub} | {r.project} | imp:{r.importance} | "
            f"score:{hit.score:.3f} | {format_age(r.created_at)}{tags}\n   {r.content}"
        )
    return "\n".join(lines)


def format_listing(title: str, records: list[MemoryRecord]) -> str:
    if not records:
        return f"{title}: none."
    lines = []
    for i, r in enumerate(records, 1):
        sub = f"/{r.subcategory}" if r.subcategory else ""
        tags = f" [{', '.join(r.tags)}]" if r.tags else ""
        lines.append(
            f"{i}. [{r.id}] {r.category}{sub} | {r.project} | imp:{r.importance} | "
            f"{format_age(r.created_at)}{tags}\n   {_clip(r.content, 150)}"
        )
    return f"{title} ({len(records)}):\n\n" + "\n\n".join(lines)


def format_staleness(report: StalenessReport) -> str:
    if report.is_clean:
        return f"All clear: checked {report.checked} memories with related files, none are stale."
    text = f"Found {len(report.stale)} stale memories (out of {report.checked} with related files):\n\n"
    for mem in report.stale:
        text += f"--- Memory {mem.id} ---\n"
        text += f"Category: {mem.category} | Importance: {mem.importance}\n"
        text += f"Changed files: {', '.join(mem.changed_files)}\n"
        text += f"Content:\n{mem.content}\n\n"
    text += (
        "To update these memories: read the changed file(s), compare with the memory content above, "
        "and use the reflect tool to update the memory content to match the current code."
    )
    return text


def format_categories(entries: list[dict[str, Any]], fmt: str) -> str:
    if fmt == "flat":
        lines = []
        for c in entries:
            line = f"- {c['name']}: {c['description']}"
            if c["parent"]:
                line += f" (parent: {c['parent']})"
            lines.append(line + f" [{c['color']}]")
        return f"All categories ({len(entries)}):\n\n" + "\n".join(lines)
    if fmt == "parents-only":
        lines = []
        for c in entries:
            line = f"- {c['name']}: {c['description']} [{c['color']}]"
            if c["child_count"]:
                line += f" ({c['child_count']} children)"
            lines.append(line)
        return f"Parent categories ({len(entries)}):\n\n" + "\n".join(lines)

    lines = []

    def walk(node: dict[str, Any], depth: int) -> None:
        lines.append(f"{'  ' * depth}- {node['name']}: {node['description']} [{node['color']}]")
        for child in node["children"]:
            walk(child, depth + 1)

    for root in entries:
        walk(root, 0)
    return f"Category tree ({len(entries)} top-level):\n\n" + "\n".join(lines)


class MemoryToolServer:
    """Maps MCP tool calls onto the memory core."""

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self.app: Server = Server("synabun")
        self._sessions: list[ServerSession] = []
        self._unsubscribe = runtime.notifier.subscribe(self.notify_tools_changed)
        self._register()

    def _register(self) -> None:
        @self.app.list_tools()
        async def list_tools() -> list[types.Tool]:
            self._remember_session()
            return self.tools()

        @self.app.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.ContentBlock]:
            self._remember_session()
            text = await self.dispatch(name, arguments or {})
            return [types.TextContent(type="text", text=text)]

    def _remember_session(self) -> None:
        try:
            session = self.app.request_context.session
        except LookupError:
            return
        if session not in self._sessions:
            self._sessions.append(session)

    async def notify_tools_changed(self) -> None:
        """Tell every connected client the tool descriptions changed."""
        for session in list(self._sessions):
            try:
                await session.send_tool_list_changed()
            except Exception as e:
                logger.warning(f"Failed to send tools/list_changed: {e}")
                self._sessions.remove(session)

    # Tool catalogue

    def tools(self) -> list[types.Tool]:
        guide = self.runtime.routing_guide.value
        categories = self.runtime.taxonomy.names
        category_prop: dict[str, Any] = {"type": "string", "description": guide}
        if categories:
            category_prop["enum"] = categories
        optional_category = {"type": "string", "description": "Filter by category. " + guide}
        string_list = {"type": "array", "items": {"type": "string"}}
        uuid_prop = {"type": "string", "description": "Full memory UUID from recall results."}

        return [
            types.Tool(
                name="remember",
                description=(
                    "Store a piece of information in persistent memory. Use this when you learn something "
                    "important, make a decision, discover a pattern, fix a hard bug, or want to preserve "
                    "context for future sessions."
                ),
                inputSchema={
                    "type": "object",
                    "required": ["content", "category"],
                    "properties": {
                        "content": {"type": "string", "description": "The information to remember."},
                        "category": category_prop,
                        "project": {"type": "string", "description": "Defaults to the detected project."},
                        "tags": {**string_list, "description": "Tags for categorization."},
                        "importance": {
                            "type": "integer", "minimum": 1, "maximum": 10,
                            "description": "1=trivial, 5=normal, 7=significant, 8+=critical (never decays).",
                        },
                        "subcategory": {"type": "string"},
                        "source": {"type": "string", "enum": SOURCES},
                        "related_files": {**string_list, "description": "File paths this memory relates to."},
                    },
                },
            ),
            types.Tool(
                name="recall",
                description="Search memories by meaning, ranked by relevance, recency, importance and project.",
                inputSchema={
                    "type": "object",
                    "required": ["query"],
                    "properties": {
                        "query": {"type": "string"},
                        "limit": {"type": "integer", "minimum": 1, "maximum": 20, "default": 5},
                        "category": optional_category,
                        "project": {"type": "string"},
                        "tags": string_list,
                        "min_importance": {"type": "integer", "minimum": 1, "maximum": 10},
                        "min_score": {"type": "number", "default": 0.3},
                    },
                },
            ),
            types.Tool(
                name="forget",
                description="Move a memory to the trash. It can be restored later.",
                inputSchema={"type": "object", "required": ["memory_id"], "properties": {"memory_id": uuid_prop}},
            ),
            types.Tool(
                name="restore",
                description="Restore a memory from the trash.",
                inputSchema={"type": "object", "required": ["memory_id"], "properties": {"memory_id": uuid_prop}},
            ),
            types.Tool(
                name="reflect",
                description="Update an existing memory. New content regenerates its embedding.",
                inputSchema={
                    "type": "object",
                    "required": ["memory_id"],
                    "properties": {
                        "memory_id": uuid_prop,
                        "content": {"type": "string"},
                        "importance": {"type": "integer", "minimum": 1, "maximum": 10},
                        "tags": {**string_list, "description": "Replace all tags."},
                        "add_tags": {**string_list, "description": "Add tags, keeping existing ones."},
                        "subcategory": {"type": "string"},
                        "category": {"type": "string", "description": "Change the category. " + guide},
                        "related_files": string_list,
                        "related_memory_ids": string_list,
                    },
                },
            ),
            types.Tool(
                name="memories",
                description="Browse recent memories or get statistics.",
                inputSchema={
                    "type": "object",
                    "required": ["action"],
                    "properties": {
                        "action": {"type": "string", "enum": ["recent", "stats", "by-category", "by-project"]},
                        "category": optional_category,
                        "project": {"type": "string"},
                        "limit": {"type": "integer", "minimum": 1, "maximum": 50, "default": 10},
                    },
                },
            ),
            types.Tool(
                name="category_create",
                description="Create a memory category.",
                inputSchema={
                    "type": "object",
                    "required": ["name", "description"],
                    "properties": {
                        "name": {"type": "string", "description": "Lowercase, 2-30 chars, letters/digits/hyphens."},
                        "description": {"type": "string", "description": "What belongs in this category."},
                        "parent": {"type": "string"},
                        "color": {"type": "string", "description": "Hex color like #3b82f6."},
                        "is_parent": {"type": "boolean"},
                    },
                },
            ),
            types.Tool(
                name="category_update",
                description="Rename, reparent, or edit a category. Renames update every stored memory.",
                inputSchema={
                    "type": "object",
                    "required": ["name"],
                    "properties": {
                        "name": {"type": "string"},
                        "new_name": {"type": "string"},
                        "description": {"type": "string"},
                        "parent": {"type": "string", "description": 'Empty string "" makes it top-level.'},
                        "color": {"type": "string", "description": 'Empty string "" clears it.'},
                        "is_parent": {"type": "boolean"},
                    },
                },
            ),
            types.Tool(
                name="category_delete",
                description="Delete a category. Memories and children must be reassigned first.",
                inputSchema={
                    "type": "object",
                    "required": ["name"],
                    "properties": {
                        "name": {"type": "string"},
                        "reassign_to": {"type": "string", "description": "Category that receives its memories."},
                        "reassign_children_to": {
                            "type": "string",
                            "description": 'New parent for its children, or "" for top level.',
                        },
                    },
                },
            ),
            types.Tool(
                name="category_list",
                description="List memory categories.",
                inputSchema={
                    "type": "object",
                    "properties": {"format": {"type": "string", "enum": ["flat", "tree", "parents-only"]}},
                },
            ),
            types.Tool(
                name="sync",
                description="Find memories whose related files changed since they were stored.",
                inputSchema={"type": "object", "properties": {"project": {"type": "string"}}},
            ),
        ]

    # Dispatch

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> str:
        """Run tool ``name``; rejections come back as readable text."""
        handler = getattr(self, f"_tool_{name}", None)
        if handler is None:
            return f"Unknown tool: {name}"
        try:
            inspect.signature(handler).bind(**arguments)
        except TypeError as e:
            logger.warning(f"Bad arguments for {name}: {e}")
            return f"Invalid arguments for {name}: {e}"
        try:
            return await handler(**arguments)
        except ApplicationError as e:
            return e.message

    async def _tool_remember(self, content: str, category: str, **kwargs: Any) -> str:
        record = await self.runtime.memories.remember(content, category, **kwargs)
        return (
            f"Remembered [{record.id[:8]}] ({record.category}/{record.project}, "
            f'importance: {record.importance}): "{_clip(record.content, 100)}"'
        )

    async def _tool_recall(self, query: str, **kwargs: Any) -> str:
        return format_recall(await self.runtime.memories.recall(query, **kwargs))

    async def _tool_forget(self, memory_id: str) -> str:
        record = await self.runtime.memories.forget(memory_id)
        return f'Moved to trash [{memory_id[:8]}]: "{_clip(record.content, 80)}". Use restore to undo.'

    async def _tool_restore(self, memory_id: str) -> str:
        record = await self.runtime.memories.restore(memory_id)
        return f'Restored [{memory_id[:8]}]: "{_clip(record.content, 80)}"'

    async def _tool_reflect(self, memory_id: str, **kwargs: Any) -> str:
        result = await self.runtime.memories.reflect(memory_id, **kwargs)
        return f"Updated [{memory_id[:8]}]: {', '.join(result.changes)}"

    async def _tool_memories(
        self, action: str, category: str | None = None, project: str | None = None, limit: int = 10
    ) -> str:
        memories = self.runtime.memories
        if action == "stats":
            stats = await memories.stats()
            by_category = "\n".join(f"  {k}: {v}" for k, v in stats.by_category.items() if v) or "  (none)"
            by_project = "\n".join(f"  {k}: {v}" for k, v in stats.by_project.items()) or "  (none)"
            return (
                f"Memory Statistics:\n\nTotal memories: {stats.total}\n\nBy category:\n{by_category}\n\n"
                f"By project:\n{by_project}\n\nOldest: {format_age(stats.oldest)}\nNewest: {format_age(stats.newest)}"
            )
        records = await memories.browse(action, category=category, project=project, limit=limit)  # type: ignore[arg-type]
        title = {
            "recent": "Recent memories",
            "by-category": f'Memories in "{category}"',
            "by-project": f'Memories for "{project}"',
        }.get(action, "Memories")
        return format_listing(title, records)

    async def _tool_category_create(
        self,
        name: str,
        description: str,
        parent: str | None = None,
        color: str | None = None,
        is_parent: bool = False,
    ) -> str:
        category = await self.runtime.categories.create(name, description, parent, color, is_parent)
        where = f" under {category.parent}" if category.parent else ""
        return f'Created category "{category.name}"{where}.'

    async def _tool_category_update(self, name: str, **kwargs: Any) -> str:
        result = await self.runtime.categories.update(name, **kwargs)
        text = f'Updated category "{result.category.name}": {", ".join(result.changes)}.'
        if result.rename is not None:
            text += f" {result.rename.records_updated} memories relabelled."
            if result.rename.warning:
                text += f"\nWarning: {result.rename.warning}"
        return text

    async def _tool_category_delete(
        self, name: str, reassign_to: str | None = None, reassign_children_to: str | None = None
    ) -> str:
        result = await self.runtime.categories.delete(
            name, reassign_records_to=reassign_to, reassign_children_to=reassign_children_to
        )
        text = f'Deleted category "{name}".'
        if result.records_reassigned:
            text += f" {result.records_reassigned} memories moved to {result.records_target}."
        if result.children_moved:
            target = result.children_target or "top level"
            text += f" Children moved to {target}: {', '.join(result.children_moved)}."
        return text

    async def _tool_category_list(self, format: str = "tree") -> str:
        entries = self.runtime.categories.list_categories(format)  # type: ignore[arg-type]
        return format_categories(entries, format)

    async def _tool_sync(self, project: str | None = None) -> str:
        return format_staleness(await self.runtime.memories.check_staleness(project))

    async def run_stdio(self) -> None:
        options = self.app.create_initialization_options(
            notification_options=NotificationOptions(tools_changed=True)
        )
        async with stdio_server() as (read_stream, write_stream):
            await self.app.run(read_stream, write_stream, options)


async def main() -> None:
    """Main entry point for stdio MCP server."""
    setup_logging()
    runtime = Runtime()
    await runtime.start()
    server = MemoryToolServer(runtime)
    logger.info("Starting SynaBun MCP server with stdio transport")
    try:
        await server.run_stdio()
    finally:
        await runtime.stop()


def run() -> None:
    """Console script entry point."""
    anyio.run(main)


if __name__ == "__main__":
    run()
