"""Tool dispatch and tool-list change notifications."""

from pathlib import Path

import pytest

from synabun.core.config import Settings
from synabun.mcp.server import MemoryToolServer, format_age
from synabun.runtime import Runtime

from .conftest import FakeEmbeddings, StaticProfileSource


@pytest.fixture
async def runtime(profiles: StaticProfileSource, data_dir: Path, project_root: Path):
    settings = Settings(data_dir=data_dir, project_root=project_root, current_project="alpha")
    runtime = Runtime(settings, profiles=profiles, embeddings=FakeEmbeddings())
    await runtime.start(watch=False)
    yield runtime
    await runtime.stop()


@pytest.fixture
def server(runtime: Runtime) -> MemoryToolServer:
    return MemoryToolServer(runtime)


class RecordingSession:
    def __init__(self) -> None:
        self.sent = 0

    async def send_tool_list_changed(self) -> None:
        self.sent += 1


async def test_tool_catalogue_embeds_routing_guide(server: MemoryToolServer):
    await server.dispatch("category_create", {"name": "bugs", "description": "Bugs and their fixes"})
    tools = {t.name: t for t in server.tools()}

    assert set(tools) == {
        "remember", "recall", "forget", "restore", "reflect", "memories",
        "category_create", "category_update", "category_delete", "category_list", "sync",
    }
    category = tools["remember"].inputSchema["properties"]["category"]
    assert "bugs=Bugs and their fixes" in category["description"]
    assert category["enum"] == ["bugs"]


async def test_change_event_notifies_sessions(server: MemoryToolServer, runtime: Runtime):
    session = RecordingSession()
    server._sessions.append(session)  # type: ignore[arg-type]

    await server.dispatch("category_create", {"name": "ideas", "description": "Loose ideas"})
    assert session.sent == 1
    assert "ideas=Loose ideas" in runtime.routing_guide.value


async def test_memory_round_trip_through_tools(server: MemoryToolServer):
    await server.dispatch("category_create", {"name": "notes", "description": "General notes"})

    text = await server.dispatch("remember", {"content": "Deploys run on Fridays", "category": "notes"})
    assert text.startswith("Remembered [")

    recalled = await server.dispatch("recall", {"query": "Deploys run on Fridays"})
    assert "Deploys run on Fridays" in recalled
    memory_id = recalled.split("[", 1)[1].split("]", 1)[0]

    assert "importance -> 9" in await server.dispatch("reflect", {"memory_id": memory_id, "importance": 9})
    assert "Moved to trash" in await server.dispatch("forget", {"memory_id": memory_id})
    assert await server.dispatch("recall", {"query": "Deploys run on Fridays"}) == (
        "No memories found matching your query."
    )
    assert "Restored" in await server.dispatch("restore", {"memory_id": memory_id})

    stats = await server.dispatch("memories", {"action": "stats"})
    assert "Total memories: 1" in stats
    assert "notes: 1" in stats


async def test_rejections_come_back_as_text(server: MemoryToolServer):
    text = await server.dispatch("remember", {"content": "x", "category": "missing"})
    assert text.startswith('Unknown category "missing"')
    assert await server.dispatch("nope", {}) == "Unknown tool: nope"
    assert "Invalid arguments" in await server.dispatch("forget", {"id": "x"})
    assert "Invalid arguments" in await server.dispatch("restore", {})


async def test_service_bugs_are_not_reported_as_bad_arguments(
    server: MemoryToolServer, runtime: Runtime, monkeypatch: pytest.MonkeyPatch
):
    async def broken(memory_id: str):
        raise TypeError("unsupported operand")

    monkeypatch.setattr(runtime.memories, "forget", broken)
    with pytest.raises(TypeError, match="unsupported operand"):
        await server.dispatch("forget", {"memory_id": "8f7cab3b-644e-4cea-8662-de0ca695bdf2"})


async def test_category_tools(server: MemoryToolServer):
    await server.dispatch("category_create", {"name": "project", "description": "Work", "is_parent": True})
    await server.dispatch("category_create", {"name": "bugs", "description": "Fixes", "parent": "project"})
    await server.dispatch("remember", {"content": "Null check missing", "category": "bugs"})

    blocked = await server.dispatch("category_delete", {"name": "bugs"})
    assert "1 memories" in blocked

    renamed = await server.dispatch("category_update", {"name": "bugs", "new_name": "defects"})
    assert "1 memories relabelled" in renamed

    listing = await server.dispatch("category_list", {"format": "tree"})
    assert "  - defects: Fixes" in listing

    deleted = await server.dispatch("category_delete", {"name": "project", "reassign_children_to": ""})
    assert "Children moved to top level: defects" in deleted


async def test_sync_reports_clean(server: MemoryToolServer):
    assert (await server.dispatch("sync", {})).startswith("All clear")


def test_format_age():
    assert format_age(None) == "n/a"
    assert format_age("not a date") == "n/a"
