"""Category lifecycle: validation, cycle safety, rename cascade, delete guard."""

import pytest

from synabun.core.errors import CategoryCycleError, CategoryInUseError, NotFoundError, StoreError, ValidationError
from synabun.domain.models import MemoryRecord
from synabun.infrastructure.qdrant import StoreClient, TrashScope, build_filter
from synabun.services.categories import CategoryLifecycleManager
from synabun.services.hot_reload import ChangeNotifier

from .conftest import FakeEmbeddings

fake = FakeEmbeddings()


async def add_records(store: StoreClient, category: str, count: int) -> list[str]:
    ids = []
    for i in range(count):
        record = MemoryRecord(content=f"{category} record {i}", category=category)
        await store.upsert(record.id, fake.vector(record.content), record.to_payload())
        ids.append(record.id)
    return ids


async def test_create_validates_names(manager: CategoryLifecycleManager):
    await manager.create("general", "Anything else")

    with pytest.raises(ValidationError, match="2-30 characters"):
        await manager.create("g", "too short")
    with pytest.raises(ValidationError, match="lowercase"):
        await manager.create("Bad_Name", "bad shape")
    with pytest.raises(ValidationError, match="already exists"):
        await manager.create("general", "duplicate")
    with pytest.raises(ValidationError, match="Unknown category"):
        await manager.create("child", "orphan", parent="missing")
    with pytest.raises(ValidationError, match="hex value"):
        await manager.create("colored", "bad color", color="blue")
    with pytest.raises(ValidationError, match="description"):
        await manager.create("blank", "   ")
    assert manager.taxonomy.names == ["general"]


async def test_create_publishes_change(manager: CategoryLifecycleManager, notifier: ChangeNotifier):
    events = []
    notifier.subscribe(lambda: events.append(1))
    await manager.create("general", "Anything else")
    assert events == [1]


async def test_reparent_rejects_cycles(manager: CategoryLifecycleManager):
    await manager.create("root", "top")
    await manager.create("middle", "middle", parent="root")
    await manager.create("leaf", "bottom", parent="middle")

    with pytest.raises(CategoryCycleError) as exc_info:
        await manager.reparent("root", "leaf")
    assert exc_info.value.details.ancestors == ["leaf", "middle", "root"]
    with pytest.raises(CategoryCycleError):
        await manager.reparent("root", "root")
    assert manager.taxonomy.get("root").parent is None

    moved = await manager.reparent("leaf", "root")
    assert moved.parent == "root"
    detached = await manager.reparent("leaf", "")
    assert detached.parent is None


async def test_rename_cascades_to_children_and_records(manager: CategoryLifecycleManager, store: StoreClient):
    await manager.create("drafts", "parent node", is_parent=True)
    await manager.create("bugs", "first child", parent="drafts")
    await manager.create("ideas", "second child", parent="drafts")
    ids = await add_records(store, "drafts", 5)

    result = await manager.rename("drafts", "notes")

    assert result.children_updated == ["bugs", "ideas"]
    assert result.records_updated == 5
    assert result.warning is None
    assert manager.taxonomy.get("bugs").parent == "notes"
    assert manager.taxonomy.get("ideas").parent == "notes"
    assert not manager.taxonomy.exists("drafts")
    records = await store.retrieve(ids)
    assert {r.category for r in records} == {"notes"}

    again = await manager.rename("drafts", "notes")
    assert again.taxonomy_changed is False
    assert again.records_updated == 0


async def test_rename_rewrite_failure_is_a_warning(
    manager: CategoryLifecycleManager, store: StoreClient, monkeypatch: pytest.MonkeyPatch
):
    await manager.create("drafts", "old")
    await add_records(store, "drafts", 3)

    async def fail(*_args, **_kwargs):
        raise StoreError("Store set_payload failed: timed out")

    monkeypatch.setattr(store, "reassign_field", fail)
    result = await manager.rename("drafts", "notes")
    assert manager.taxonomy.exists("notes")
    assert "Run the same rename again" in result.warning

    monkeypatch.undo()
    repaired = await manager.rename("drafts", "notes")
    assert repaired.records_updated == 3
    assert repaired.warning is None


async def test_rename_rejects_bad_targets(manager: CategoryLifecycleManager):
    await manager.create("drafts", "one")
    await manager.create("archive", "two")
    with pytest.raises(ValidationError, match="already exists"):
        await manager.rename("drafts", "archive")
    with pytest.raises(ValidationError, match="same"):
        await manager.rename("drafts", "drafts")
    with pytest.raises(NotFoundError):
        await manager.rename("missing", "other")


async def test_delete_guard_leaves_taxonomy_untouched(manager: CategoryLifecycleManager, store: StoreClient):
    await manager.create("drafts", "in use")
    await manager.create("general", "fallback")
    await add_records(store, "drafts", 5)
    before = manager.taxonomy.path.read_bytes()

    with pytest.raises(CategoryInUseError) as exc_info:
        await manager.delete("drafts")

    assert exc_info.value.details.record_count == 5
    assert "5 memories" in exc_info.value.message
    assert manager.taxonomy.path.read_bytes() == before
    assert manager.taxonomy.exists("drafts")


async def test_delete_guard_names_children(manager: CategoryLifecycleManager):
    await manager.create("drafts", "parent", is_parent=True)
    await manager.create("bugs", "child", parent="drafts")
    with pytest.raises(CategoryInUseError, match="bugs") as exc_info:
        await manager.delete("drafts")
    assert exc_info.value.details.children == ["bugs"]


async def test_delete_reassigns_records_and_children(manager: CategoryLifecycleManager, store: StoreClient):
    await manager.create("drafts", "going away", is_parent=True)
    await manager.create("bugs", "child", parent="drafts")
    await manager.create("general", "fallback")
    ids = await add_records(store, "drafts", 3)
    await store.set_payload(ids[0], {"trashed_at": "2026-01-01T00:00:00+00:00"})

    result = await manager.delete("drafts", reassign_records_to="general", reassign_children_to="")

    assert result.records_reassigned == 3
    assert result.children_moved == ["bugs"]
    assert result.children_target is None
    assert manager.taxonomy.get("bugs").parent is None
    assert not manager.taxonomy.exists("drafts")
    assert await store.count(build_filter(category="general"), scope=TrashScope.ALL) == 3


async def test_delete_rejects_invalid_targets(manager: CategoryLifecycleManager, store: StoreClient):
    await manager.create("drafts", "going away")
    await add_records(store, "drafts", 1)
    with pytest.raises(ValidationError, match="Unknown category"):
        await manager.delete("drafts", reassign_records_to="nowhere")
    with pytest.raises(ValidationError, match="being deleted"):
        await manager.delete("drafts", reassign_records_to="drafts")
    assert await store.count(build_filter(category="drafts")) == 1


async def test_update_combines_rename_and_field_edits(manager: CategoryLifecycleManager):
    await manager.create("drafts", "old description")
    await manager.create("home", "a parent", is_parent=True)

    result = await manager.update("drafts", new_name="notes", description="new description", parent="home", color="#123456")

    assert result.category.name == "notes"
    assert result.category.description == "new description"
    assert result.category.parent == "home"
    assert result.category.color == "#123456"
    assert result.rename is not None
    assert result.changes[0] == "renamed to notes"

    cleared = await manager.update("notes", color="", parent="")
    assert cleared.category.color is None
    assert cleared.category.parent is None

    with pytest.raises(ValidationError, match="No changes"):
        await manager.update("notes", description="new description")


async def test_update_validates_before_writing(manager: CategoryLifecycleManager):
    await manager.create("drafts", "old")
    with pytest.raises(ValidationError):
        await manager.update("drafts", new_name="notes", color="nope")
    assert manager.taxonomy.exists("drafts")
    assert not manager.taxonomy.exists("notes")


async def test_list_formats(manager: CategoryLifecycleManager):
    await manager.create("project", "work", is_parent=True)
    await manager.create("bugs", "fixes", parent="project")
    await manager.create("ideas", "loose", color="#abcdef")

    flat = manager.list_categories("flat")
    assert [c["name"] for c in flat] == ["project", "bugs", "ideas"]
    assert flat[2]["color"] == "#abcdef"

    parents = manager.list_categories("parents-only")
    assert {c["name"]: c["child_count"] for c in parents} == {"project": 1, "ideas": 0}

    tree = manager.list_categories("tree")
    assert tree[0]["children"][0]["name"] == "bugs"
    assert tree[0]["children"][0]["children"] == []

    with pytest.raises(ValidationError):
        manager.list_categories("nested")  # type: ignore[arg-type]
