"""File checksum staleness detection."""

import hashlib
from pathlib import Path

from synabun.domain.models import MemoryRecord
from synabun.services.categories import CategoryLifecycleManager
from synabun.services.memory_service import MemoryService
from synabun.services.staleness import changed_files, compute_checksums, hash_file


def test_hash_file_matches_sha256(tmp_path: Path):
    path = tmp_path / "f.txt"
    path.write_bytes(b"hello")
    assert hash_file(path) == hashlib.sha256(b"hello").hexdigest()
    assert hash_file(tmp_path / "missing.txt") is None


def test_compute_checksums_skips_missing_files(tmp_path: Path):
    (tmp_path / "a.py").write_text("a = 1\n")
    checksums = compute_checksums(["a.py", "gone.py"], tmp_path)
    assert list(checksums) == ["a.py"]


def test_changed_files_flags_new_and_modified_paths(tmp_path: Path):
    (tmp_path / "a.py").write_text("a = 1\n")
    (tmp_path / "b.py").write_text("b = 1\n")
    record = MemoryRecord(
        content="c",
        category="c",
        related_files=["a.py", "b.py", "deleted.py"],
        file_checksums={"a.py": hash_file(tmp_path / "a.py")},
    )
    assert changed_files(record, tmp_path) == ["b.py"]

    (tmp_path / "a.py").write_text("a = 2\n")
    assert changed_files(record, tmp_path) == ["a.py", "b.py"]


async def test_staleness_round_trip(
    memories: MemoryService, manager: CategoryLifecycleManager, project_root: Path
):
    await manager.create("architecture", "How the code is put together")
    source = project_root / "server.py"
    source.write_text("PORT = 8000\n")
    record = await memories.remember("Server listens on 8000", "architecture", related_files=["server.py"])
    await memories.remember("No files attached", "architecture")

    report = await memories.check_staleness()
    assert report.checked == 1
    assert report.is_clean

    source.write_text("PORT = 9000\n")
    report = await memories.check_staleness()
    assert [m.id for m in report.stale] == [record.id]
    assert report.stale[0].changed_files == ["server.py"]

    await memories.reflect(record.id, content="Server listens on 9000")
    stored = await memories.store.get(record.id)
    assert stored.file_checksums["server.py"] == hash_file(source)
    assert (await memories.check_staleness()).is_clean


async def test_staleness_orders_by_importance_and_filters_project(
    memories: MemoryService, manager: CategoryLifecycleManager, project_root: Path
):
    await manager.create("notes", "Anything")
    (project_root / "a.txt").write_text("one")
    low = await memories.remember("low", "notes", importance=3, project="alpha", related_files=["a.txt"])
    high = await memories.remember("high", "notes", importance=9, project="alpha", related_files=["a.txt"])
    other = await memories.remember("other", "notes", importance=5, project="beta", related_files=["a.txt"])
    (project_root / "a.txt").write_text("two")

    report = await memories.check_staleness()
    assert [m.id for m in report.stale] == [high.id, other.id, low.id]

    scoped = await memories.check_staleness("beta")
    assert [m.id for m in scoped.stale] == [other.id]
