"""Profile resolution and project detection."""

from pathlib import Path

from synabun.core.config import (
    DEFAULT_COLLECTION,
    DEFAULT_EMBEDDING_DIMENSIONS,
    ProfileSource,
    detect_project,
    resolve_connection,
    resolve_embedding,
)


def test_active_namespaced_connection_wins():
    env = {
        "QDRANT_ACTIVE": "work",
        "QDRANT__work__URL": "http://qdrant.work:6333",
        "QDRANT__work__API_KEY": "secret",
        "QDRANT__work__COLLECTION": "work_memories",
        "QDRANT_MEMORY_URL": "http://flat:6333",
    }
    connection = resolve_connection(env)
    assert connection.id == "work"
    assert connection.url == "http://qdrant.work:6333"
    assert connection.collection == "work_memories"
    assert connection.label == "work"


def test_incomplete_active_connection_falls_back_to_flat_variables():
    env = {
        "QDRANT_ACTIVE": "work",
        "QDRANT__work__URL": "http://qdrant.work:6333",
        "QDRANT_MEMORY_URL": "http://flat:6333",
        "QDRANT_MEMORY_COLLECTION": "flat_memories",
    }
    connection = resolve_connection(env)
    assert connection.url == "http://flat:6333"
    assert connection.collection == "flat_memories"


def test_port_only_profile_targets_localhost():
    env = {
        "QDRANT_ACTIVE": "local2",
        "QDRANT__local2__PORT": "7333",
        "QDRANT__local2__API_KEY": "k",
        "QDRANT__local2__COLLECTION": "c",
    }
    assert resolve_connection(env).url == "http://localhost:7333"


def test_hardcoded_default_connection():
    connection = resolve_connection({})
    assert connection.id is None
    assert connection.url == "http://localhost:6333"
    assert connection.collection == DEFAULT_COLLECTION


def test_embedding_precedence():
    env = {
        "EMBEDDING_ACTIVE": "voyage",
        "EMBEDDING__voyage__API_KEY": "vk",
        "EMBEDDING__voyage__BASE_URL": "https://embed.example/v1",
        "EMBEDDING__voyage__DIMENSIONS": "1024",
        "OPENAI_API_KEY": "ok",
    }
    profile = resolve_embedding(env)
    assert profile.id == "voyage"
    assert profile.api_key == "vk"
    assert profile.dimensions == 1024

    flat = resolve_embedding({"OPENAI_API_KEY": "ok", "EMBEDDING_DIMENSIONS": "not-a-number"})
    assert flat.id is None
    assert flat.api_key == "ok"
    assert flat.dimensions == DEFAULT_EMBEDDING_DIMENSIONS


def test_profile_source_reload_picks_up_file_edits(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "QDRANT_ACTIVE=one\nQDRANT__one__URL=http://one\nQDRANT__one__API_KEY=k\nQDRANT__one__COLLECTION=c1\n"
        "QDRANT__two__URL=http://two\nQDRANT__two__API_KEY=k\nQDRANT__two__COLLECTION=c2\n"
    )
    source = ProfileSource(env_file, base_env={})
    assert source.active_connection_id() == "one"

    env_file.write_text(env_file.read_text().replace("QDRANT_ACTIVE=one", "QDRANT_ACTIVE=two"))
    source.reload()
    assert source.active_connection().url == "http://two"
    assert source.active_connection().collection == "c2"


def test_file_values_override_base_environment(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text("QDRANT_MEMORY_COLLECTION=from_file\n")
    source = ProfileSource(env_file, base_env={"QDRANT_MEMORY_COLLECTION": "from_env"})
    assert source.active_connection().collection == "from_file"
    assert source.active_connection_id() == "default"


def test_detect_project():
    assert detect_project("/home/dev/CriticalPixel/web") == "criticalpixel"
    assert detect_project("/home/dev/My Project") == "my-project"
    assert detect_project("/") == "global"
