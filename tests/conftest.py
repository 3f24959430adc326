"""Shared fixtures.

The store runs against qdrant-client's in-process local mode and embeddings
come from a deterministic bag-of-words hasher, so no network is needed.
"""

import hashlib
from pathlib import Path

import pytest

from synabun.core.config import Connection, EmbeddingProfile, ProfileSource
from synabun.infrastructure.qdrant import StoreClient
from synabun.services.categories import CategoryLifecycleManager
from synabun.services.hot_reload import ChangeNotifier
from synabun.services.memory_service import MemoryService
from synabun.services.ranking import RelevanceRanker
from synabun.services.staleness import StalenessDetector
from synabun.services.taxonomy import TaxonomyStore

DIMENSIONS = 8


class StaticProfileSource(ProfileSource):
    """Profile source with fixed values and no backing file."""

    def __init__(self, connection: Connection, embedding: EmbeddingProfile | None = None):
        self.env_path = None
        self._base_env = {}
        self._env = {}
        self._connection = connection
        self._embedding = embedding or EmbeddingProfile()

    def reload(self) -> None:
        return None

    def switch(self, connection: Connection) -> None:
        self._connection = connection


class FakeEmbeddings:
    """Texts sharing words get similar vectors; identical texts get identical ones."""

    def __init__(self, dimensions: int = DIMENSIONS):
        self._dimensions = dimensions
        self.calls = 0

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self._dimensions
        for word in text.lower().split():
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self._dimensions
            vec[bucket] += 1.0
        vec[0] += 0.01
        return vec

    async def embed_text(self, text: str) -> list[float]:
        self.calls += 1
        return self.vector(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_text(t) for t in texts]


@pytest.fixture
def connection() -> Connection:
    return Connection(id="test", url=":memory:", api_key=None, collection="memories_test")


@pytest.fixture
def profiles(connection: Connection) -> StaticProfileSource:
    return StaticProfileSource(connection, EmbeddingProfile(api_key="test-key", dimensions=DIMENSIONS))


@pytest.fixture
async def store(profiles: StaticProfileSource):
    client = StoreClient(profiles, timeout=10)
    await client.ensure_collection(DIMENSIONS)
    yield client
    await client.close()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def taxonomy(profiles: StaticProfileSource, data_dir: Path) -> TaxonomyStore:
    return TaxonomyStore(profiles, data_dir=data_dir)


@pytest.fixture
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture
def manager(taxonomy: TaxonomyStore, store: StoreClient, notifier: ChangeNotifier) -> CategoryLifecycleManager:
    # Small pages so bulk rewrites cross page boundaries
    return CategoryLifecycleManager(taxonomy, store, notifier, page_size=2)


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
async def ranker(store: StoreClient):
    ranker = RelevanceRanker(store, current_project="alpha", min_score=0.0)
    yield ranker
    await ranker.close()


@pytest.fixture
def memories(
    store: StoreClient,
    embeddings: FakeEmbeddings,
    taxonomy: TaxonomyStore,
    ranker: RelevanceRanker,
    project_root: Path,
) -> MemoryService:
    return MemoryService(
        store,
        embeddings,
        taxonomy,
        ranker=ranker,
        staleness=StalenessDetector(store, project_root, page_size=2),
        project_root=project_root,
    )
