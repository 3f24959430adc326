"""Process-wide wiring of the memory core.

Both the MCP tool server and the admin API build one :class:`Runtime` at
startup and tear it down on exit.
"""

from synabun.core.config import ProfileSource, Settings, settings as default_settings
from synabun.core.logging import get_logger
from synabun.infrastructure.embeddings import EmbeddingClient
from synabun.infrastructure.qdrant import StoreClient
from synabun.services import EmbeddingService
from synabun.services.categories import CategoryLifecycleManager
from synabun.services.hot_reload import ChangeNotifier, DerivedView, HotReloadCoordinator
from synabun.services.memory_service import MemoryService
from synabun.services.ranking import RelevanceRanker
from synabun.services.staleness import StalenessDetector
from synabun.services.taxonomy import TaxonomyStore

logger = get_logger(__name__)


class Runtime:
    """All long-lived components of one process."""

    def __init__(
        self,
        settings: Settings | None = None,
        profiles: ProfileSource | None = None,
        embeddings: EmbeddingService | None = None,
    ):
        self.settings = settings or default_settings
        self.profiles = profiles or ProfileSource(self.settings.env_file_path)
        self.store = StoreClient(self.profiles, timeout=self.settings.store_timeout)
        self.embeddings = embeddings or EmbeddingClient(self.profiles, timeout=self.settings.embedding_timeout)
        self.notifier = ChangeNotifier()
        self.taxonomy = TaxonomyStore(self.profiles, data_dir=self.settings.data_dir)
        self.ranker = RelevanceRanker(
            self.store,
            current_project=self.settings.current_project,
            min_score=self.settings.recall_min_score,
        )
        self.staleness = StalenessDetector(self.store, self.settings.project_root, self.settings.bulk_page_size)
        self.memories = MemoryService(
            self.store,
            self.embeddings,
            self.taxonomy,
            ranker=self.ranker,
            staleness=self.staleness,
            project_root=self.settings.project_root,
        )
        self.taxonomy.mirror = self.memories.mirror_taxonomy
        self.categories = CategoryLifecycleManager(
            self.taxonomy, self.store, self.notifier, page_size=self.settings.bulk_page_size
        )
        self.coordinator = HotReloadCoordinator(
            self.taxonomy,
            self.profiles,
            self.notifier,
            debounce_ms=self.settings.debounce_ms,
            poll_interval=self.settings.poll_interval,
        )
        self.routing_guide: DerivedView[str] = self.coordinator.register_view(
            DerivedView("routing_guide", self.taxonomy.routing_guide)
        )
        # Local edits refresh the guide too; the coordinator covers external ones
        self.notifier.subscribe(self.routing_guide.refresh)

    async def start(self, watch: bool = True) -> None:
        await self.memories.initialize()
        if watch:
            await self.coordinator.start()
        logger.info(
            "Runtime started",
            connection_id=self.profiles.active_connection().id,
            collection=self.store.collection,
            categories=len(self.taxonomy.categories),
        )

    async def stop(self) -> None:
        await self.coordinator.stop()
        await self.ranker.close()
        await self.store.close()
        logger.info("Runtime stopped")
