"""Configuration management.

Two layers live here:

* :class:`Settings` - process settings read once via pydantic-settings
  (``SYNABUN_*`` variables or the ``.env`` file).
* :class:`ProfileSource` - the live, switchable vector-store connection and
  embedding provider profiles. These are re-read from ``.env`` whenever the
  hot-reload coordinator sees the file change, so the active selection can
  change without a restart.
"""

import os
import re
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_QDRANT_URL = "http://localhost:6333"
DEFAULT_QDRANT_API_KEY = "claude-memory-local-key"
DEFAULT_COLLECTION = "claude_memory"
DEFAULT_EMBEDDING_BASE_URL = "https://api.openai.com/v1"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 1536

class Settings(BaseSettings):
    # Live profile source (connections, embedding providers)
    env_file_path: Path = Field(default=Path(".env"), description="File holding QDRANT_*/EMBEDDING_* profiles")

    # Durable taxonomy files live here, one per connection
    data_dir: Path = Path("data")

    # related_files paths are resolved against this directory
    project_root: Path = Field(default_factory=Path.cwd)

    # External call bounds (seconds); no retries anywhere in the core
    store_timeout: int = 10
    embedding_timeout: float = 30.0

    # Ranking and bulk updates
    recall_min_score: float = 0.3
    bulk_page_size: int = 100

    # Hot reload
    debounce_ms: int = 300
    poll_interval: float = 0.5

    # Overrides project auto-detection from the working directory
    current_project: str | None = None

    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="SYNABUN_",
        env_file=".env",
        extra="ignore",  # The same .env carries QDRANT__* and EMBEDDING__* profiles
    )


class Connection(BaseModel):
    """A vector-store target profile."""

    id: str | None = Field(default=None, description="Profile id; None for legacy flat or fallback values")
    url: str
    api_key: str | None = None
    collection: str
    label: str | None = None

    @property
    def fingerprint(self) -> tuple[str | None, str, str | None, str]:
        return (self.id, self.url, self.api_key, self.collection)


class EmbeddingProfile(BaseModel):
    """An embedding provider profile (OpenAI-compatible endpoint)."""

    id: str | None = None
    api_key: str = ""
    base_url: str = DEFAULT_EMBEDDING_BASE_URL
    model: str = DEFAULT_EMBEDDING_MODEL
    dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    label: str | None = None


def _int_or(value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer dimensions value {value!r}")
        return default


def resolve_connection(env: dict[str, str]) -> Connection:
    """Resolve the active connection.

    Precedence: ``QDRANT_ACTIVE`` selector with a complete
    ``QDRANT__<id>__*`` profile, then legacy flat variables, then the
    hardcoded local default.
    """
    active = env.get("QDRANT_ACTIVE") or None
    if active:
        prefix = f"QDRANT__{active}__"
        url = env.get(f"{prefix}URL")
        if not url and env.get(f"{prefix}PORT"):
            url = f"http://localhost:{env[f'{prefix}PORT']}"
        api_key = env.get(f"{prefix}API_KEY")
        collection = env.get(f"{prefix}COLLECTION")
        if url and api_key and collection:
            return Connection(
                id=active,
                url=url,
                api_key=api_key,
                collection=collection,
                label=env.get(f"{prefix}LABEL") or active,
            )
        logger.warning(f"Active connection {active!r} is incomplete, falling back to flat variables")

    port = env.get("QDRANT_PORT") or "6333"
    return Connection(
        id=active,
        url=env.get("QDRANT_MEMORY_URL") or f"http://localhost:{port}",
        api_key=env.get("QDRANT_MEMORY_API_KEY") or DEFAULT_QDRANT_API_KEY,
        collection=env.get("QDRANT_MEMORY_COLLECTION") or DEFAULT_COLLECTION,
    )


def resolve_embedding(env: dict[str, str]) -> EmbeddingProfile:
    """Resolve the active embedding profile.

    Precedence: ``EMBEDDING_ACTIVE`` with an ``EMBEDDING__<id>__API_KEY``,
    then flat ``OPENAI_EMBEDDING_API_KEY``/``OPENAI_API_KEY`` and
    ``EMBEDDING_*`` variables, then defaults.
    """
    active = env.get("EMBEDDING_ACTIVE") or None
    if active and env.get(f"EMBEDDING__{active}__API_KEY"):
        prefix = f"EMBEDDING__{active}__"
        return EmbeddingProfile(
            id=active,
            api_key=env[f"{prefix}API_KEY"],
            base_url=env.get(f"{prefix}BASE_URL") or DEFAULT_EMBEDDING_BASE_URL,
            model=env.get(f"{prefix}MODEL") or DEFAULT_EMBEDDING_MODEL,
            dimensions=_int_or(env.get(f"{prefix}DIMENSIONS"), DEFAULT_EMBEDDING_DIMENSIONS),
            label=env.get(f"{prefix}LABEL") or active,
        )

    return EmbeddingProfile(
        api_key=env.get("OPENAI_EMBEDDING_API_KEY") or env.get("OPENAI_API_KEY") or "",
        base_url=env.get("EMBEDDING_BASE_URL") or DEFAULT_EMBEDDING_BASE_URL,
        model=env.get("EMBEDDING_MODEL") or DEFAULT_EMBEDDING_MODEL,
        dimensions=_int_or(env.get("EMBEDDING_DIMENSIONS"), DEFAULT_EMBEDDING_DIMENSIONS),
    )


class ProfileSource:
    """Live view over the ``.env`` profile variables.

    The file is layered over the process environment. ``reload()`` re-reads
    it; the resolved profiles are replaced, never mutated.
    """

    def __init__(self, env_path: Path | None = None, base_env: dict[str, str] | None = None):
        self.env_path = env_path
        self._base_env = dict(os.environ) if base_env is None else dict(base_env)
        self._env: dict[str, str] = {}
        self._connection: Connection | None = None
        self._embedding: EmbeddingProfile | None = None
        self.reload()

    def reload(self) -> None:
        """Re-read the profile file; an unreadable file leaves only the base environment."""
        file_values: dict[str, str] = {}
        if self.env_path is not None and self.env_path.exists():
            try:
                file_values = {k: v for k, v in dotenv_values(self.env_path).items() if v is not None}
            except OSError as e:
                logger.warning(f"Could not read profile file {self.env_path}: {e}")
        self._env = {**self._base_env, **file_values}
        self._connection = resolve_connection(self._env)
        self._embedding = resolve_embedding(self._env)

    @property
    def env(self) -> dict[str, str]:
        return dict(self._env)

    def active_connection(self) -> Connection:
        assert self._connection is not None
        return self._connection

    def active_embedding(self) -> EmbeddingProfile:
        assert self._embedding is not None
        return self._embedding

    def active_connection_id(self) -> str:
        """Id used to key per-connection state such as the taxonomy file."""
        return self.active_connection().id or "default"


PROJECT_MAP: dict[str, str] = {
    "criticalpixel": "criticalpixel",
    "ellacred": "ellacred",
}


def detect_project(cwd: str | Path | None = None) -> str:
    """Derive the caller's current project from a working directory."""
    directory = str(cwd or Path.cwd())
    lower = directory.lower()
    for key, value in PROJECT_MAP.items():
        if key in lower:
            return value
    base = re.sub(r"[^a-z0-9-]", "-", Path(directory).name.lower())
    return base or "global"


settings = Settings()
