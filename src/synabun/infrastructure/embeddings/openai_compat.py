"""Embedding client for OpenAI-compatible ``/embeddings`` endpoints."""

import time

import httpx

from synabun.core.base import EmbeddingErrorDetails
from synabun.core.config import EmbeddingProfile, ProfileSource, settings
from synabun.core.errors import EmbeddingError
from synabun.core.logging import get_logger

logger = get_logger(__name__)


class EmbeddingClient:
    """Embeds text with the active embedding profile.

    The profile is resolved per call, so switching ``EMBEDDING_ACTIVE`` takes
    effect on the next request. No retries: any failure raises
    :class:`EmbeddingError`.
    """

    def __init__(
        self,
        profiles: ProfileSource,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.profiles = profiles
        self.timeout = timeout if timeout is not None else settings.embedding_timeout
        self.transport = transport

    @property
    def profile(self) -> EmbeddingProfile:
        return self.profiles.active_embedding()

    @property
    def dimensions(self) -> int:
        return self.profile.dimensions

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts, in input order."""
        if not texts:
            return []

        profile = self.profile
        endpoint = f"{profile.base_url.rstrip('/')}/embeddings"

        def _error(message: str, status_code: int | None = None, latency_ms: float | None = None) -> EmbeddingError:
            return EmbeddingError(
                message,
                details=EmbeddingErrorDetails(
                    source="embeddings",
                    operation="embed",
                    service_name=profile.id or "openai",
                    endpoint=endpoint,
                    status_code=status_code,
                    latency_ms=latency_ms,
                    model_name=profile.model,
                    dimensions=profile.dimensions,
                ),
            )

        if not profile.api_key:
            raise _error("No embedding API key configured")

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    endpoint,
                    headers={"Authorization": f"Bearer {profile.api_key}"},
                    json={"model": profile.model, "input": texts, "dimensions": profile.dimensions},
                )
        except httpx.HTTPError as e:
            raise _error(f"Embedding request failed: {e.__class__.__name__}: {e}") from e

        latency = (time.perf_counter() - start) * 1000
        if response.status_code != 200:
            raise _error(
                f"Embedding provider returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                latency_ms=latency,
            )

        try:
            data = sorted(response.json()["data"], key=lambda item: item.get("index", 0))
            vectors = [item["embedding"] for item in data]
        except (ValueError, KeyError, TypeError) as e:
            raise _error(f"Malformed embedding response: {e}", status_code=200, latency_ms=latency) from e

        if len(vectors) != len(texts):
            raise _error(f"Expected {len(texts)} embeddings, got {len(vectors)}", latency_ms=latency)

        logger.debug("Embedded texts", count=len(texts), model=profile.model, latency_ms=round(latency, 1))
        return vectors
