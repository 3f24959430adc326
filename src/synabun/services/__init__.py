"""Memory core services."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class EmbeddingService(Protocol):
    """What the memory service needs from an embedding provider."""

    @property
    def dimensions(self) -> int:
        """Vector size, also used when creating the collection."""
        ...

    async def embed_text(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


__all__ = ["EmbeddingService"]
