from .openai_compat import EmbeddingClient

__all__ = ["EmbeddingClient"]
