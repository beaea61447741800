"""Embedding service clients."""

from ragcore.embedding.client import EmbeddingClient, OllamaEmbeddingClient

__all__ = ["EmbeddingClient", "OllamaEmbeddingClient"]
