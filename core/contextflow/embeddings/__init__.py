"""Vector similarity lookup."""

from contextflow.embeddings.vector_store import SearchMatch, VectorStore

__all__ = ["SearchMatch", "VectorStore"]
