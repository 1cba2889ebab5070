"""
In-memory vector store with cosine-similarity search.

Vectors are kept row-wise in one numpy matrix so a query is scored
against every stored vector in a single matrix product.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class SearchMatch:
    """A match from similarity search."""

    key: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorStore:
    """
    Fixed-dimension vector store keyed by string.

    Example:
        store = VectorStore(dimension=3)
        store.add("paris", [1.0, 0.0, 0.0], {"node_id": "a"})
        store.search([0.9, 0.1, 0.0], top_k=1)[0].key  # "paris"
    """

    def __init__(self, dimension: int):
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        self.dimension = dimension
        self._keys: list[str] = []
        self._positions: dict[str, int] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self._vectors = np.empty((0, dimension), dtype=np.float32)

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._positions

    def _as_vector(self, vector: Sequence[float] | np.ndarray) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32).reshape(-1)
        if array.shape[0] != self.dimension:
            raise ValueError(
                f"Vector has {array.shape[0]} dimensions, store expects {self.dimension}"
            )
        return array

    def add(
        self,
        key: str,
        vector: Sequence[float] | np.ndarray,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Store (or replace) the vector for key.

        Raises:
            ValueError: If the vector length does not match the store dimension
        """
        array = self._as_vector(vector)
        if key in self._positions:
            self._vectors[self._positions[key]] = array
        else:
            self._positions[key] = len(self._keys)
            self._keys.append(key)
            self._vectors = np.vstack([self._vectors, array[np.newaxis, :]])
        self._metadata[key] = dict(metadata or {})

    def get(self, key: str) -> np.ndarray | None:
        position = self._positions.get(key)
        if position is None:
            return None
        return self._vectors[position].copy()

    def get_metadata(self, key: str) -> dict[str, Any] | None:
        return self._metadata.get(key)

    def remove(self, key: str) -> bool:
        position = self._positions.pop(key, None)
        if position is None:
            return False
        self._vectors = np.delete(self._vectors, position, axis=0)
        self._keys.pop(position)
        del self._metadata[key]
        self._positions = {k: i for i, k in enumerate(self._keys)}
        return True

    def similarities(self, query: Sequence[float] | np.ndarray) -> np.ndarray:
        """Cosine similarity of query against every stored vector (zero vectors score 0)."""
        q = self._as_vector(query)
        if not self._keys:
            return np.empty(0, dtype=np.float32)

        q_norm = np.linalg.norm(q)
        norms = np.linalg.norm(self._vectors, axis=1)
        denominator = norms * q_norm
        dots = self._vectors @ q
        scores = np.zeros(len(self._keys), dtype=np.float32)
        nonzero = denominator > 0
        scores[nonzero] = dots[nonzero] / denominator[nonzero]
        return scores

    def search(
        self,
        query: Sequence[float] | np.ndarray,
        top_k: int = 5,
        min_score: float | None = None,
    ) -> list[SearchMatch]:
        """Return up to top_k matches, best first, optionally above min_score."""
        scores = self.similarities(query)
        if scores.size == 0 or top_k <= 0:
            return []

        # Stable sort keeps insertion order for equal scores
        order = np.argsort(-scores, kind="stable")
        matches = []
        for index in order:
            score = float(scores[index])
            if min_score is not None and score < min_score:
                break
            key = self._keys[index]
            matches.append(SearchMatch(key=key, score=score, metadata=dict(self._metadata[key])))
            if len(matches) >= top_k:
                break
        return matches
