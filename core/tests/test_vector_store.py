"""Tests for the numpy-backed VectorStore."""

import numpy as np
import pytest

from contextflow.embeddings.vector_store import VectorStore


@pytest.fixture
def store():
    store = VectorStore(dimension=3)
    store.add("paris", [1.0, 0.0, 0.0], {"node_id": "a"})
    store.add("rome", [0.0, 1.0, 0.0], {"node_id": "b"})
    store.add("between", [1.0, 1.0, 0.0])
    return store


def test_search_orders_by_cosine(store):
    matches = store.search([0.9, 0.1, 0.0], top_k=2)

    assert [m.key for m in matches] == ["paris", "between"]
    assert matches[0].score == pytest.approx(0.9939, abs=1e-3)
    assert matches[0].metadata == {"node_id": "a"}


def test_min_score(store):
    matches = store.search([0.0, 1.0, 0.0], top_k=5, min_score=0.5)
    assert [m.key for m in matches] == ["rome", "between"]


def test_replace_and_remove(store):
    store.add("paris", [0.0, 0.0, 2.0])
    assert len(store) == 3
    assert store.get("paris").tolist() == [0.0, 0.0, 2.0]

    assert store.remove("rome") is True
    assert store.remove("rome") is False
    assert "rome" not in store
    assert store.get("rome") is None
    assert store.search([0.0, 0.0, 1.0], top_k=1)[0].key == "paris"
    assert store.get_metadata("between") == {}


def test_zero_vectors_score_zero():
    store = VectorStore(dimension=2)
    store.add("zero", [0.0, 0.0])
    store.add("x", [1.0, 0.0])

    scores = store.similarities(np.array([1.0, 0.0]))

    assert scores.tolist() == [0.0, 1.0]
    assert store.similarities([0.0, 0.0]).tolist() == [0.0, 0.0]


def test_dimension_checks():
    with pytest.raises(ValueError):
        VectorStore(dimension=0)

    store = VectorStore(dimension=2)
    with pytest.raises(ValueError):
        store.add("bad", [1.0, 2.0, 3.0])
    assert store.search([1.0, 0.0]) == []
    assert store.search([1.0, 0.0], top_k=0) == []
