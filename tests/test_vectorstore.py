# =============================================================================
# Unit Tests — Vector Index (ChromaDB backend)
# =============================================================================
#
# Tests per-document collections on ChromaDB's in-process mode (no external
# services needed). pgvector is not exercised here; it requires a running
# PostgreSQL instance.
# =============================================================================

import asyncio
import uuid

from docsense.services.vectorstore import ChromaVectorIndex, VectorPoint


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _unique_name() -> str:
    # The in-process Chroma client is shared by the whole test session
    return f"doc_test_{uuid.uuid4().hex[:12]}"


def _point(i: int, vector: list[float], text: str) -> VectorPoint:
    return VectorPoint(
        id=i,
        vector=vector,
        payload={"text": text, "start": i * 10, "end": i * 10 + len(text), "chunk_index": i},
    )


class TestChromaVectorIndex:
    """Tests for ChromaVectorIndex (in-process mode)."""

    def test_collection_lifecycle(self):
        index = ChromaVectorIndex()
        name = _unique_name()

        assert _run(index.collection_exists(name)) is False
        _run(index.create_collection(name, vector_size=3))
        assert _run(index.collection_exists(name)) is True
        _run(index.delete_collection(name))
        assert _run(index.collection_exists(name)) is False

    def test_create_collection_is_idempotent(self):
        index = ChromaVectorIndex()
        name = _unique_name()
        _run(index.create_collection(name, vector_size=3))
        _run(index.create_collection(name, vector_size=3))
        assert _run(index.collection_exists(name)) is True

    def test_search_returns_closest_first(self):
        index = ChromaVectorIndex()
        name = _unique_name()
        _run(index.create_collection(name, vector_size=3))
        _run(index.upsert(name, [
            _point(0, [1.0, 0.0, 0.0], "Revenue increased by 15%"),
            _point(1, [0.0, 1.0, 0.0], "Expenses decreased by 5%"),
        ]))

        hits = _run(index.search(name, [0.9, 0.1, 0.0], top_k=2))
        assert len(hits) == 2
        assert hits[0].payload["text"] == "Revenue increased by 15%"
        assert hits[0].payload["start"] == 0
        assert hits[0].score >= hits[1].score

    def test_top_k_larger_than_collection(self):
        index = ChromaVectorIndex()
        name = _unique_name()
        _run(index.create_collection(name, vector_size=3))
        _run(index.upsert(name, [_point(0, [1.0, 0.0, 0.0], "only chunk")]))
        assert len(_run(index.search(name, [1.0, 0.0, 0.0], top_k=10))) == 1

    def test_search_empty_collection(self):
        index = ChromaVectorIndex()
        name = _unique_name()
        _run(index.create_collection(name, vector_size=3))
        assert _run(index.search(name, [1.0, 0.0, 0.0])) == []

    def test_upsert_replaces_same_id(self):
        index = ChromaVectorIndex()
        name = _unique_name()
        _run(index.create_collection(name, vector_size=3))
        _run(index.upsert(name, [_point(0, [1.0, 0.0, 0.0], "old text")]))
        _run(index.upsert(name, [_point(0, [1.0, 0.0, 0.0], "new text")]))

        hits = _run(index.search(name, [1.0, 0.0, 0.0], top_k=5))
        assert [hit.payload["text"] for hit in hits] == ["new text"]

    def test_collections_are_isolated(self):
        index = ChromaVectorIndex()
        first, second = _unique_name(), _unique_name()
        for name in (first, second):
            _run(index.create_collection(name, vector_size=3))
        _run(index.upsert(first, [_point(0, [1.0, 0.0, 0.0], "first document")]))
        _run(index.upsert(second, [_point(0, [1.0, 0.0, 0.0], "second document")]))

        hits = _run(index.search(second, [1.0, 0.0, 0.0]))
        assert [hit.payload["text"] for hit in hits] == ["second document"]

    def test_delete_missing_collection_is_noop(self):
        index = ChromaVectorIndex()
        _run(index.delete_collection(_unique_name()))
