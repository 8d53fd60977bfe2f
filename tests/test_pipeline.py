# =============================================================================
# Unit Tests — Document Pipeline
# =============================================================================
#
# The fast path, the two detached background paths, and the disjoint-field
# writes that let them finish in any order without losing data.
# =============================================================================

from __future__ import annotations

import asyncio
import itertools

import pytest

from docsense.db.models import DocumentStatus, DocumentType
from docsense.errors import ProviderUnavailable
from docsense.services.pipeline import DocumentPipeline
from fakes import FakeGatewayClient, FakeLLM

_TEXT = (
    "A agrees to pay B $500 by 2024-01-01. Either party may terminate "
    "this agreement with thirty days notice. All terms are confidential."
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _pipeline(repository, rag, gateway_client, llm=None, timeout=5.0) -> DocumentPipeline:
    return DocumentPipeline(
        repository=repository,
        rag=rag,
        gateway=gateway_client,
        llm=llm or FakeLLM(content='{"summary": "Payment of $500", "parties": ["A", "B"]}'),
        fast_timeout_seconds=timeout,
    )


async def _submit_and_drain(pipeline: DocumentPipeline, doc_type=DocumentType.LEGAL):
    result = await pipeline.submit(
        owner_id="owner-1",
        file_name="agreement.txt",
        mime_type="text/plain",
        raw_text=_TEXT,
        doc_type=doc_type,
    )
    pending_after_submit = pipeline.pending
    await pipeline.drain()
    return result, pending_after_submit


# ---------------------------------------------------------------------------
# Test: Fast Path
# ---------------------------------------------------------------------------


class TestFastPath:
    def test_submit_returns_fast_analysis(self, repository, rag, gateway_client):
        pipeline = _pipeline(repository, rag, gateway_client)
        result, _ = _run(_submit_and_drain(pipeline))

        assert result.fast_analysis["summary"] == "Payment of $500"
        assert "analysis_time_ms" in result.fast_analysis
        assert result.total_time_ms >= result.analysis_time_ms

    def test_fast_analysis_committed_before_return(self, repository, rag, gateway_client):
        pipeline = _pipeline(repository, rag, gateway_client)

        async def scenario():
            result = await pipeline.submit("owner-1", "a.txt", "text/plain", _TEXT, DocumentType.GENERAL)
            document = await repository.get(result.document_id)
            snapshot = (document.status, dict(document.fast_analysis))
            await pipeline.drain()
            return snapshot

        status, fast = _run(scenario())
        assert status == DocumentStatus.COMPLETED
        assert fast["parties"] == ["A", "B"]

    def test_fast_prompt_is_type_specific(self, repository, rag, gateway_client):
        llm = FakeLLM()
        _run(_submit_and_drain(_pipeline(repository, rag, gateway_client, llm=llm)))
        assert llm.calls[0]["json_mode"] is True
        assert "legal" in llm.calls[0]["system"].lower()

    def test_malformed_fast_output_is_empty_analysis(self, repository, rag, gateway_client):
        llm = FakeLLM(content="I could not analyse this.")
        result, _ = _run(_submit_and_drain(_pipeline(repository, rag, gateway_client, llm=llm)))
        assert set(result.fast_analysis) == {"analysis_time_ms"}
        assert repository.documents[result.document_id].status == DocumentStatus.COMPLETED

    def test_provider_failure_marks_document_failed(self, repository, rag, gateway_client):
        llm = FakeLLM(error=ConnectionError("api down"))
        pipeline = _pipeline(repository, rag, gateway_client, llm=llm)

        with pytest.raises(ProviderUnavailable):
            _run(_submit_and_drain(pipeline))

        (document,) = repository.documents.values()
        assert document.status == DocumentStatus.FAILED
        assert "api down" in document.error_message
        assert pipeline.pending == 0
        assert gateway_client.calls == []

    def test_timeout_marks_document_failed(self, repository, rag, gateway_client):
        llm = FakeLLM(delay=1.0)
        pipeline = _pipeline(repository, rag, gateway_client, llm=llm, timeout=0.05)

        with pytest.raises(ProviderUnavailable) as exc_info:
            _run(_submit_and_drain(pipeline))

        assert "timed out" in exc_info.value.message
        (document,) = repository.documents.values()
        assert document.status == DocumentStatus.FAILED
        assert document.fast_analysis is None


# ---------------------------------------------------------------------------
# Test: Background Paths
# ---------------------------------------------------------------------------


class TestBackgroundPaths:
    def test_both_paths_detached_after_submit(self, repository, rag, gateway_client):
        _, pending = _run(_submit_and_drain(_pipeline(repository, rag, gateway_client)))
        assert pending == 2

    def test_background_results_land_on_record(self, repository, rag, gateway_client, vector_index):
        result, _ = _run(_submit_and_drain(_pipeline(repository, rag, gateway_client)))
        document = repository.documents[result.document_id]

        assert set(document.deep_analysis["results"]) == {
            "document_analysis", "entities", "timeline", "compliance",
        }
        assert document.index_state["indexed"] is True
        assert document.index_state["chunk_count"] == len(vector_index.collections[f"doc_{result.document_id}"])
        assert document.index_state["collection"] == f"doc_{result.document_id}"
        assert document.fast_analysis["summary"] == "Payment of $500"

    def test_fast_write_precedes_background_writes(self, repository, rag, gateway_client):
        _run(_submit_and_drain(_pipeline(repository, rag, gateway_client)))
        methods = [method for method, _ in repository.writes]
        assert methods[0] == "fast_analysis"
        assert sorted(methods[1:]) == ["deep_analysis", "index_state"]

    def test_gateway_down_leaves_deep_analysis_unset(self, repository, rag):
        pipeline = _pipeline(repository, rag, FakeGatewayClient(unavailable=True))
        result, _ = _run(_submit_and_drain(pipeline))
        document = repository.documents[result.document_id]

        assert document.deep_analysis is None
        assert document.index_state["indexed"] is True
        assert document.status == DocumentStatus.COMPLETED

    def test_index_failure_leaves_index_state_unset(self, repository, gateway_client):
        from docsense.services.rag import RagService
        from fakes import FakeVectorIndex

        def broken_embed(texts):
            raise ConnectionError("embeddings down")

        rag = RagService(index=FakeVectorIndex(), embed_batch_fn=broken_embed, embed_query_fn=broken_embed)
        result, _ = _run(_submit_and_drain(_pipeline(repository, rag, gateway_client)))
        document = repository.documents[result.document_id]

        assert document.index_state is None
        assert document.deep_analysis is not None
        assert document.status == DocumentStatus.COMPLETED

    @pytest.mark.parametrize(
        "order", list(itertools.permutations(["fast", "deep", "index"])),
    )
    def test_disjoint_writes_commute(self, repository, order):
        fast = {"summary": "s", "analysis_time_ms": 1}
        deep = {"results": {}, "elapsed_ms": 2}
        index = {"indexed": True, "chunk_count": 3, "collection": "doc_x"}
        writers = {
            "fast": lambda doc_id: repository.record_fast_analysis(doc_id, fast),
            "deep": lambda doc_id: repository.record_deep_analysis(doc_id, deep),
            "index": lambda doc_id: repository.record_index_state(doc_id, index),
        }

        async def scenario():
            document = await repository.create("o", "f.txt", "text/plain", "text", DocumentType.GENERAL)
            for name in order:
                await writers[name](document.id)
            return document

        document = _run(scenario())
        assert document.fast_analysis == fast
        assert document.deep_analysis == deep
        assert document.index_state == index


# ---------------------------------------------------------------------------
# Test: Deletion
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_removes_record_and_collection(self, repository, rag, gateway_client, vector_index):
        pipeline = _pipeline(repository, rag, gateway_client)

        async def scenario():
            result, _ = await _submit_and_drain(pipeline)
            deleted = await pipeline.delete(result.document_id, "owner-1")
            return result.document_id, deleted

        document_id, deleted = _run(scenario())
        assert deleted is True
        assert document_id not in repository.documents
        assert f"doc_{document_id}" in vector_index.deleted

    def test_delete_other_owner_is_refused(self, repository, rag, gateway_client, vector_index):
        pipeline = _pipeline(repository, rag, gateway_client)

        async def scenario():
            result, _ = await _submit_and_drain(pipeline)
            return result.document_id, await pipeline.delete(result.document_id, "intruder")

        document_id, deleted = _run(scenario())
        assert deleted is False
        assert document_id in repository.documents
        assert vector_index.deleted == []
