# =============================================================================
# RAG Service — Index, Retrieve, Format, Cite
# =============================================================================
#
# The retrieval half of docsense, scoped to ONE document at a time.
#
# INDEXING (background, from the document pipeline):
#   raw text → split_into_chunks() → embed_batch() (chunk order)
#            → create collection "doc_<id>" → upsert (acknowledged)
#            → return chunk count (the caller marks the document indexed)
#
# RETRIEVAL (request path):
#   question → embed_query() → search "doc_<id>" top-K → RetrievedChunk[]
#   missing collection → [] ("not indexed yet", never an error)
#
# GROUNDING:
#   format_context() numbers results [1]..[k] positionally, and
#   extract_citations() inverts exactly that numbering on the answer text.
#
# ERRORS: embedding and vector-index failures surface as
# ProviderUnavailable. Deletion is best-effort and only logs.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass

from docsense.config import settings
from docsense.errors import DocsenseError, ProviderUnavailable
from docsense.services.chunker import split_into_chunks
from docsense.services.embedder import embed_batch, embed_query
from docsense.services.vectorstore import VectorIndex, VectorPoint, get_vector_index

logger = logging.getLogger(__name__)

_CITATION_MARKER = re.compile(r"\[(\d+)\]")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class RetrievedChunk:
    """One ranked search hit, with its span in the document's raw text."""

    text: str
    start: int
    end: int
    score: float
    chunk_index: int


@dataclass
class Citation:
    """A `[marker]` in an answer resolved to the retrieved chunk it names."""

    marker: int
    text: str
    start: int
    end: int
    score: float
    chunk_index: int

    def to_dict(self) -> dict:
        return asdict(self)


def collection_name(document_id: str) -> str:
    return f"doc_{document_id}"


# ---------------------------------------------------------------------------
# Context Formatting & Citation Extraction
# ---------------------------------------------------------------------------


def format_context(results: Sequence[RetrievedChunk]) -> str:
    """
    Render ranked results as one numbered grounding block.

    Example:
        [1] A agrees to pay B $500 by 2024-01-01 [chars: 0-36]

        [2] ...

    The number of each entry is its 1-based position in `results`.
    """
    return "\n\n".join(
        f"[{i}] {result.text} [chars: {result.start}-{result.end}]"
        for i, result in enumerate(results, start=1)
    )


def extract_citations(
    answer: str,
    results: Sequence[RetrievedChunk],
) -> list[Citation]:
    """
    Resolve every `[n]` marker in `answer` against `results` (1-based).

    Citations come back in order of appearance; a marker cited twice is
    cited twice. Markers outside 1..len(results) are dropped silently.
    """
    citations: list[Citation] = []
    for match in _CITATION_MARKER.finditer(answer):
        marker = int(match.group(1))
        if not 1 <= marker <= len(results):
            continue
        result = results[marker - 1]
        citations.append(Citation(
            marker=marker,
            text=result.text,
            start=result.start,
            end=result.end,
            score=result.score,
            chunk_index=result.chunk_index,
        ))
    return citations


# ---------------------------------------------------------------------------
# RAG Service
# ---------------------------------------------------------------------------


class RagService:
    """
    Per-document indexing and retrieval.

    The embedding functions are the synchronous ones from embedder.py; they
    run in a worker thread so a long batch never stalls the event loop.
    """

    def __init__(
        self,
        index: VectorIndex | None = None,
        embed_batch_fn: Callable[[Sequence[str]], list[list[float]]] | None = None,
        embed_query_fn: Callable[[str], list[float]] | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        vector_size: int | None = None,
    ) -> None:
        self._index = index if index is not None else get_vector_index()
        self._embed_batch = embed_batch_fn or embed_batch
        self._embed_query = embed_query_fn or embed_query
        self._chunk_size = chunk_size or settings.chunk_size
        self._chunk_overlap = (
            settings.chunk_overlap if chunk_overlap is None else chunk_overlap
        )
        self._vector_size = vector_size or settings.embedding_dimensions

    async def index_document(self, document_id: str, text: str) -> int:
        """
        Chunk, embed and upsert a document's raw text.

        Returns:
            The number of chunks written.

        Raises:
            ProviderUnavailable: If the embedding provider or the vector
                index fails.
        """
        chunks = split_into_chunks(text, self._chunk_size, self._chunk_overlap)
        name = collection_name(document_id)

        try:
            embeddings = await asyncio.to_thread(
                self._embed_batch, [chunk.content for chunk in chunks],
            )
        except DocsenseError:
            raise
        except Exception as exc:
            raise ProviderUnavailable(
                message=f"Embedding failed for document {document_id}: {exc}",
                provider_name="embeddings",
            ) from exc

        points = [
            VectorPoint(
                id=chunk.chunk_index,
                vector=vector,
                payload={
                    "text": chunk.content,
                    "start": chunk.start_offset,
                    "end": chunk.end_offset,
                    "chunk_index": chunk.chunk_index,
                    "token_count": chunk.token_count,
                    "document_id": document_id,
                },
            )
            for chunk, vector in zip(chunks, embeddings, strict=True)
        ]

        try:
            if not await self._index.collection_exists(name):
                await self._index.create_collection(name, self._vector_size)
            await self._index.upsert(name, points)
        except DocsenseError:
            raise
        except Exception as exc:
            raise ProviderUnavailable(
                message=f"Vector index write failed for {name}: {exc}",
                provider_name="vector_index",
            ) from exc

        logger.info("Indexed document %s: %d chunks in %s", document_id, len(points), name)
        return len(points)

    async def search(
        self,
        document_id: str,
        query: str,
        top_k: int | None = None,
    ) -> list[RetrievedChunk]:
        """
        Top-K chunks of one document for `query`, highest score first.

        Returns [] when the document has no collection yet.
        """
        name = collection_name(document_id)
        limit = top_k or settings.retrieval_top_k

        try:
            if not await self._index.collection_exists(name):
                logger.info("No collection %s yet; returning no results", name)
                return []
            query_vector = await asyncio.to_thread(self._embed_query, query)
            hits = await self._index.search(name, query_vector, limit)
        except DocsenseError:
            raise
        except Exception as exc:
            raise ProviderUnavailable(
                message=f"Retrieval failed for {name}: {exc}",
                provider_name="vector_index",
            ) from exc

        results = [
            RetrievedChunk(
                text=str(hit.payload.get("text", "")),
                start=int(hit.payload.get("start", 0)),
                end=int(hit.payload.get("end", 0)),
                score=hit.score,
                chunk_index=int(hit.payload.get("chunk_index", 0)),
            )
            for hit in hits
        ]
        results.sort(key=lambda result: result.score, reverse=True)
        return results

    async def delete_document_index(self, document_id: str) -> None:
        """Drop the document's collection. Failures are logged, not raised."""
        name = collection_name(document_id)
        try:
            await self._index.delete_collection(name)
        except Exception:
            logger.warning("Failed to delete collection %s", name, exc_info=True)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_service: RagService | None = None


def get_rag_service() -> RagService:
    global _service
    if _service is None:
        _service = RagService()
    return _service
