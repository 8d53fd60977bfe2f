# =============================================================================
# Vector Index Abstraction — Pluggable Backend Protocol
# =============================================================================
#
# Stores vectors plus a payload per logical collection and answers
# nearest-neighbour queries. Every document gets its own collection
# ("doc_<document_id>"), so search never needs a metadata filter and
# deleting a document's index is one collection drop.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Any class with the right methods can be used, which keeps test doubles
# free of inheritance.
#
# DESIGN DECISION: All methods async. The index is written from a detached
# background task and read from request handlers, both on the event loop.
# ChromaDB's client is synchronous, so its calls go through
# asyncio.to_thread().
#
# ARCHITECTURE:
#   VectorIndex (Protocol)
#   ├── PgVectorIndex     — rows of the `chunks` table keyed by collection
#   └── ChromaVectorIndex — one ChromaDB collection per document
#
# SCORES: both backends use cosine distance and report
# similarity = 1 - distance (higher = more relevant).
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

import chromadb
from sqlalchemy import delete, exists, select
from sqlalchemy.dialects.postgresql import insert

from docsense.config import settings
from docsense.db.engine import async_session_factory
from docsense.db.models import Chunk

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class VectorPoint:
    """One vector to upsert. `id` is unique within its collection."""

    id: int
    vector: list[float]
    payload: dict = field(default_factory=dict)


@dataclass
class ScoredPoint:
    """A search hit: similarity score plus the stored payload."""

    score: float
    payload: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorIndex(Protocol):
    """
    Protocol defining the vector index interface.

    Payload shape written by the RAG service:
        {"text": str, "start": int, "end": int, "chunk_index": int,
         "document_id": str}
    """

    async def create_collection(self, name: str, vector_size: int) -> None:
        ...

    async def collection_exists(self, name: str) -> bool:
        ...

    async def upsert(self, name: str, points: list[VectorPoint]) -> None:
        """Write points; returns only once the backend has acknowledged them."""
        ...

    async def search(
        self,
        name: str,
        vector: list[float],
        top_k: int = 5,
    ) -> list[ScoredPoint]:
        """Nearest neighbours in `name`, highest score first."""
        ...

    async def delete_collection(self, name: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorIndex:
    """
    pgvector-backed index over the `chunks` table.

    A "collection" is the set of rows sharing one `collection` value; it
    exists once it has at least one row. The vector size is fixed by the
    column type, so create_collection only validates it.
    """

    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory or async_session_factory

    async def create_collection(self, name: str, vector_size: int) -> None:
        if vector_size != settings.embedding_dimensions:
            raise ValueError(
                f"pgvector column holds {settings.embedding_dimensions}-d "
                f"vectors, cannot create collection '{name}' with {vector_size}"
            )

    async def collection_exists(self, name: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(exists().where(Chunk.collection == name))
            )
            return bool(result.scalar())

    async def upsert(self, name: str, points: list[VectorPoint]) -> None:
        if not points:
            return

        rows = [
            {
                "collection": name,
                "document_id": point.payload["document_id"],
                "chunk_index": point.id,
                "start_offset": point.payload["start"],
                "end_offset": point.payload["end"],
                "token_count": point.payload.get("token_count", 0),
                "content": point.payload["text"],
                "embedding": point.vector,
            }
            for point in points
        ]
        stmt = insert(Chunk).values(rows)
        stmt = stmt.on_conflict_do_update(
            constraint="uq_chunk_collection_index",
            set_={
                "start_offset": stmt.excluded.start_offset,
                "end_offset": stmt.excluded.end_offset,
                "token_count": stmt.excluded.token_count,
                "content": stmt.excluded.content,
                "embedding": stmt.excluded.embedding,
            },
        )

        # Commit is the acknowledgement
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

        logger.info("Upserted %d points into pgvector collection %s", len(rows), name)

    async def search(
        self,
        name: str,
        vector: list[float],
        top_k: int = 5,
    ) -> list[ScoredPoint]:
        distance = Chunk.embedding.cosine_distance(vector)
        stmt = (
            select(Chunk, distance.label("distance"))
            .where(Chunk.collection == name)
            .order_by(distance)
            .limit(top_k)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            ScoredPoint(
                score=round(1.0 - dist, 4),
                payload={
                    "text": chunk.content,
                    "start": chunk.start_offset,
                    "end": chunk.end_offset,
                    "chunk_index": chunk.chunk_index,
                    "document_id": chunk.document_id,
                },
            )
            for chunk, dist in rows
        ]

    async def delete_collection(self, name: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(Chunk).where(Chunk.collection == name))
            await session.commit()
        logger.info("Deleted pgvector collection %s", name)


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorIndex:
    """
    ChromaDB-backed index, one Chroma collection per document.

    ChromaDB supports both in-process and client/server modes:
    - In-process (default): no extra infra, data kept in memory
    - Client/server: set CHROMA_URL for a Docker deployment
    """

    def __init__(self, client=None) -> None:
        if client is not None:
            self._client = client
        elif settings.chroma_url:
            self._client = chromadb.HttpClient(host=settings.chroma_url)
        else:
            self._client = chromadb.Client()

    def _collection_names(self) -> set[str]:
        # Depending on the chromadb release, list_collections() yields either
        # names or Collection objects.
        return {
            getattr(entry, "name", entry)
            for entry in self._client.list_collections()
        }

    async def create_collection(self, name: str, vector_size: int) -> None:
        # Chroma infers the dimension from the first write; record it anyway
        await asyncio.to_thread(
            self._client.get_or_create_collection,
            name=name,
            metadata={"hnsw:space": "cosine", "dimension": vector_size},
        )

    async def collection_exists(self, name: str) -> bool:
        names = await asyncio.to_thread(self._collection_names)
        return name in names

    async def upsert(self, name: str, points: list[VectorPoint]) -> None:
        if not points:
            return

        def _sync_upsert() -> None:
            collection = self._client.get_collection(name=name)
            collection.upsert(
                ids=[str(point.id) for point in points],
                embeddings=[point.vector for point in points],
                documents=[point.payload.get("text", "") for point in points],
                metadatas=[_sanitise_chroma_metadata(point.payload) for point in points],
            )

        await asyncio.to_thread(_sync_upsert)
        logger.info("Upserted %d points into Chroma collection %s", len(points), name)

    async def search(
        self,
        name: str,
        vector: list[float],
        top_k: int = 5,
    ) -> list[ScoredPoint]:
        def _sync_search() -> list[ScoredPoint]:
            collection = self._client.get_collection(name=name)
            count = collection.count()
            if count == 0:
                return []

            results = collection.query(
                query_embeddings=[vector],
                n_results=min(top_k, count),
                include=["metadatas", "distances"],
            )

            hits: list[ScoredPoint] = []
            if results and results["ids"] and results["ids"][0]:
                for i in range(len(results["ids"][0])):
                    distance = results["distances"][0][i] if results["distances"] else 0.0
                    metadata = results["metadatas"][0][i] if results["metadatas"] else {}
                    hits.append(ScoredPoint(
                        score=round(1.0 - distance, 4),
                        payload=dict(metadata or {}),
                    ))

            hits.sort(key=lambda hit: hit.score, reverse=True)
            return hits

        return await asyncio.to_thread(_sync_search)

    async def delete_collection(self, name: str) -> None:
        def _sync_delete() -> None:
            if name in self._collection_names():
                self._client.delete_collection(name=name)

        await asyncio.to_thread(_sync_delete)
        logger.info("Deleted Chroma collection %s", name)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

# Lazy singleton: the in-process Chroma client keeps its data in memory
_index: PgVectorIndex | ChromaVectorIndex | None = None


def get_vector_index() -> PgVectorIndex | ChromaVectorIndex:
    """
    Factory that returns the configured vector index backend.

    Reads `vectorstore_type` from settings:
    - "pgvector" → PgVectorIndex (default, no extra infra)
    - "chroma" → ChromaVectorIndex
    """
    global _index
    if _index is None:
        if settings.vectorstore_type == "chroma":
            logger.info("Using ChromaDB vector index")
            _index = ChromaVectorIndex()
        else:
            logger.info("Using pgvector vector index")
            _index = PgVectorIndex()
    return _index


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    Sanitise metadata for ChromaDB compatibility.

    ChromaDB requires all metadata values to be str, int, float, or bool.
    Lists and None values are not supported. We convert:
    - list → comma-separated string
    - None → empty string
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
