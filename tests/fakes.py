# =============================================================================
# Test Fakes
# =============================================================================
#
# Lightweight in-memory stand-ins for the external collaborators, so that
# no test needs API keys, PostgreSQL, a Chroma server or the network:
#
#   InMemoryRepository  — DocumentRepository over dicts (real ORM objects)
#   FakeLLM             — canned completions and token streams
#   FakeGatewayClient   — canned capability responses, tracks concurrency
#   FakeVectorIndex     — cosine search over in-memory points
#   keyword_embedding   — deterministic bag-of-keywords embedding
# =============================================================================

from __future__ import annotations

import asyncio
import math
import uuid
from datetime import UTC, datetime, timedelta

from docsense.db.models import ConversationTurn, Document, DocumentStatus, DocumentType
from docsense.errors import CapabilityNotFound, GatewayUnavailable
from docsense.services.llm import LLMResponse
from docsense.services.vectorstore import ScoredPoint, VectorPoint

# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class InMemoryRepository:
    """DocumentRepository keeping ORM objects in dicts."""

    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.turns: list[ConversationTurn] = []
        self.writes: list[tuple[str, str]] = []
        self._clock = datetime(2024, 1, 1, tzinfo=UTC)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def create(self, owner_id, file_name, mime_type, raw_text, doc_type):
        now = self._tick()
        document = Document(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            file_name=file_name,
            file_size=len(raw_text.encode("utf-8")),
            mime_type=mime_type,
            doc_type=DocumentType(doc_type),
            raw_text=raw_text,
            status=DocumentStatus.PROCESSING,
            created_at=now,
            updated_at=now,
        )
        self.documents[document.id] = document
        return document

    async def get(self, document_id, owner_id=None):
        document = self.documents.get(document_id)
        if document is None or (owner_id is not None and document.owner_id != owner_id):
            return None
        return document

    async def list_for_owner(self, owner_id, offset=0, limit=20):
        owned = sorted(
            (doc for doc in self.documents.values() if doc.owner_id == owner_id),
            key=lambda doc: doc.created_at,
            reverse=True,
        )
        return owned[offset:offset + limit], len(owned)

    async def delete(self, document_id, owner_id):
        document = await self.get(document_id, owner_id)
        if document is None:
            return None
        del self.documents[document_id]
        self.turns = [turn for turn in self.turns if turn.document_id != document_id]
        return document

    def _set(self, method: str, document_id: str, **values) -> None:
        self.writes.append((method, document_id))
        document = self.documents.get(document_id)
        if document is None:
            return
        for key, value in values.items():
            setattr(document, key, value)
        document.updated_at = self._tick()

    async def record_fast_analysis(self, document_id, fast_analysis):
        self._set(
            "fast_analysis", document_id,
            fast_analysis=fast_analysis, status=DocumentStatus.COMPLETED,
        )

    async def mark_failed(self, document_id, error_message):
        self._set(
            "failed", document_id,
            status=DocumentStatus.FAILED, error_message=error_message,
        )

    async def record_deep_analysis(self, document_id, deep_analysis):
        self._set("deep_analysis", document_id, deep_analysis=deep_analysis)

    async def record_index_state(self, document_id, index_state):
        self._set("index_state", document_id, index_state=index_state)

    async def add_turns(self, turns):
        for turn in turns:
            turn.id = len(self.turns) + 1
            turn.created_at = self._tick()
            self.turns.append(turn)

    async def list_turns(self, document_id, owner_id, limit=100):
        return [
            turn for turn in self.turns
            if turn.document_id == document_id and turn.owner_id == owner_id
        ][:limit]


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------


class FakeLLM:
    """LLMProvider returning canned content; records every call."""

    def __init__(
        self,
        content: str = '{"summary": "A short agreement"}',
        tokens: list[str] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
        stream_error_after: int | None = None,
    ) -> None:
        self.content = content
        self.tokens = tokens if tokens is not None else ["The due date ", "is 2024-01-01 ", "[1]."]
        self.delay = delay
        self.error = error
        self.stream_error_after = stream_error_after
        self.calls: list[dict] = []
        self.stream_calls: list[dict] = []

    async def complete(self, messages, system=None, temperature=None, max_tokens=None, json_mode=False):
        self.calls.append({
            "messages": messages, "system": system,
            "temperature": temperature, "json_mode": json_mode,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.content, model="fake-model", input_tokens=10, output_tokens=5)

    def stream(self, messages, system=None, temperature=None, max_tokens=None):
        self.stream_calls.append({"messages": messages, "system": system, "temperature": temperature})
        return self._tokens()

    async def _tokens(self):
        for i, token in enumerate(self.tokens):
            if self.stream_error_after is not None and i == self.stream_error_after:
                raise RuntimeError("connection reset by provider")
            await asyncio.sleep(0)
            yield token


# ---------------------------------------------------------------------------
# Gateway Client
# ---------------------------------------------------------------------------


class FakeGatewayClient:
    """GatewayClient with canned per-capability responses."""

    def __init__(
        self,
        responses: dict[str, str | Exception] | None = None,
        unavailable: bool = False,
        delay: float = 0.01,
    ) -> None:
        self.responses = responses or {}
        self.unavailable = unavailable
        self.delay = delay
        self.calls: list[tuple[str, str, dict]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def check(self) -> None:
        if self.unavailable:
            raise GatewayUnavailable("fake gateway is down")

    async def call_tool(self, capability, tool, arguments):
        self.calls.append((capability, tool, arguments))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

        if capability not in self.responses:
            raise CapabilityNotFound(capability)
        response = self.responses[capability]
        if isinstance(response, Exception):
            raise response
        return response


# ---------------------------------------------------------------------------
# Vector Index & Embeddings
# ---------------------------------------------------------------------------

VOCAB = ["pay", "due", "date", "terminate", "patient", "revenue", "confidential"]


def keyword_embedding(text: str) -> list[float]:
    lowered = text.lower()
    return [1.0 if word in lowered else 0.0 for word in VOCAB] + [0.1]


def keyword_embed_batch(texts) -> list[list[float]]:
    return [keyword_embedding(text) for text in texts]


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeVectorIndex:
    """VectorIndex over in-memory lists."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[int, VectorPoint]] = {}
        self.deleted: list[str] = []

    async def create_collection(self, name, vector_size):
        self.collections.setdefault(name, {})

    async def collection_exists(self, name):
        return name in self.collections

    async def upsert(self, name, points):
        for point in points:
            self.collections[name][point.id] = point

    async def search(self, name, vector, top_k=5):
        hits = [
            ScoredPoint(score=_cosine(vector, point.vector), payload=dict(point.payload))
            for point in self.collections[name].values()
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    async def delete_collection(self, name):
        self.deleted.append(name)
        self.collections.pop(name, None)
