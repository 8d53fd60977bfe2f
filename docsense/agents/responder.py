# =============================================================================
# Streaming Responder — Retrieval-Grounded, Token-Streamed Answers
# =============================================================================
#
# stream_answer(document_id, owner_id, question) → AnswerStream
#
#   1. the document must exist for this owner      (else DocumentNotFound)
#   2. the document must be indexed                 (else NotReady, retryable)
#   3. retrieve top-K chunks, format numbered context
#   4. open a streaming completion; tokens are forwarded one by one
#   5. when the stream ENDS normally:
#        extract [n] citations from the full answer,
#        persist the user turn then the assistant turn (one transaction)
#
# CANCELLATION: aclose() (or cancelling the consuming task) before the end
# abandons the provider stream at the current token boundary and persists
# NOTHING. Only complete answers are stored, and a question is stored only
# together with its answer.
#
# Chat depends on indexing alone. A document whose deep analysis is still
# running, or has failed, is fully chat-able once indexed.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from docsense.config import settings
from docsense.db.models import ConversationTurn, TurnRole
from docsense.db.repository import DocumentRepository, get_document_repository, new_turn
from docsense.errors import DocsenseError, DocumentNotFound, NotReady, ProviderUnavailable
from docsense.services.llm import LLMProvider, get_llm_provider
from docsense.services.rag import (
    Citation,
    RagService,
    RetrievedChunk,
    extract_citations,
    format_context,
    get_rag_service,
)

logger = logging.getLogger(__name__)

CHAT_SYSTEM_PROMPT = (
    "You are a document analysis assistant. Answer questions based ONLY on "
    "the provided context. Include citation numbers [1], [2] etc. when "
    "referencing specific parts of the context."
)


def build_user_message(context: str, question: str) -> str:
    return f"Context:\n{context}\n\nQuestion: {question}"


@dataclass
class ChatAnswer:
    """A completed, persisted exchange."""

    answer: str
    citations: list[Citation] = field(default_factory=list)
    retrieved_chunks: int = 0
    response_time_ms: int = 0


# ---------------------------------------------------------------------------
# Answer Stream
# ---------------------------------------------------------------------------


class AnswerStream:
    """
    Finite, non-restartable async iterator of answer tokens.

    `results` is available before the first token (the API emits it as the
    `citations` event). `citations`, `answer` and `response_time_ms` are
    set once iteration has finished normally.
    """

    def __init__(
        self,
        tokens: AsyncIterator[str],
        results: list[RetrievedChunk],
        document_id: str,
        owner_id: str,
        question: str,
        repository: DocumentRepository,
        started: float,
    ) -> None:
        self._tokens = tokens
        self.results = results
        self.document_id = document_id
        self.owner_id = owner_id
        self.question = question
        self._repository = repository
        self._started = started
        self._parts: list[str] = []
        self._done = False

        self.completed = False
        self.answer: str | None = None
        self.citations: list[Citation] = []
        self.response_time_ms: int | None = None

    def __aiter__(self) -> AnswerStream:
        return self

    async def __anext__(self) -> str:
        if self._done:
            raise StopAsyncIteration

        try:
            token = await self._tokens.__anext__()
        except StopAsyncIteration:
            self._done = True
            await self._finish()
            raise
        except asyncio.CancelledError:
            await self._abandon("cancelled")
            raise
        except DocsenseError:
            await self._abandon("provider error")
            raise
        except Exception as exc:
            await self._abandon("provider error")
            raise ProviderUnavailable(
                message=f"Answer generation failed: {exc}",
                provider_name="llm",
            ) from exc

        self._parts.append(token)
        return token

    async def aclose(self) -> None:
        """Stop early. Nothing is persisted for an unfinished answer."""
        if not self._done:
            await self._abandon("closed by caller")

    async def _abandon(self, reason: str) -> None:
        self._done = True
        logger.info(
            "Answer for document %s abandoned (%s) after %d tokens; not persisted",
            self.document_id, reason, len(self._parts),
        )
        aclose = getattr(self._tokens, "aclose", None)
        if aclose is not None:
            await aclose()

    async def _finish(self) -> None:
        answer = "".join(self._parts)
        citations = extract_citations(answer, self.results)
        response_time_ms = int((time.perf_counter() - self._started) * 1000)

        await self._repository.add_turns([
            new_turn(self.document_id, self.owner_id, TurnRole.USER, self.question),
            new_turn(
                self.document_id,
                self.owner_id,
                TurnRole.ASSISTANT,
                answer,
                citations=[citation.to_dict() for citation in citations],
                retrieved_chunks=len(self.results),
                response_time_ms=response_time_ms,
            ),
        ])

        self.answer = answer
        self.citations = citations
        self.response_time_ms = response_time_ms
        self.completed = True
        logger.info(
            "Answered question on document %s: %d citations, %dms",
            self.document_id, len(citations), response_time_ms,
        )


# ---------------------------------------------------------------------------
# Streaming Responder
# ---------------------------------------------------------------------------


class StreamingResponder:
    """Opens answer streams and serves conversation history."""

    def __init__(
        self,
        repository: DocumentRepository | None = None,
        rag: RagService | None = None,
        llm: LLMProvider | None = None,
    ) -> None:
        self._repository = repository or get_document_repository()
        self._rag = rag
        self._llm = llm

    async def _require_document(self, document_id: str, owner_id: str):
        document = await self._repository.get(document_id, owner_id)
        if document is None:
            raise DocumentNotFound(document_id)
        return document

    async def stream_answer(
        self,
        document_id: str,
        owner_id: str,
        question: str,
    ) -> AnswerStream:
        """
        Retrieve context and open the token stream.

        Raises:
            DocumentNotFound: If the document does not exist for this owner.
            NotReady: If the document has not been indexed yet.
            ProviderUnavailable: If retrieval fails.
        """
        started = time.perf_counter()
        document = await self._require_document(document_id, owner_id)
        if not (document.index_state or {}).get("indexed"):
            raise NotReady(document_id)

        rag = self._rag or get_rag_service()
        results = await rag.search(document_id, question, settings.retrieval_top_k)
        context = format_context(results)

        llm = self._llm or get_llm_provider()
        tokens = llm.stream(
            messages=[{"role": "user", "content": build_user_message(context, question)}],
            system=CHAT_SYSTEM_PROMPT,
            temperature=settings.chat_temperature,
            max_tokens=settings.chat_max_tokens,
        )

        logger.info(
            "Opening answer stream for document %s with %d retrieved chunks",
            document_id, len(results),
        )
        return AnswerStream(
            tokens=tokens,
            results=results,
            document_id=document_id,
            owner_id=owner_id,
            question=question,
            repository=self._repository,
            started=started,
        )

    async def answer(self, document_id: str, owner_id: str, question: str) -> ChatAnswer:
        """Non-streaming variant: drain the stream, return the stored exchange."""
        stream = await self.stream_answer(document_id, owner_id, question)
        async for _ in stream:
            pass
        return ChatAnswer(
            answer=stream.answer or "",
            citations=stream.citations,
            retrieved_chunks=len(stream.results),
            response_time_ms=stream.response_time_ms or 0,
        )

    async def history(self, document_id: str, owner_id: str) -> list[ConversationTurn]:
        await self._require_document(document_id, owner_id)
        return await self._repository.list_turns(document_id, owner_id)


_responder: StreamingResponder | None = None


def get_streaming_responder() -> StreamingResponder:
    global _responder
    if _responder is None:
        _responder = StreamingResponder()
    return _responder
