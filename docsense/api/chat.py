# =============================================================================
# Chat API — Retrieval-Grounded Q&A over One Document
# =============================================================================
#
# ENDPOINTS:
#   POST /chat                 — answer in one response
#   POST /chat/stream          — answer as Server-Sent Events
#   GET  /chat/{document_id}   — conversation history
#
# SSE EVENT SEQUENCE (each frame is `data: {json}\n\n`):
#   {"type": "citations", "sources": [...]}   retrieved chunks, numbered [1]..[k]
#   {"type": "token", "content": "..."}       zero or more
#   {"type": "done", "citations": [...], "response_time_ms": ...}
# or, if generation fails mid-stream:
#   {"type": "error", "message": "..."}
#
# Ownership and readiness are checked BEFORE the response starts, so
# DocumentNotFound and NotReady still come back as plain 404 / 409.
#
# A client that disconnects mid-answer leaves no conversation turns behind:
# both turns are written only after the last token.
# =============================================================================

import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from docsense.agents.responder import AnswerStream, StreamingResponder
from docsense.api.deps import configuration_guard, get_owner_id, get_responder
from docsense.errors import DocsenseError
from docsense.models.requests import ChatRequest
from docsense.models.responses import (
    ChatHistoryResponse,
    ChatResponse,
    CitationResponse,
    ConversationTurnResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


# ---------------------------------------------------------------------------
# POST /chat — Non-streaming answer
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ChatResponse,
    summary="Ask a question about a document",
    description=(
        "Answers from the document's most relevant chunks, with [n] citations "
        "resolved to character spans. Returns 409 while the document is still "
        "being indexed."
    ),
)
async def chat(
    request: ChatRequest,
    owner_id: str = Depends(get_owner_id),
    responder: StreamingResponder = Depends(get_responder),
) -> ChatResponse:
    with configuration_guard():
        result = await responder.answer(request.document_id, owner_id, request.question)
    return ChatResponse(
        document_id=request.document_id,
        answer=result.answer,
        citations=[CitationResponse(**citation.to_dict()) for citation in result.citations],
        retrieved_chunks=result.retrieved_chunks,
        response_time_ms=result.response_time_ms,
    )


# ---------------------------------------------------------------------------
# POST /chat/stream — Server-Sent Events
# ---------------------------------------------------------------------------


async def _event_stream(stream: AnswerStream):
    try:
        sources = [
            {"marker": i, **vars(result)}
            for i, result in enumerate(stream.results, start=1)
        ]
        yield _sse({"type": "citations", "sources": sources})

        async for token in stream:
            yield _sse({"type": "token", "content": token})

        yield _sse({
            "type": "done",
            "citations": [citation.to_dict() for citation in stream.citations],
            "response_time_ms": stream.response_time_ms,
        })
    except DocsenseError as exc:
        logger.error("Chat stream for document %s failed: %s", stream.document_id, exc)
        yield _sse({"type": "error", "message": str(exc)})
    finally:
        await stream.aclose()


@router.post(
    "/stream",
    summary="Ask a question and stream the answer",
    description=(
        "Server-Sent Events: one `citations` event with the retrieved sources, "
        "then `token` events, then `done` with the resolved citations. "
        "Returns 409 (not a stream) while the document is still being indexed."
    ),
)
async def chat_stream(
    request: ChatRequest,
    owner_id: str = Depends(get_owner_id),
    responder: StreamingResponder = Depends(get_responder),
) -> StreamingResponse:
    with configuration_guard():
        stream = await responder.stream_answer(request.document_id, owner_id, request.question)
    return StreamingResponse(
        _event_stream(stream),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


# ---------------------------------------------------------------------------
# GET /chat/{document_id} — Conversation history
# ---------------------------------------------------------------------------


@router.get(
    "/{document_id}",
    response_model=ChatHistoryResponse,
    summary="Conversation history for a document",
)
async def chat_history(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    responder: StreamingResponder = Depends(get_responder),
) -> ChatHistoryResponse:
    turns = await responder.history(document_id, owner_id)
    return ChatHistoryResponse(
        document_id=document_id,
        turns=[ConversationTurnResponse.model_validate(turn) for turn in turns],
    )
