# =============================================================================
# Document Repository — Keyed Partial Updates
# =============================================================================
#
# The read/write contract the pipeline, the responder and the API depend
# on. The Document row is the only shared mutable resource, and each
# producer owns its own fields:
#
#   record_fast_analysis()  → fast_analysis, status=completed   (fast path)
#   mark_failed()           → status=failed, error_message       (fast path)
#   record_deep_analysis()  → deep_analysis                      (deep path)
#   record_index_state()    → index_state                        (index path)
#
# Every write is a single `UPDATE documents SET <own fields> WHERE id = :id`
# in its own short session. Nothing reads-modifies-writes, so no lock or
# transaction spans producers, and the deep/index writes commute.
# =============================================================================

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docsense.db.engine import async_session_factory
from docsense.db.models import (
    ConversationTurn,
    Document,
    DocumentStatus,
    DocumentType,
    TurnRole,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


class DocumentRepository(Protocol):
    """Storage contract for documents and their conversations."""

    async def create(
        self,
        owner_id: str,
        file_name: str,
        mime_type: str,
        raw_text: str,
        doc_type: DocumentType,
    ) -> Document:
        ...

    async def get(self, document_id: str, owner_id: str | None = None) -> Document | None:
        """Fetch one document; with owner_id set, other owners' documents are invisible."""
        ...

    async def list_for_owner(
        self, owner_id: str, offset: int = 0, limit: int = 20,
    ) -> tuple[list[Document], int]:
        ...

    async def delete(self, document_id: str, owner_id: str) -> Document | None:
        ...

    async def record_fast_analysis(self, document_id: str, fast_analysis: dict) -> None:
        ...

    async def mark_failed(self, document_id: str, error_message: str) -> None:
        ...

    async def record_deep_analysis(self, document_id: str, deep_analysis: dict) -> None:
        ...

    async def record_index_state(self, document_id: str, index_state: dict) -> None:
        ...

    async def add_turns(self, turns: list[ConversationTurn]) -> None:
        """Append turns in the given order, atomically."""
        ...

    async def list_turns(
        self, document_id: str, owner_id: str, limit: int = HISTORY_LIMIT,
    ) -> list[ConversationTurn]:
        ...


class SqlDocumentRepository:
    """DocumentRepository over async SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or async_session_factory

    async def create(
        self,
        owner_id: str,
        file_name: str,
        mime_type: str,
        raw_text: str,
        doc_type: DocumentType,
    ) -> Document:
        document = Document(
            owner_id=owner_id,
            file_name=file_name,
            file_size=len(raw_text.encode("utf-8")),
            mime_type=mime_type,
            doc_type=doc_type,
            raw_text=raw_text,
            status=DocumentStatus.PROCESSING,
        )
        async with self._session_factory() as session:
            session.add(document)
            await session.commit()
            await session.refresh(document)

        logger.info("Created document %s (%s, owner=%s)", document.id, file_name, owner_id)
        return document

    async def get(self, document_id: str, owner_id: str | None = None) -> Document | None:
        stmt = select(Document).where(Document.id == document_id)
        if owner_id is not None:
            stmt = stmt.where(Document.owner_id == owner_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_for_owner(
        self, owner_id: str, offset: int = 0, limit: int = 20,
    ) -> tuple[list[Document], int]:
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Document).where(Document.owner_id == owner_id)
            )
            result = await session.execute(
                select(Document)
                .where(Document.owner_id == owner_id)
                .order_by(Document.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total or 0

    async def delete(self, document_id: str, owner_id: str) -> Document | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document).where(
                    Document.id == document_id, Document.owner_id == owner_id,
                )
            )
            document = result.scalar_one_or_none()
            if document is None:
                return None
            # Chunk and turn rows go with the document (ON DELETE CASCADE)
            await session.execute(delete(Document).where(Document.id == document_id))
            await session.commit()

        logger.info("Deleted document %s", document_id)
        return document

    # --- Producer-owned partial updates ---

    async def _update(self, document_id: str, **values) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(Document).where(Document.id == document_id).values(**values)
            )
            await session.commit()

    async def record_fast_analysis(self, document_id: str, fast_analysis: dict) -> None:
        await self._update(
            document_id,
            fast_analysis=fast_analysis,
            status=DocumentStatus.COMPLETED,
        )

    async def mark_failed(self, document_id: str, error_message: str) -> None:
        await self._update(
            document_id,
            status=DocumentStatus.FAILED,
            error_message=error_message,
        )

    async def record_deep_analysis(self, document_id: str, deep_analysis: dict) -> None:
        await self._update(document_id, deep_analysis=deep_analysis)

    async def record_index_state(self, document_id: str, index_state: dict) -> None:
        await self._update(document_id, index_state=index_state)

    # --- Conversation ---

    async def add_turns(self, turns: list[ConversationTurn]) -> None:
        async with self._session_factory() as session:
            for turn in turns:
                session.add(turn)
                # Flush per turn so ids (the ordering tie-breaker) follow list order
                await session.flush()
            await session.commit()

    async def list_turns(
        self, document_id: str, owner_id: str, limit: int = HISTORY_LIMIT,
    ) -> list[ConversationTurn]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ConversationTurn)
                .where(
                    ConversationTurn.document_id == document_id,
                    ConversationTurn.owner_id == owner_id,
                )
                .order_by(ConversationTurn.created_at.asc(), ConversationTurn.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())


def new_turn(
    document_id: str,
    owner_id: str,
    role: TurnRole,
    content: str,
    citations: list[dict] | None = None,
    retrieved_chunks: int | None = None,
    response_time_ms: int | None = None,
) -> ConversationTurn:
    return ConversationTurn(
        document_id=document_id,
        owner_id=owner_id,
        role=role,
        content=content,
        citations=citations,
        retrieved_chunks=retrieved_chunks,
        response_time_ms=response_time_ms,
    )


_repository: SqlDocumentRepository | None = None


def get_document_repository() -> SqlDocumentRepository:
    global _repository
    if _repository is None:
        _repository = SqlDocumentRepository()
    return _repository
