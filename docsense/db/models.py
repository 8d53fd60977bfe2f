# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌───────────────────┐       ┌──────────────────────────────────┐
# │  documents        │       │  chunks                          │
# ├───────────────────┤       ├──────────────────────────────────┤
# │ id (PK, uuid)     │──1:N─▶│ id (PK)                          │
# │ owner_id          │       │ document_id (FK → documents.id)  │
# │ file_name         │       │ collection ("doc_<id>")          │
# │ file_size         │       │ chunk_index                      │
# │ mime_type         │       │ start_offset / end_offset        │
# │ doc_type          │       │ token_count                      │
# │ raw_text          │       │ content (text)                   │
# │ status            │       │ embedding (vector(N))            │
# │ fast_analysis  ◀── fast path                                 │
# │ deep_analysis  ◀── tool orchestrator job                     │
# │ index_state    ◀── RAG indexing job                          │
# │ error_message     │       └──────────────────────────────────┘
# │ created_at        │
# │ updated_at        │       ┌──────────────────────────────────┐
# └───────────────────┘──1:N─▶│  conversation_turns              │
#                             │ id, document_id, owner_id, role, │
#                             │ content, citations (jsonb),      │
#                             │ retrieved_chunks, response_time  │
#                             └──────────────────────────────────┘
#
# INVARIANT: fast_analysis (+ status), deep_analysis and index_state are
# owned by three different producers. Each is written at most once per
# document, by a partial UPDATE touching only its own columns, so the final
# row does not depend on the order the background writes land in.
# =============================================================================

import enum
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from docsense.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class DocumentStatus(str, enum.Enum):
    """
    Overall document status.

    State machine:
        PROCESSING → COMPLETED   (fast path succeeded)
                   → FAILED      (fast path failed or timed out)

    Background paths never change the status.
    """

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentType(str, enum.Enum):
    """Closed set of declared document types."""

    LEGAL = "Legal"
    MEDICAL = "Medical"
    BUSINESS = "Business"
    GENERAL = "General"


class TurnRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _new_document_id() -> str:
    return str(uuid.uuid4())


class Document(Base):
    """
    The central mutable aggregate.

    Raw text, type, size and mime type are fixed at creation. The three
    analysis/index fields start as NULL, which readers treat as "not yet
    available", never as an error.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_new_document_id,
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)

    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    doc_type: Mapped[DocumentType] = mapped_column(
        Enum(DocumentType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=DocumentType.GENERAL,
    )
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus),
        nullable=False,
        default=DocumentStatus.PROCESSING,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Producer-owned fields (see INVARIANT above) ---
    fast_analysis: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    deep_analysis: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    # {"indexed": true, "chunk_count": n, "collection": "doc_<id>"}
    index_state: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Chunks and turns go with their document through ON DELETE CASCADE
    # (passive_deletes: the ORM leaves it to the database). lazy="raise":
    # they are always queried explicitly, never loaded off a Document.
    chunks: Mapped[list["Chunk"]] = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
    turns: Mapped[list["ConversationTurn"]] = relationship(
        "ConversationTurn",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return (
            f"<Document(id={self.id}, file_name='{self.file_name}', "
            f"status={self.status})>"
        )


class Chunk(Base):
    """
    A contiguous slice of a document's raw text plus its embedding.

    Used as the storage of the pgvector index backend: one row per point,
    grouped by `collection`. Immutable once written; removed together with
    its collection or its document.
    """

    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("collection", "chunk_index", name="uq_chunk_collection_index"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    collection: Mapped[str] = mapped_column(String(100), nullable=False)

    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    end_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped["Document"] = relationship("Document", back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, collection={self.collection}, "
            f"index={self.chunk_index}, span={self.start_offset}-{self.end_offset})>"
        )


class ConversationTurn(Base):
    """
    One append-only message of a document conversation.

    Owned by (document_id, owner_id), ordered by creation. Assistant turns
    carry resolved citations and timing; user turns carry neither.
    """

    __tablename__ = "conversation_turns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[TurnRole] = mapped_column(Enum(TurnRole), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    # List of {text, start, end, score, chunk_index}
    citations: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    retrieved_chunks: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped["Document"] = relationship("Document", back_populates="turns")


# =============================================================================
# Database Indexes
# =============================================================================

# Document listings are always owner-scoped, newest first
document_owner_idx = Index(
    "idx_document_owner_created",
    Document.owner_id,
    Document.created_at.desc(),
)

# HNSW index for cosine similarity search over chunk embeddings
chunk_embedding_idx = Index(
    "idx_chunk_embedding_hnsw",
    Chunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

# Every search is scoped to one collection
chunk_collection_idx = Index(
    "idx_chunk_collection",
    Chunk.collection,
)

turn_document_idx = Index(
    "idx_turn_document_created",
    ConversationTurn.document_id,
    ConversationTurn.created_at,
)
