# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# Separate response models from DB models: chunk embeddings never leave the
# service, and listings never carry the (possibly large) raw text.
#
# Absent analysis fields (deep_analysis / index_state = null) mean
# "not available yet", not failure.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from docsense.db.models import DocumentStatus, DocumentType, TurnRole


class HealthResponse(BaseModel):
    """Response for GET /health. Confirms the API is running."""

    status: str = "ok"
    version: str
    service: str
    capabilities: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class PerformanceInfo(BaseModel):
    fast_analysis_ms: int = Field(description="Time spent in the fast analysis call")
    total_ms: int = Field(description="Submission wall-clock time")
    deep_analysis: str = Field(default="background")
    indexing: str = Field(default="background")


class AnalyzeDocumentResponse(BaseModel):
    """
    Response for POST /documents/analyze.

    Returned as soon as the fast analysis is stored. Deep analysis and
    indexing continue in the background; poll GET /documents/{id}.
    """

    document_id: str
    status: DocumentStatus
    analysis: dict
    performance: PerformanceInfo


class DocumentSummary(BaseModel):
    """Document metadata for listings (raw text excluded)."""

    id: str
    file_name: str
    file_size: int
    mime_type: str
    doc_type: DocumentType
    status: DocumentStatus
    error_message: str | None = None
    index_state: dict | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class DocumentDetail(DocumentSummary):
    raw_text: str
    fast_analysis: dict | None = None
    deep_analysis: dict | None = None


class DocumentListResponse(BaseModel):
    documents: list[DocumentSummary]
    total: int
    offset: int
    limit: int


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class CitationResponse(BaseModel):
    marker: int = Field(description="The [n] marker in the answer")
    text: str
    start: int = Field(description="Start character offset in the raw text")
    end: int = Field(description="End character offset (exclusive)")
    score: float = Field(description="Similarity score of the cited chunk")
    chunk_index: int


class ChatResponse(BaseModel):
    document_id: str
    answer: str
    citations: list[CitationResponse]
    retrieved_chunks: int
    response_time_ms: int


class ConversationTurnResponse(BaseModel):
    role: TurnRole
    content: str
    citations: list[CitationResponse] | None = None
    retrieved_chunks: int | None = None
    response_time_ms: int | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ChatHistoryResponse(BaseModel):
    document_id: str
    turns: list[ConversationTurnResponse]


# ---------------------------------------------------------------------------
# Direct capability calls
# ---------------------------------------------------------------------------


class CapabilityResponse(BaseModel):
    document_id: str
    capability: str
    result: dict
