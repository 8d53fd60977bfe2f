# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# Text extraction (PDF/DOCX decoding) happens upstream: documents arrive
# here as raw text plus their source mime type.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field

from docsense.db.models import DocumentType


class AnalyzeDocumentRequest(BaseModel):
    """
    Request body for POST /documents/analyze.

    Example:
        {
            "file_name": "services-agreement.pdf",
            "mime_type": "application/pdf",
            "raw_text": "A agrees to pay B $500 by 2024-01-01",
            "doc_type": "Legal"
        }
    """

    file_name: str = Field(..., min_length=1, max_length=500)
    mime_type: str = Field(default="text/plain", max_length=255)
    raw_text: str = Field(
        ...,
        min_length=1,
        description="Extracted plain text of the document",
    )
    doc_type: DocumentType = Field(
        default=DocumentType.GENERAL,
        description="Declared document type: Legal, Medical, Business or General",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "file_name": "services-agreement.pdf",
                    "mime_type": "application/pdf",
                    "raw_text": "A agrees to pay B $500 by 2024-01-01",
                    "doc_type": "Legal",
                },
            ]
        }
    )


class ChatRequest(BaseModel):
    """Request body for POST /chat and POST /chat/stream."""

    document_id: str = Field(..., min_length=1)
    question: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        examples=["What is the due date?"],
    )


class DocumentRef(BaseModel):
    """Request body for capability endpoints that only need the document."""

    document_id: str = Field(..., min_length=1)


class ComplianceRequest(DocumentRef):
    standards: list[str] | None = Field(
        default=None,
        description="Standards to check against. Defaults to GDPR and HIPAA.",
        examples=[["GDPR", "HIPAA"]],
    )


class VerifyClaimRequest(DocumentRef):
    claim: str = Field(..., min_length=1, max_length=2000)
