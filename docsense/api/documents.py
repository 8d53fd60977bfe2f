# =============================================================================
# Documents API — Submission, Listing, Retrieval, Deletion
# =============================================================================
#
# ENDPOINTS:
#   POST   /documents/analyze  — store + fast analysis, background the rest
#   GET    /documents          — paginated listing for the caller
#   GET    /documents/{id}     — full record incl. deep analysis / index state
#   DELETE /documents/{id}     — remove record, chunks, turns and collection
#
# POST /documents/analyze returns once the fast analysis is committed.
# Deep analysis and indexing keep running after the response is sent; they
# fill `deep_analysis` and `index_state` on the same record when they finish.
# Poll GET /documents/{id} to observe them.
#
# Failures of the fast path surface here (ProviderUnavailable → 502, a
# missing LLM key → 503; either way the document is left `failed`).
# Failures of the background paths never do.
# =============================================================================

import logging

from fastapi import APIRouter, Depends, Query, Response

from docsense.api.deps import configuration_guard, get_owner_id, get_pipeline, get_repository
from docsense.db.models import DocumentStatus
from docsense.db.repository import DocumentRepository
from docsense.errors import DocumentNotFound
from docsense.models.requests import AnalyzeDocumentRequest
from docsense.models.responses import (
    AnalyzeDocumentResponse,
    DocumentDetail,
    DocumentListResponse,
    DocumentSummary,
    PerformanceInfo,
)
from docsense.services.pipeline import DocumentPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


# ---------------------------------------------------------------------------
# POST /documents/analyze — Submit a document
# ---------------------------------------------------------------------------


@router.post(
    "/analyze",
    response_model=AnalyzeDocumentResponse,
    status_code=201,
    summary="Submit a document for analysis",
    description=(
        "Stores the document, runs a single fast analysis call and returns its "
        "result. Deep multi-capability analysis and retrieval indexing continue "
        "in the background. Chat becomes available once indexing completes."
    ),
)
async def analyze_document(
    request: AnalyzeDocumentRequest,
    owner_id: str = Depends(get_owner_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> AnalyzeDocumentResponse:
    with configuration_guard():
        result = await pipeline.submit(
            owner_id=owner_id,
            file_name=request.file_name,
            mime_type=request.mime_type,
            raw_text=request.raw_text,
            doc_type=request.doc_type,
        )
    return AnalyzeDocumentResponse(
        document_id=result.document_id,
        status=DocumentStatus.COMPLETED,
        analysis=result.fast_analysis,
        performance=PerformanceInfo(
            fast_analysis_ms=result.analysis_time_ms,
            total_ms=result.total_time_ms,
        ),
    )


# ---------------------------------------------------------------------------
# GET /documents — List the caller's documents
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=DocumentListResponse,
    summary="List documents",
    description="Newest first. Raw text is not included; fetch a single document for it.",
)
async def list_documents(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    owner_id: str = Depends(get_owner_id),
    repository: DocumentRepository = Depends(get_repository),
) -> DocumentListResponse:
    documents, total = await repository.list_for_owner(owner_id, offset=offset, limit=limit)
    return DocumentListResponse(
        documents=[DocumentSummary.model_validate(doc) for doc in documents],
        total=total,
        offset=offset,
        limit=limit,
    )


# ---------------------------------------------------------------------------
# GET /documents/{document_id}
# ---------------------------------------------------------------------------


@router.get(
    "/{document_id}",
    response_model=DocumentDetail,
    summary="Get a document",
    description=(
        "Returns the full record. `deep_analysis` and `index_state` are null "
        "until their background path has finished."
    ),
)
async def get_document(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    repository: DocumentRepository = Depends(get_repository),
) -> DocumentDetail:
    document = await repository.get(document_id, owner_id)
    if document is None:
        raise DocumentNotFound(document_id)
    return DocumentDetail.model_validate(document)


# ---------------------------------------------------------------------------
# DELETE /documents/{document_id}
# ---------------------------------------------------------------------------


@router.delete(
    "/{document_id}",
    status_code=204,
    summary="Delete a document",
    description="Deletes the record with its chunks and conversation, and drops its vector collection.",
)
async def delete_document(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    pipeline: DocumentPipeline = Depends(get_pipeline),
) -> Response:
    with configuration_guard():
        deleted = await pipeline.delete(document_id, owner_id)
    if not deleted:
        raise DocumentNotFound(document_id)
    logger.info("Deleted document %s for owner %s", document_id, owner_id)
    return Response(status_code=204)
