# =============================================================================
# Analysis API — Direct Capability Calls on a Stored Document
# =============================================================================
#
# ENDPOINTS:
#   POST /analysis/compliance — legal-analyzer / check_compliance
#   POST /analysis/entities   — entity-extractor / extract_all_entities
#   POST /analysis/timeline   — timeline-builder / construct_timeline
#   POST /analysis/verify     — fact-verifier / verify_claim
#
# These run one capability synchronously on demand, independent of the
# background deep analysis. Unlike the fan-out, a failed call is reported
# to the caller: WorkerFailure / GatewayUnavailable → 502.
# =============================================================================

import logging

from fastapi import APIRouter, Depends

from docsense.agents import orchestrator
from docsense.api.deps import get_gateway_client, get_owner_id, get_repository
from docsense.db.models import Document
from docsense.db.repository import DocumentRepository
from docsense.errors import DocumentNotFound
from docsense.models.requests import ComplianceRequest, DocumentRef, VerifyClaimRequest
from docsense.models.responses import CapabilityResponse
from docsense.services.gateway_client import GatewayClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["Analysis"])


async def _load(repository: DocumentRepository, document_id: str, owner_id: str) -> Document:
    document = await repository.get(document_id, owner_id)
    if document is None:
        raise DocumentNotFound(document_id)
    return document


@router.post(
    "/compliance",
    response_model=CapabilityResponse,
    summary="Check a document against compliance standards",
)
async def analyze_compliance(
    request: ComplianceRequest,
    owner_id: str = Depends(get_owner_id),
    repository: DocumentRepository = Depends(get_repository),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> CapabilityResponse:
    document = await _load(repository, request.document_id, owner_id)
    result = await orchestrator.check_compliance(
        document.raw_text, request.standards, gateway=gateway,
    )
    return CapabilityResponse(document_id=document.id, capability="legal-analyzer", result=result)


@router.post(
    "/entities",
    response_model=CapabilityResponse,
    summary="Extract people, organisations, dates, amounts and locations",
)
async def analyze_entities(
    request: DocumentRef,
    owner_id: str = Depends(get_owner_id),
    repository: DocumentRepository = Depends(get_repository),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> CapabilityResponse:
    document = await _load(repository, request.document_id, owner_id)
    result = await orchestrator.extract_entities(document.raw_text, gateway=gateway)
    return CapabilityResponse(document_id=document.id, capability="entity-extractor", result=result)


@router.post(
    "/timeline",
    response_model=CapabilityResponse,
    summary="Build a chronological timeline of events",
)
async def analyze_timeline(
    request: DocumentRef,
    owner_id: str = Depends(get_owner_id),
    repository: DocumentRepository = Depends(get_repository),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> CapabilityResponse:
    document = await _load(repository, request.document_id, owner_id)
    result = await orchestrator.build_timeline(document.raw_text, gateway=gateway)
    return CapabilityResponse(document_id=document.id, capability="timeline-builder", result=result)


@router.post(
    "/verify",
    response_model=CapabilityResponse,
    summary="Verify a claim against the document",
)
async def analyze_claim(
    request: VerifyClaimRequest,
    owner_id: str = Depends(get_owner_id),
    repository: DocumentRepository = Depends(get_repository),
    gateway: GatewayClient = Depends(get_gateway_client),
) -> CapabilityResponse:
    document = await _load(repository, request.document_id, owner_id)
    result = await orchestrator.verify_claim(document.raw_text, request.claim, gateway=gateway)
    logger.info("Verified claim on document %s", document.id)
    return CapabilityResponse(document_id=document.id, capability="fact-verifier", result=result)
