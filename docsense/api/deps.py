# =============================================================================
# API Dependencies — FastAPI Dependency Injection
# =============================================================================
#
# Every collaborator a route handler needs is resolved through Depends():
#
#   get_owner_id()        — caller identity from the X-Owner-Id header
#   get_repository()      — document / conversation persistence
#   get_pipeline()        — fast path + background producers
#   get_responder()       — retrieval-grounded answers
#   get_gateway()         — Tool Gateway (raw relay endpoint)
#   get_gateway_client()  — JSON-RPC tool calls (analysis endpoints)
#
# All of them are process-wide singletons in production and are replaced
# wholesale in tests via app.dependency_overrides.
#
# CONFIGURATION ERRORS: a missing API key or a bad registry file surfaces
# as ValueError when a provider is first built. configuration_guard() turns
# that into 503 "Service configuration error"; it wraps the getters below
# and, in the routes, the service calls that build providers lazily.
#
# Authentication is handled upstream. The header only scopes data: every
# document and conversation query filters on it.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import Header, HTTPException

from docsense.agents.responder import StreamingResponder, get_streaming_responder
from docsense.db.repository import DocumentRepository, get_document_repository
from docsense.services.gateway import ToolGateway
from docsense.services.gateway import get_gateway as _get_tool_gateway
from docsense.services.gateway_client import GatewayClient
from docsense.services.gateway_client import get_gateway_client as _get_gateway_client
from docsense.services.pipeline import DocumentPipeline, get_document_pipeline

logger = logging.getLogger(__name__)


@contextmanager
def configuration_guard() -> Iterator[None]:
    """
    Report provider configuration errors as 503.

    Raises:
        HTTPException 503: A ValueError escaped while building a provider.
    """
    try:
        yield
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {exc}",
        ) from exc


async def get_owner_id(
    x_owner_id: str | None = Header(
        default=None,
        description="Identity of the caller; scopes every document query",
    ),
) -> str:
    """
    Resolve the caller identity.

    Raises:
        HTTPException 401: Header missing or blank.
    """
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(
            status_code=401,
            detail="Missing caller identity. Provide an 'X-Owner-Id' header.",
        )
    return owner_id


def get_repository() -> DocumentRepository:
    with configuration_guard():
        return get_document_repository()


def get_pipeline() -> DocumentPipeline:
    with configuration_guard():
        return get_document_pipeline()


def get_responder() -> StreamingResponder:
    with configuration_guard():
        return get_streaming_responder()


def get_gateway() -> ToolGateway:
    with configuration_guard():
        return _get_tool_gateway()


def get_gateway_client() -> GatewayClient:
    with configuration_guard():
        return _get_gateway_client()
