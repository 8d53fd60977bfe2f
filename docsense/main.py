# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run with:
#   uvicorn docsense.main:app --reload
#
# create_app() wires:
#   - logging (stdlib, level from LOG_LEVEL)
#   - routers: documents, chat, analysis, gateway
#   - GET /health
#   - exception handlers translating the docsense error hierarchy to HTTP
#   - a lifespan that lets background pipeline tasks settle on shutdown
#
# ERROR → STATUS MAPPING:
#   DocumentNotFound, CapabilityNotFound        → 404
#   NotReady                                    → 409 (+ Retry-After)
#   ProviderUnavailable, GatewayUnavailable,
#   WorkerFailure, MalformedModelOutput         → 502
# Configuration errors (503) are reported by api/deps.configuration_guard
# where providers are built, not by a global handler.
# =============================================================================

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from docsense.api import analysis, chat, documents, gateway
from docsense.api.deps import get_gateway
from docsense.config import settings
from docsense.errors import (
    CapabilityNotFound,
    DocsenseError,
    DocumentNotFound,
    NotReady,
)
from docsense.models.responses import HealthResponse
from docsense.services.gateway import ToolGateway
from docsense.services.pipeline import drain_background

logger = logging.getLogger(__name__)

_NOT_READY_RETRY_SECONDS = 5


def configure_logging(level: str | None = None) -> None:
    """Route docsense logs to stderr with a timestamped, named format."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):
    logger.info("%s %s starting", settings.app_name, settings.app_version)
    yield
    await drain_background()
    logger.info("%s shut down", settings.app_name)


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


async def _docsense_error_handler(request: Request, exc: DocsenseError) -> JSONResponse:
    headers = None
    if isinstance(exc, (DocumentNotFound, CapabilityNotFound)):
        status_code = 404
    elif isinstance(exc, NotReady):
        status_code = 409
        headers = {"Retry-After": str(_NOT_READY_RETRY_SECONDS)}
    else:
        status_code = 502
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error_type": type(exc).__name__,
            "provider": exc.provider_name,
        },
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Application Factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="docsense",
        version=settings.app_version,
        description=(
            "Document intelligence service: fast type-specific analysis on "
            "submission, background multi-capability deep analysis through "
            "isolated tool workers, and citation-grounded streaming chat."
        ),
        lifespan=_lifespan,
    )

    application.add_exception_handler(DocsenseError, _docsense_error_handler)

    application.include_router(documents.router)
    application.include_router(chat.router)
    application.include_router(analysis.router)
    application.include_router(gateway.router)

    @application.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(tool_gateway: ToolGateway = Depends(get_gateway)) -> HealthResponse:
        """Liveness plus the capabilities this process can spawn."""
        return HealthResponse(
            version=settings.app_version,
            service=settings.app_name,
            capabilities=tool_gateway.capabilities(),
        )

    return application


configure_logging()
app = create_app()
