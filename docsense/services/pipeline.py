# =============================================================================
# Document Pipeline — Fast Path + Two Detached Background Paths
# =============================================================================
#
# submit() drives one document through three independent producers:
#
#   1. persist Document (status=processing)
#   2. FAST PATH (awaited, hard timeout)
#        analyse_document_fast() → record_fast_analysis() (status=completed)
#        timeout / provider error → mark_failed(), raise ProviderUnavailable
#   ── return to caller here ──
#   3. DEEP PATH  (detached task) run_deep_analysis() → record_deep_analysis()
#   4. INDEX PATH (detached task) rag.index_document() → record_index_state()
#
# ORDERING: tasks 3 and 4 are created only after step 2's UPDATE has
# committed, and are unordered relative to each other. Their failures are
# logged and leave their field unset; they never touch `status`.
#
# DESIGN DECISION: asyncio tasks instead of a task queue. Every background
# step is I/O-bound (gateway subprocesses, embeddings, vector index) and
# shares the API process's event loop. Task references are held in
# _background until done, and drain() awaits them (shutdown, tests).
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from docsense.agents.analyst import analyse_document_fast
from docsense.agents.orchestrator import run_deep_analysis
from docsense.config import settings
from docsense.db.models import DocumentType
from docsense.db.repository import DocumentRepository, get_document_repository
from docsense.errors import GatewayUnavailable, ProviderUnavailable
from docsense.services.gateway_client import GatewayClient
from docsense.services.llm import LLMProvider
from docsense.services.rag import RagService, collection_name, get_rag_service

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    """What the submitter gets back once the fast path has committed."""

    document_id: str
    fast_analysis: dict
    analysis_time_ms: int
    total_time_ms: int


class DocumentPipeline:
    """Coordinates the three producers of one Document record."""

    def __init__(
        self,
        repository: DocumentRepository | None = None,
        rag: RagService | None = None,
        gateway: GatewayClient | None = None,
        llm: LLMProvider | None = None,
        fast_timeout_seconds: float | None = None,
    ) -> None:
        self._repository = repository or get_document_repository()
        self._rag = rag
        self._gateway = gateway
        self._llm = llm
        self._fast_timeout = fast_timeout_seconds or settings.fast_analysis_timeout_seconds
        self._background: set[asyncio.Task] = set()

    @property
    def rag(self) -> RagService:
        if self._rag is None:
            self._rag = get_rag_service()
        return self._rag

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit(
        self,
        owner_id: str,
        file_name: str,
        mime_type: str,
        raw_text: str,
        doc_type: DocumentType,
    ) -> SubmissionResult:
        """
        Persist a document, run the fast path, detach the background paths.

        Raises:
            ProviderUnavailable: If the fast analysis fails or times out.
                The document is left in `failed` status.
            ValueError: If no LLM provider is configured. The document is
                left in `failed` status.
        """
        started = time.perf_counter()
        document = await self._repository.create(
            owner_id=owner_id,
            file_name=file_name,
            mime_type=mime_type,
            raw_text=raw_text,
            doc_type=doc_type,
        )
        document_id = document.id

        # --- Fast path ---
        try:
            fast = await asyncio.wait_for(
                analyse_document_fast(raw_text, doc_type, llm=self._llm),
                timeout=self._fast_timeout,
            )
        except asyncio.TimeoutError:
            message = f"Fast analysis timed out after {self._fast_timeout:g}s"
            logger.error("Document %s: %s", document_id, message)
            await self._repository.mark_failed(document_id, message)
            raise ProviderUnavailable(message=message, provider_name="llm") from None
        except ProviderUnavailable as exc:
            logger.error("Document %s: fast analysis failed: %s", document_id, exc)
            await self._repository.mark_failed(document_id, exc.message)
            raise
        except ValueError as exc:
            logger.error("Document %s: LLM provider not configured: %s", document_id, exc)
            await self._repository.mark_failed(document_id, str(exc))
            raise

        record = fast.to_record()
        await self._repository.record_fast_analysis(document_id, record)

        # --- Background paths (only after the fast write is committed) ---
        self._spawn(self._deep_path(document_id, raw_text, doc_type), f"deep-{document_id}")
        self._spawn(self._index_path(document_id, raw_text), f"index-{document_id}")

        total_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Document %s submitted: fast analysis %dms, total %dms",
            document_id, fast.analysis_time_ms, total_ms,
        )
        return SubmissionResult(
            document_id=document_id,
            fast_analysis=record,
            analysis_time_ms=fast.analysis_time_ms,
            total_time_ms=total_ms,
        )

    # -------------------------------------------------------------------------
    # Background Paths
    # -------------------------------------------------------------------------

    async def _deep_path(self, document_id: str, text: str, doc_type: DocumentType) -> None:
        try:
            result = await run_deep_analysis(text, doc_type, gateway=self._gateway)
            await self._repository.record_deep_analysis(document_id, result.to_record())
        except GatewayUnavailable as exc:
            logger.error("Document %s: deep analysis skipped: %s", document_id, exc)
        except Exception:
            logger.exception("Document %s: deep analysis failed", document_id)

    async def _index_path(self, document_id: str, text: str) -> None:
        try:
            chunk_count = await self.rag.index_document(document_id, text)
            await self._repository.record_index_state(document_id, {
                "indexed": True,
                "chunk_count": chunk_count,
                "collection": collection_name(document_id),
            })
        except Exception:
            logger.exception("Document %s: indexing failed", document_id)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._background)

    async def drain(self) -> None:
        """Wait until every background path started so far has settled."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Deletion
    # -------------------------------------------------------------------------

    async def delete(self, document_id: str, owner_id: str) -> bool:
        """
        Delete a document and drop its collection (best-effort).

        The collection is dropped even when index_state is unset: an index
        path still in flight may already have created it.

        Returns False if the document does not exist for this owner.
        """
        document = await self._repository.delete(document_id, owner_id)
        if document is None:
            return False
        await self.rag.delete_document_index(document_id)
        return True


_pipeline: DocumentPipeline | None = None


def get_document_pipeline() -> DocumentPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = DocumentPipeline()
    return _pipeline


async def drain_background() -> None:
    """Let in-flight background paths settle (application shutdown)."""
    if _pipeline is not None and _pipeline.pending:
        logger.info("Waiting for %d background tasks to settle", _pipeline.pending)
        await _pipeline.drain()
