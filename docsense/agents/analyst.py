# =============================================================================
# Fast Analyst — Single-Shot, Type-Specific Document Analysis
# =============================================================================
#
# The fast path of the document pipeline: ONE direct JSON-mode completion
# over the (truncated) raw text, no gateway, no retrieval. This call
# defines the user-perceived latency of a submission, so it does nothing
# else. The pipeline wraps it in the hard timeout.
#
# DESIGN DECISION: Type-specific system prompts.
# Each declared document type asks for its own JSON shape (risk score and
# clauses for Legal, urgency and vitals for Medical, priority and action
# items otherwise). Business documents use the General shape.
#
# Malformed model output is NOT an error here: parse_json_object() turns
# it into {}, so a broken answer still completes the document with an
# empty analysis instead of failing the submission.
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from docsense.config import settings
from docsense.db.models import DocumentType
from docsense.errors import ProviderUnavailable
from docsense.services.llm import LLMProvider, get_llm_provider, parse_json_object

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class FastAnalysisResult:
    """Result of the fast path."""

    analysis: dict
    analysis_time_ms: int
    model: str
    input_tokens: int
    output_tokens: int

    def to_record(self) -> dict:
        """Shape persisted as Document.fast_analysis."""
        return {**self.analysis, "analysis_time_ms": self.analysis_time_ms}


# ---------------------------------------------------------------------------
# Type-Specific System Prompts
# ---------------------------------------------------------------------------

SYSTEM_PROMPTS: dict[DocumentType, str] = {
    DocumentType.LEGAL: (
        "You are a legal document analyzer. Analyze the provided document and "
        "return a SINGLE JSON object with this exact structure:\n"
        "{\n"
        '  "riskScore": number (0-100),\n'
        '  "contractInfo": {"title": string, "parties": [string], '
        '"effectiveDate": string, "termDate": string, "value": string},\n'
        '  "riskyClauses": [{"clause": string, "section": string, '
        '"risk": "high" | "moderate" | "low", "description": string}],\n'
        '  "keyTerms": [{"term": string, "value": string, '
        '"status": "standard" | "favorable" | "neutral" | "unfavorable"}],\n'
        '  "recommendations": [string],\n'
        '  "summary": {"executiveSummary": string, "criticalRisks": [string], '
        '"recommendedActions": [string]}\n'
        "}"
    ),
    DocumentType.MEDICAL: (
        "You are a medical document analyzer. Analyze the provided document and "
        "return a SINGLE JSON object with this exact structure:\n"
        "{\n"
        '  "urgencyScore": number (0-100),\n'
        '  "patientInfo": {"name": string, "age": number, "gender": string, '
        '"mrn": string},\n'
        '  "vitalSigns": [{"sign": string, "value": string, '
        '"status": "normal" | "elevated" | "low"}],\n'
        '  "abnormalFindings": [{"finding": string, '
        '"severity": "high" | "moderate" | "low", "details": string}],\n'
        '  "medications": [{"name": string, "dosage": string, "notes": string}],\n'
        '  "recommendations": [string],\n'
        '  "summary": {"executiveSummary": string, "keyConcerns": [string], '
        '"followUpActions": [string]}\n'
        "}"
    ),
    DocumentType.GENERAL: (
        "You are a general document analyzer. Analyze the provided document and "
        "return a SINGLE JSON object with this exact structure:\n"
        "{\n"
        '  "priorityLevel": number (0-100),\n'
        '  "documentInfo": {"title": string, "type": string, "created": string},\n'
        '  "keyPoints": [{"point": string, "category": string, '
        '"priority": "high" | "moderate" | "low", "confidence": number}],\n'
        '  "actionItems": [string],\n'
        '  "timeline": [{"event": string, "date": "YYYY-MM-DD", '
        '"status": "completed" | "upcoming" | "planned"}],\n'
        '  "summary": {"executiveSummary": string, "mainInsights": [string], '
        '"nextSteps": [string]}\n'
        "}"
    ),
}


def system_prompt_for(doc_type: DocumentType | str) -> str:
    try:
        return SYSTEM_PROMPTS[DocumentType(doc_type)]
    except (KeyError, ValueError):
        return SYSTEM_PROMPTS[DocumentType.GENERAL]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def analyse_document_fast(
    text: str,
    doc_type: DocumentType | str,
    llm: LLMProvider | None = None,
) -> FastAnalysisResult:
    """
    Run the single-shot analysis for one document.

    Args:
        text: The document's raw text (truncated to fast_analysis_max_chars).
        doc_type: Declared document type; selects the output shape.
        llm: Optional provider override, defaults to the singleton.

    Raises:
        ProviderUnavailable: If the completion call fails.
    """
    provider = llm or get_llm_provider()
    started = time.perf_counter()

    try:
        response = await provider.complete(
            messages=[{
                "role": "user",
                "content": f"Analyze this document:\n\n{text[: settings.fast_analysis_max_chars]}",
            }],
            system=system_prompt_for(doc_type),
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            json_mode=True,
        )
    except Exception as exc:
        raise ProviderUnavailable(
            message=f"Fast analysis failed: {exc}",
            provider_name="llm",
        ) from exc

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    analysis = parse_json_object(response.content, source="fast-analysis")

    logger.info(
        "Fast analysis complete: type=%s, model=%s, %dms, tokens=%d+%d",
        getattr(doc_type, "value", doc_type), response.model, elapsed_ms,
        response.input_tokens, response.output_tokens,
    )

    return FastAnalysisResult(
        analysis=analysis,
        analysis_time_ms=elapsed_ms,
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )
