# =============================================================================
# Tool Orchestrator — LangGraph Fan-Out over Gateway Capabilities
# =============================================================================
#
# Deep analysis of one document: a fixed, type-dependent set of capability
# calls issued concurrently through the Tool Gateway, settled ALL together.
#
# GRAPH TOPOLOGY (Legal document):
#
#            ┌──▶ document_analysis ──┐
#            ├──▶ entities ───────────┤
#   START ───┼──▶ timeline ───────────┼──▶ END
#            └──▶ compliance ─────────┘
#
# The conditional edge out of START returns the list of selected nodes, so
# LangGraph schedules all of them in ONE superstep: every call is
# dispatched before any is awaited. Each node writes a single key into
# `results`, merged by the _merge_results reducer.
#
# SETTLE-ALL, NEVER FAIL-FAST:
# A node never raises. A failed call becomes a CapabilityOutcome with
# ok=False, and the raw text of a successful call is parsed leniently
# (malformed JSON → {}). The aggregate always holds exactly one key per
# attempted capability.
#
# The only hard error is GatewayUnavailable: the pre-flight check fails,
# or every single call failed because the gateway could not be reached.
#
# DESIGN DECISION: Gateway client in state (like an injected provider).
# Tests pass a fake client; production passes the configured one. Not
# JSON-serialisable, which is fine as long as no checkpointer is set.
# =============================================================================

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Annotated

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from docsense.db.models import DocumentType
from docsense.errors import GatewayUnavailable
from docsense.services.gateway_client import GatewayClient, get_gateway_client
from docsense.services.llm import parse_json_object

logger = logging.getLogger(__name__)

COMPLIANCE_STANDARDS = ["GDPR", "HIPAA"]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class CapabilityOutcome:
    """Tagged result of one capability call: payload on success, error otherwise."""

    ok: bool
    payload: dict = field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None

    def to_record(self) -> dict:
        if self.ok:
            return {"status": "ok", "data": self.payload}
        return {"status": "error", "error": self.error, "error_type": self.error_type}


@dataclass
class DeepAnalysisResult:
    """Aggregate of one deep analysis run."""

    results: dict[str, CapabilityOutcome]
    elapsed_ms: int

    @property
    def failed(self) -> list[str]:
        return sorted(key for key, outcome in self.results.items() if not outcome.ok)

    def to_record(self) -> dict:
        """Shape persisted as Document.deep_analysis."""
        return {
            "results": {key: outcome.to_record() for key, outcome in self.results.items()},
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass(frozen=True)
class CapabilityCall:
    """How one result key maps onto a gateway capability and tool."""

    capability: str
    tool: str
    build_arguments: Callable[[str, str], dict]


CAPABILITY_CALLS: dict[str, CapabilityCall] = {
    "document_analysis": CapabilityCall(
        capability="document-analyzer",
        tool="analyze_document",
        build_arguments=lambda text, doc_type: {"text": text, "type": doc_type},
    ),
    "entities": CapabilityCall(
        capability="entity-extractor",
        tool="extract_all_entities",
        build_arguments=lambda text, doc_type: {"text": text},
    ),
    "timeline": CapabilityCall(
        capability="timeline-builder",
        tool="construct_timeline",
        build_arguments=lambda text, doc_type: {"text": text},
    ),
    "compliance": CapabilityCall(
        capability="legal-analyzer",
        tool="check_compliance",
        build_arguments=lambda text, doc_type: {
            "text": text, "standards": COMPLIANCE_STANDARDS,
        },
    ),
}


def select_capabilities(doc_type: DocumentType | str) -> list[str]:
    """Result keys to attempt for a document type. Fixed per type."""
    keys = ["document_analysis", "entities", "timeline"]
    if DocumentType(doc_type) == DocumentType.LEGAL:
        keys.append("compliance")
    return keys


# ---------------------------------------------------------------------------
# Graph State
# ---------------------------------------------------------------------------


def _merge_results(
    left: dict[str, CapabilityOutcome] | None,
    right: dict[str, CapabilityOutcome] | None,
) -> dict[str, CapabilityOutcome]:
    return {**(left or {}), **(right or {})}


class DeepAnalysisState(TypedDict, total=False):
    # --- Input (set by caller) ---
    text: str
    doc_type: str
    gateway: GatewayClient

    # --- Output (one key per node, merged) ---
    results: Annotated[dict[str, CapabilityOutcome], _merge_results]


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def _settle(key: str, call: CapabilityCall, state: DeepAnalysisState) -> CapabilityOutcome:
    """Run one capability call and convert every failure into data."""
    try:
        raw = await state["gateway"].call_tool(
            call.capability,
            call.tool,
            call.build_arguments(state["text"], state["doc_type"]),
        )
    except Exception as exc:
        logger.warning("Capability %s (%s) failed: %s", key, call.capability, exc)
        return CapabilityOutcome(
            ok=False, error=str(exc), error_type=type(exc).__name__,
        )
    return CapabilityOutcome(ok=True, payload=parse_json_object(raw, source=key))


def _make_node(key: str):
    call = CAPABILITY_CALLS[key]

    async def node(state: DeepAnalysisState) -> dict:
        outcome = await _settle(key, call, state)
        return {"results": {key: outcome}}

    node.__name__ = f"{key}_node"
    return node


def _route(state: DeepAnalysisState) -> list[str]:
    return select_capabilities(state["doc_type"])


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------
# Compiled once at module level and shared by all background tasks.
# ---------------------------------------------------------------------------

_builder = StateGraph(DeepAnalysisState)
for _key in CAPABILITY_CALLS:
    _builder.add_node(_key, _make_node(_key))
    _builder.add_edge(_key, END)
_builder.add_conditional_edges(START, _route, list(CAPABILITY_CALLS))

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_deep_analysis(
    document_text: str,
    document_type: DocumentType | str,
    gateway: GatewayClient | None = None,
) -> DeepAnalysisResult:
    """
    Fan a document out to its capability set and settle every call.

    Returns:
        DeepAnalysisResult with one outcome per attempted capability.

    Raises:
        GatewayUnavailable: If the gateway cannot be reached at all.
    """
    client = gateway or get_gateway_client()
    doc_type = DocumentType(document_type).value
    await client.check()

    started = time.perf_counter()
    final = await graph.ainvoke({
        "text": document_text,
        "doc_type": doc_type,
        "gateway": client,
        "results": {},
    })
    elapsed_ms = int((time.perf_counter() - started) * 1000)

    results: dict[str, CapabilityOutcome] = final.get("results", {})
    if results and all(
        outcome.error_type == GatewayUnavailable.__name__ for outcome in results.values()
    ):
        raise GatewayUnavailable("Every capability call failed to reach the gateway")

    result = DeepAnalysisResult(results=results, elapsed_ms=elapsed_ms)
    logger.info(
        "Deep analysis complete: type=%s, %d capabilities, failed=%s, %dms",
        doc_type, len(results), result.failed or "none", elapsed_ms,
    )
    return result


# ---------------------------------------------------------------------------
# Direct Capability Helpers
# ---------------------------------------------------------------------------
# Single calls for the /analysis endpoints. Unlike the fan-out above these
# raise (WorkerFailure, CapabilityNotFound, GatewayUnavailable) so the API
# can report the failure; malformed JSON still degrades to {}.
# ---------------------------------------------------------------------------


async def _call_direct(
    capability: str,
    tool: str,
    arguments: dict,
    gateway: GatewayClient | None,
) -> dict:
    client = gateway or get_gateway_client()
    raw = await client.call_tool(capability, tool, arguments)
    return parse_json_object(raw, source=f"{capability}/{tool}")


async def check_compliance(
    text: str,
    standards: list[str] | None = None,
    gateway: GatewayClient | None = None,
) -> dict:
    return await _call_direct(
        "legal-analyzer", "check_compliance",
        {"text": text, "standards": standards or COMPLIANCE_STANDARDS},
        gateway,
    )


async def extract_entities(text: str, gateway: GatewayClient | None = None) -> dict:
    return await _call_direct("entity-extractor", "extract_all_entities", {"text": text}, gateway)


async def build_timeline(text: str, gateway: GatewayClient | None = None) -> dict:
    return await _call_direct("timeline-builder", "construct_timeline", {"text": text}, gateway)


async def verify_claim(text: str, claim: str, gateway: GatewayClient | None = None) -> dict:
    return await _call_direct(
        "fact-verifier", "verify_claim", {"text": text, "claim": claim}, gateway,
    )
