# =============================================================================
# Agents Package — LLM-Facing Logic
# =============================================================================
#   - analyst.py: fast path, one type-specific JSON-mode completion per
#     document, bounded by the pipeline's hard timeout
#   - orchestrator.py: LangGraph fan-out of a document to its capability
#     set through the Tool Gateway, settle-all aggregation
#   - responder.py: retrieval-grounded, token-streamed answers with
#     citation extraction and conversation persistence
# =============================================================================
