# =============================================================================
# Workers Package — Capability Worker Processes
# =============================================================================
# Each module is one isolated capability, started by the Tool Gateway as
# `python -m docsense.workers.<module>` and spoken to over stdin/stdout:
#   - protocol.py: newline-delimited JSON-RPC 2.0 loop shared by all workers
#   - document_analyzer.py: analyze_document, extract_clauses, risk_assessment
#   - entity_extractor.py: extract_all_entities, build_relationships
#   - timeline_builder.py: construct_timeline, identify_deadlines
#   - legal_analyzer.py: check_compliance
#   - fact_verifier.py: verify_claim
#
# A worker handles requests until its stdin closes, then exits 0.
# Diagnostics go to stderr, which the Gateway logs and never relays.
# =============================================================================
