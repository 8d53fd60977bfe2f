# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - documents.py: submission (fast path), listing, retrieval, deletion
#   - chat.py: grounded Q&A, streamed as Server-Sent Events or not
#   - analysis.py: direct capability calls on a stored document
#   - gateway.py: raw byte relay to an isolated capability worker
#   - deps.py: overridable dependencies (owner identity, services)
# =============================================================================
