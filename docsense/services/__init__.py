# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - gateway.py: Tool Gateway, one isolated worker process per call,
#     verbatim stdio relay
#   - gateway_client.py: JSON-RPC tool calls over a gateway session
#     (in-process or HTTP)
#   - pipeline.py: document pipeline, fast path plus detached deep and
#     index paths writing disjoint fields
#   - rag.py: per-document indexing, retrieval, context and citations
#   - chunker.py: overlapping character windows
#   - embedder.py: OpenAI-compatible embedding generation (batch)
#   - vectorstore.py: pluggable vector index protocol (pgvector, Chroma)
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
# =============================================================================
