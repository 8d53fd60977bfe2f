# =============================================================================
# docsense — Document Analysis & Grounded Q&A Service
# =============================================================================
# Ingests a document, returns a fast single-shot analysis, and in the
# background runs a multi-tool deep analysis plus a semantic index. Indexed
# documents support streaming, citation-grounded question answering.
#
# Package structure:
#   docsense/
#   ├── api/          → FastAPI route handlers (documents, chat, analysis,
#   │                    gateway relay)
#   ├── agents/       → LLM-facing logic (fast analyst, LangGraph tool
#   │                    orchestrator, streaming responder)
#   ├── db/           → Async engine, session, ORM models, repository
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Gateway, RAG (chunk, embed, vector index), pipeline,
#   │                    LLM providers
#   └── workers/      → Capability worker processes (stdio JSON-RPC)
# =============================================================================
