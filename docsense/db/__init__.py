# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engine, session management, ORM models and the
# document repository.
#
# Key exports:
#   - async_session_factory / get_async_session: sessions (engine.py)
#   - Document, Chunk, ConversationTurn: ORM models (models.py)
#   - DocumentRepository, SqlDocumentRepository: keyed partial updates
#     per pipeline producer (repository.py)
# =============================================================================
