# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Async SQLAlchemy engine over asyncpg. Every suspension point in this
# service is an I/O boundary, so the whole stack stays on one event loop.
#
# SESSION LIFECYCLE:
# Two session patterns exist in this codebase:
#
# 1. Dependency-injected (get_async_session via Depends):
#    Auto-commits when the request handler returns, rolls back on error.
#
# 2. Self-managed (async_session_factory() directly):
#    Used by the repository and the pgvector index. Each pipeline producer
#    (fast path, deep path, index path) opens its own short session, issues
#    one partial UPDATE and commits. No session is ever shared between
#    producers, and none is held across an LLM or gateway call.
# =============================================================================

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from docsense.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo=settings.debug: log SQL statements while developing.
# - pool_size / max_overflow: background producers each borrow a connection
#   only for the duration of one UPDATE.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# ---------------------------------------------------------------------------
# Session Factory
# ---------------------------------------------------------------------------
# expire_on_commit=False: loaded objects stay readable after commit, outside
# of the session that loaded them.
# ---------------------------------------------------------------------------
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Usage in route handlers:
        @router.get("/items")
        async def list_items(session: AsyncSession = Depends(get_async_session)):
            result = await session.execute(select(Item))
            return result.scalars().all()

    The session is committed when the request completes and rolled back if
    the handler raises.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
