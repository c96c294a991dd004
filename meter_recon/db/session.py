"""
Async database engine and session factory.

SQLAlchemy 2.x async engine over asyncpg. The engine and session factory
are created lazily on first use and shared for the life of the process;
``get_async_session`` is the FastAPI dependency handing out one session
per request.

CHANGELOG:
- 2026-10-18: Add dispose_engine for application shutdown
- 2026-10-18: Initial creation

TODO:
- None
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from meter_recon.config import get_settings

async_engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None


def create_engine() -> AsyncEngine:
    """Create the async engine for the configured DATABASE_URL.

    ``pool_pre_ping`` is enabled because reconciliation runs can sit idle
    between long reading pages.
    """
    settings = get_settings()
    return create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)


def init_engine() -> None:
    """Initialise the module-level engine and session factory once."""
    global async_engine, async_session_factory  # noqa: PLW0603
    if async_engine is None:
        async_engine = create_engine()
        async_session_factory = async_sessionmaker(
            async_engine, class_=AsyncSession, expire_on_commit=False,
        )


async def dispose_engine() -> None:
    """Dispose of the engine's pool and reset the singletons."""
    global async_engine, async_session_factory  # noqa: PLW0603
    if async_engine is not None:
        await async_engine.dispose()
    async_engine = None
    async_session_factory = None


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for FastAPI dependency injection.

    Yields:
        AsyncSession: A session closed when the request completes.
    """
    init_engine()
    assert async_session_factory is not None, "Session factory not initialized"
    async with async_session_factory() as session:
        yield session
