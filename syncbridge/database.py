"""
Async SQLAlchemy engine and sessions.

PostgreSQL via asyncpg in production; the engine is built lazily on first use
so importing models never needs a live DATABASE_URL connection.
Sessions use expire_on_commit=False: rows stay readable after commit without
an implicit (and in async, illegal) lazy refresh.
"""
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from syncbridge.config import get_settings
        settings = get_settings()
        options = {}
        # SQLite (tests, local runs) has no connection pool to size
        if not settings.database_url.startswith("sqlite"):
            options.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_pre_ping=True,
            )
        _engine = create_async_engine(settings.database_url, **options)
    return _engine


def _sessions() -> async_sessionmaker:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _sessionmaker


def async_session_factory() -> AsyncSession:
    """New session for workers and scripts (outside a request)."""
    return _sessions()()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: commit when the handler returns, roll back if it raises."""
    async with _sessions()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Rolling back request session: %s", str(e))
            await session.rollback()
            raise
