from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import SessionTransactionOrigin

from .config import get_settings

logger = logging.getLogger(__name__)

_ENGINE: AsyncEngine | None = None
_SESSION_MAKER: async_sessionmaker[AsyncSession] | None = None


def _ensure_engine_initialized() -> None:
    """
    Lazily initialize the AsyncEngine and session maker.
    """
    global _ENGINE, _SESSION_MAKER
    if _ENGINE is None:
        settings = get_settings()
        _ENGINE = create_async_engine(
            settings.async_database_url,
            echo=settings.SQL_ECHO,
            pool_pre_ping=True,
        )
    if _SESSION_MAKER is None:
        _SESSION_MAKER = create_session_factory(_ENGINE)


# PUBLIC_INTERFACE
def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Build a session factory configured the way repositories expect: objects stay
    readable after commit and nothing is flushed implicitly.
    """
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


# PUBLIC_INTERFACE
def get_engine() -> AsyncEngine:
    """Return the global AsyncEngine instance."""
    _ensure_engine_initialized()
    assert _ENGINE is not None
    return _ENGINE


# PUBLIC_INTERFACE
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield an AsyncSession suitable for FastAPI dependency injection.
    Ensures engine/session factory is initialized.
    """
    _ensure_engine_initialized()
    assert _SESSION_MAKER is not None
    async with _SESSION_MAKER() as session:
        yield session


# PUBLIC_INTERFACE
async def dispose_engine() -> None:
    """Dispose the global engine (application shutdown, test teardown)."""
    global _ENGINE, _SESSION_MAKER
    if _ENGINE is not None:
        await _ENGINE.dispose()
    _ENGINE = None
    _SESSION_MAKER = None


# PUBLIC_INTERFACE
@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run the enclosed block as one unit of work on the session.

    - No transaction in progress: BEGIN, then COMMIT on success or ROLLBACK on error.
    - Transaction started implicitly by earlier statements (autobegin): that
      transaction is committed first and the block runs in a fresh one.
    - Transaction opened explicitly by the caller (session.begin()/begin_nested()):
      the block participates and leaves commit/rollback to the caller; errors
      propagate so the caller's transaction is aborted.
    """
    if in_caller_transaction(session):
        yield session
        return

    if session.in_transaction():
        logger.debug("Committing implicit transaction before starting a unit of work")
        await session.commit()
    async with session.begin():
        yield session


# PUBLIC_INTERFACE
def in_caller_transaction(session: AsyncSession) -> bool:
    """True when the session is inside a transaction opened explicitly by the caller."""
    current = session.sync_session.get_transaction()
    return current is not None and current.origin is not SessionTransactionOrigin.AUTOBEGIN
