"""Async SQLAlchemy database setup."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import InterfaceError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import Settings, settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


def get_engine(config: Settings | None = None) -> AsyncEngine:
    """Get the shared async engine; the first caller's ``config`` decides the URL."""
    global _engine
    if _engine is None:
        config = config or settings
        _engine = create_async_engine(
            config.database_url,
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow,
            echo=config.database_echo,
            pool_pre_ping=True,
            pool_recycle=300,  # Recycle connections every 5 min to avoid server-side timeouts
        )
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get the shared session factory."""
    global _session_maker
    if _session_maker is None:
        _session_maker = build_session_maker(get_engine())
    return _session_maker


@asynccontextmanager
async def session_scope(
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    *,
    commit_on_exit: bool = True,
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on any error."""
    maker = session_maker or get_session_maker()
    async with maker() as session:
        try:
            yield session
            if commit_on_exit:
                await session.commit()
        except InterfaceError as e:
            if not session.in_transaction():
                logger.debug("Session connection already closed during cleanup, ignoring")
                raise
            logger.warning(
                "Database interface error with active transaction, rolling back",
                extra={"error": repr(e)},
            )
            try:
                await session.rollback()
            except Exception:
                logger.warning("Rollback also failed (connection likely closed)")
            raise
        except BaseException as e:
            # BaseException so task cancellation also rolls back
            logger.warning("Database session error, rolling back", extra={"error": repr(e)})
            try:
                await session.rollback()
            except Exception:
                logger.warning("Rollback also failed (connection likely closed)")
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Initialize database (create tables if needed)."""
    logger.info("Initializing database tables")
    from app.models import Base

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _session_maker
    if _engine is None:
        return
    logger.info("Closing database connections")
    await _engine.dispose()
    _engine = None
    _session_maker = None
