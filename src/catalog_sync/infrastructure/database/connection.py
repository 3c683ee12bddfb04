"""Database connection management."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import Request
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from catalog_sync.config import Settings, get_settings


def get_async_engine(settings: Settings | None = None, pooled: bool = True) -> AsyncEngine:
    """Create async database engine.

    Celery tasks run each job in a fresh event loop, so they pass
    ``pooled=False`` to avoid reusing connections across loops.
    """
    settings = settings or get_settings()
    if not settings.database_url.startswith("postgresql"):
        return create_async_engine(settings.database_url, echo=settings.debug)
    if not pooled:
        return create_async_engine(
            settings.database_url, echo=settings.debug, poolclass=NullPool
        )
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory bound to an engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Transactional session: commit on success, roll back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def dialect_insert(session: AsyncSession, table: Any) -> Any:
    """Return an INSERT construct supporting ``ON CONFLICT`` for the bound dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the session factory built at startup."""
    return request.app.state.session_factory


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI to get database session."""
    async with session_scope(request.app.state.session_factory) as session:
        yield session
