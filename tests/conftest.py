"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from catalog_sync.config import Settings
from catalog_sync.infrastructure.database.connection import create_session_factory
from catalog_sync.infrastructure.database.models import Base
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_orchestrator import RunTicket, SyncOrchestrator
from tests.fakes import STORE_ID, FakeShopify


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=False,
        database_url_override="sqlite+aiosqlite://",
        shopify_store_domain=STORE_ID,
        shopify_access_token="shpat_test",
        sync_batch_size=250,
        sync_detail_batch_size=10,
        sync_fetch_concurrency=3,
        sync_stale_after_minutes=60,
    )


@pytest.fixture
def credentials() -> SourceCredentials:
    return SourceCredentials(shop_domain=STORE_ID, access_token="shpat_test")


@pytest.fixture
def shopify() -> FakeShopify:
    return FakeShopify()


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def concurrent_engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine handing each session its own connection.

    Transactions start with BEGIN IMMEDIATE so interleaved writers queue on
    the database lock the way competing Postgres transactions queue on rows.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _autocommit_driver(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def concurrent_session_factory(concurrent_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(concurrent_engine)


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    test_settings: Settings,
    shopify: FakeShopify,
) -> SyncOrchestrator:
    return SyncOrchestrator(session_factory, test_settings, client_factory=shopify.client_factory)


@pytest.fixture
def launched() -> list[RunTicket]:
    """Tickets handed to the test launcher."""
    return []


@pytest.fixture
def app(
    test_settings: Settings,
    engine: AsyncEngine,
    shopify: FakeShopify,
    launched: list[RunTicket],
) -> Any:
    """Create test application whose launcher executes runs inline."""
    from catalog_sync.main import create_app

    async def launch_run(ticket: RunTicket, credentials: SourceCredentials) -> str | None:
        launched.append(ticket)
        runner = SyncOrchestrator(
            create_session_factory(engine), test_settings, client_factory=shopify.client_factory
        )
        await runner.execute_run(ticket, credentials)
        return f"task-{ticket.run_id}"

    return create_app(test_settings, engine=engine, cache=CacheService(None), launch_run=launch_run)


@pytest_asyncio.fixture
async def async_client(app: Any) -> AsyncGenerator[AsyncClient, None]:
    """Create asynchronous test client with the app lifespan running."""
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
