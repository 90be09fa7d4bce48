"""API-specific test fixtures.

The app under test gets its database and Redis from the module globals,
initialized inside the TestClient's own event loop. Tests seed state from
outside that loop: the SQLite file through a short-lived engine, Redis
through a synchronous fakeredis client sharing the same FakeServer.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest
from fakeredis import FakeAsyncRedis, FakeRedis, FakeServer
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base import Base
from app.db.models import Band, Creator


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def redis_seed(fake_server):
    """Synchronous view of the Redis the app talks to."""
    return FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def test_settings(monkeypatch):
    """Settings as the app sees them: no background loop, no pacing delays."""
    from app.core.config import get_settings

    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("SYNC_SEARCH_DELAY_SECONDS", "0")
    monkeypatch.setenv("SYNC_ENTITY_DELAY_SECONDS", "0")
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-key")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


async def _insert(db_url: str, row) -> str:
    engine = create_async_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add(row)
        await session.commit()
        row_id = row.id
    await engine.dispose()
    return row_id


@pytest.fixture
def seed_band(db_url):
    """Insert a band into the app's database and return its id."""

    def _seed(**fields) -> str:
        values = {"name": "Marching 100", "school_name": "Florida A&M University", **fields}
        return asyncio.run(_insert(db_url, Band(**values)))

    return _seed


@pytest.fixture
def seed_creator(db_url):
    def _seed(**fields) -> str:
        return asyncio.run(_insert(db_url, Creator(**{"name": "BandHead Reviews", **fields})))

    return _seed


@pytest.fixture
def api_app(db_url, fake_server, test_settings):
    """FastAPI app wired like production, minus the real YouTube client."""
    import app.db.base as db_mod
    import app.db.redis as redis_mod
    from app.api.routes import api_router
    from app.core.exceptions import EntityNotFoundError, LedgerUnavailableError, SyncJobStateError
    from app.db import close_db, get_session_factory, init_db
    from app.main import (
        generic_exception_handler,
        http_exception_handler,
        job_state_handler,
        ledger_unavailable_handler,
        not_found_handler,
    )
    from app.middleware.correlation import setup_correlation_middleware
    from app.youtube.catalog import CatalogStore
    from app.youtube.governor import QuotaGovernor
    from app.youtube.ledger import UsageLedger
    from app.youtube.orchestrator import SyncOrchestrator
    from app.youtube.repository import QuotaRepository, SyncJobRepository
    from app.youtube.scheduler import SyncScheduler
    from app.youtube.source_fake import FakeVideoSource

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        """Initialize DB and Redis in the TestClient's event loop."""
        db_mod._engine = None
        db_mod._session_factory = None
        await init_db(db_url)

        redis_mod._redis = FakeAsyncRedis(server=fake_server, decode_responses=True)
        app.state.video_source = FakeVideoSource()

        session_factory = get_session_factory()
        governor = QuotaGovernor(UsageLedger(redis_mod._redis), QuotaRepository(session_factory), test_settings)
        orchestrator = SyncOrchestrator(
            governor,
            CatalogStore(session_factory),
            SyncJobRepository(session_factory),
            app.state.video_source,
            test_settings,
        )
        app.state.scheduler = SyncScheduler(governor, orchestrator, test_settings)
        yield
        await governor.flush()
        await redis_mod._redis.aclose()
        redis_mod._redis = None
        await close_db()

    app = FastAPI(title="BandHub Sync - Test Client", lifespan=test_lifespan)
    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(EntityNotFoundError)(not_found_handler)
    app.exception_handler(SyncJobStateError)(job_state_handler)
    app.exception_handler(LedgerUnavailableError)(ledger_unavailable_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def api_client(api_app):
    with TestClient(api_app) as client:
        yield client
