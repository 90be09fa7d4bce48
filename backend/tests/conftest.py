"""Shared test fixtures for all test groups."""

from datetime import UTC, datetime

import pytest
from fakeredis import FakeAsyncRedis
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.db.base import Base
from app.db.models import Band, Creator
from app.youtube.governor import QuotaGovernor
from app.youtube.ledger import UsageLedger
from app.youtube.repository import QuotaRepository

# Wednesday 2025-01-15 12:00 PST
NOW = datetime(2025, 1, 15, 20, 0, tzinfo=UTC)


class BrokenRedis:
    """Redis double whose every command fails as if the server were down."""

    def __getattr__(self, name):
        async def _fail(*args, **kwargs):
            raise RedisConnectionError("Connection refused")

        return _fail

    def pipeline(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")


@pytest.fixture
def broken_redis():
    return BrokenRedis()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings():
    """Default quota settings with the scheduler and delays switched off."""
    return Settings(
        scheduler_enabled=False,
        sync_search_delay_seconds=0,
        sync_entity_delay_seconds=0,
        youtube_api_key="test-key",
    )


@pytest.fixture
async def redis():
    """Provide fakeredis async client."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
async def session_factory(tmp_path):
    """SQLite database with every table created, one file per test."""
    import app.db.models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bandhub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def repository(session_factory):
    return QuotaRepository(session_factory)


@pytest.fixture
def ledger(redis):
    return UsageLedger(redis)


@pytest.fixture
async def governor(ledger, repository, settings, now):
    """Governor on a fixed clock. Outstanding audit writes finish before teardown."""
    governor = QuotaGovernor(ledger, repository, settings, clock=lambda: now)
    yield governor
    await governor.flush()


@pytest.fixture
def add_band(session_factory):
    """Insert a band and return its id."""

    async def _add(**fields) -> str:
        values = {"name": "Marching 100", "school_name": "Florida A&M University", **fields}
        async with session_factory() as session:
            band = Band(**values)
            session.add(band)
            await session.commit()
            return band.id

    return _add


@pytest.fixture
def add_creator(session_factory):
    """Insert a creator and return its id."""

    async def _add(**fields) -> str:
        values = {"name": "BandHead Reviews", **fields}
        async with session_factory() as session:
            creator = Creator(**values)
            session.add(creator)
            await session.commit()
            return creator.id

    return _add
