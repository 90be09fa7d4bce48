"""FastAPI dependency providers for the quota and sync routes.

Services are cheap wrappers around the shared Redis client and session
factory, so they are built per request. The video source and the
scheduler are process-wide and live on `app.state`, set up in the lifespan.
"""

from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.db.base import get_session_factory
from app.db.redis import get_redis
from app.youtube.catalog import CatalogStore
from app.youtube.governor import QuotaGovernor
from app.youtube.ledger import UsageLedger
from app.youtube.orchestrator import SyncOrchestrator
from app.youtube.repository import QuotaRepository, SyncJobRepository
from app.youtube.scheduler import SyncScheduler
from app.youtube.source import VideoSource


def get_quota_governor(
    redis: Redis = Depends(get_redis),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> QuotaGovernor:
    return QuotaGovernor(UsageLedger(redis), QuotaRepository(session_factory), get_settings())


def get_video_source(request: Request) -> VideoSource:
    return request.app.state.video_source


def get_sync_orchestrator(
    governor: QuotaGovernor = Depends(get_quota_governor),
    source: VideoSource = Depends(get_video_source),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> SyncOrchestrator:
    return SyncOrchestrator(
        governor,
        CatalogStore(session_factory),
        SyncJobRepository(session_factory),
        source,
        get_settings(),
    )


def get_sync_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler
