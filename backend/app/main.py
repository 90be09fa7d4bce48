"""BandHub Sync backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# CRITICAL ORDER: configure_structlog MUST be called before all other app imports
# to avoid the structlog cache pitfall (structlog caches the processor chain on first use).
from app.core.logging import configure_structlog
from app.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import api_router
from app.core.config import get_settings
from app.core.exceptions import EntityNotFoundError, LedgerUnavailableError, SyncJobStateError
from app.db import close_db, close_redis, get_redis, get_session_factory, init_db, init_redis
from app.middleware.correlation import (
    setup_correlation_middleware,
    get_correlation_id,
)
from app.youtube.catalog import CatalogStore
from app.youtube.governor import QuotaGovernor
from app.youtube.ledger import UsageLedger
from app.youtube.orchestrator import SyncOrchestrator
from app.youtube.repository import QuotaRepository, SyncJobRepository
from app.youtube.scheduler import SyncScheduler
from app.youtube.source import YouTubeClient, build_video_source

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM handler flips this so the health check returns 503
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    # Startup
    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    await init_redis()
    logger.info("redis_initialized")

    session_factory = get_session_factory()
    redis = get_redis()

    governor = QuotaGovernor(UsageLedger(redis), QuotaRepository(session_factory), settings)
    await governor.initialize()
    logger.info("quota_governor_initialized", daily_limit=settings.quota_daily_limit)

    app.state.youtube_client = YouTubeClient(settings) if settings.youtube_api_key else None
    app.state.video_source = build_video_source(settings, redis, app.state.youtube_client)
    orchestrator = SyncOrchestrator(
        governor,
        CatalogStore(session_factory),
        SyncJobRepository(session_factory),
        app.state.video_source,
        settings,
    )
    app.state.scheduler = SyncScheduler(governor, orchestrator, settings)
    if settings.scheduler_enabled:
        await app.state.scheduler.start()
    else:
        logger.info("scheduler_disabled")

    yield

    # Shutdown
    logger.info("shutdown_begin")
    await app.state.scheduler.stop()
    await governor.flush()
    if app.state.youtube_client is not None:
        await app.state.youtube_client.aclose()
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking.

    Logs errors server-side with full context, returns sanitized response to client.
    """
    debug_id = str(uuid.uuid4())
    corr_id = get_correlation_id()

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=corr_id,
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def not_found_handler(request: Request, exc: EntityNotFoundError) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    logger.info("entity_not_found", kind=exc.kind, entity_id=exc.entity_id, debug_id=debug_id, path=request.url.path)
    return JSONResponse(status_code=404, content={"detail": str(exc), "debug_id": debug_id})


async def job_state_handler(request: Request, exc: SyncJobStateError) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    logger.info("sync_job_state_conflict", job_id=exc.job_id, status=exc.status, debug_id=debug_id)
    return JSONResponse(status_code=409, content={"detail": str(exc), "debug_id": debug_id})


async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailableError) -> JSONResponse:
    """The quota ledger is down: quota is unknown, so nothing that needs it can answer."""
    debug_id = str(uuid.uuid4())
    logger.error(
        "quota_ledger_unavailable",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Quota ledger unavailable", "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())
    corr_id = get_correlation_id()

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=corr_id,
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    # Return generic 500 (no internal details leaked)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="YouTube quota governor and sync orchestration for the HBCU band video hub",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    # Exception handlers
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(EntityNotFoundError)(not_found_handler)
    app.exception_handler(SyncJobStateError)(job_state_handler)
    app.exception_handler(LedgerUnavailableError)(ledger_unavailable_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
