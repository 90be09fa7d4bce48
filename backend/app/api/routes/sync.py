"""Sync admin routes: run, backfill and retry syncs, inspect jobs and the scheduler.

Refused syncs are ordinary 200 responses carrying `quota_approved=false`.
Each route waits for the run's usage records to be written before replying,
so the usage log endpoints immediately reflect the run.
"""

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_sync_orchestrator, get_sync_scheduler
from app.youtube.orchestrator import SyncOrchestrator
from app.youtube.scheduler import SyncScheduler
from app.youtube.schemas import SyncJobOut, SyncOptions, SyncResult, SyncStats

router = APIRouter()


@router.post("/entities/{entity_id}", response_model=SyncResult)
async def sync_entity(
    entity_id: str,
    options: SyncOptions | None = None,
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    try:
        return await orchestrator.sync_entity(entity_id, options or SyncOptions())
    finally:
        await orchestrator.governor.flush()


@router.post("/entities/{entity_id}/backfill", response_model=SyncResult)
async def backfill_entity(
    entity_id: str,
    max_items: int | None = Query(None, ge=1),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    try:
        return await orchestrator.full_backfill(entity_id, max_items)
    finally:
        await orchestrator.governor.flush()


@router.post("/jobs/{job_id}/retry", response_model=SyncResult)
async def retry_job(job_id: str, orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    try:
        return await orchestrator.retry_job(job_id)
    finally:
        await orchestrator.governor.flush()


@router.get("/jobs", response_model=list[SyncJobOut])
async def list_jobs(
    limit: int = Query(20, ge=1, le=200),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
):
    return await orchestrator.list_jobs(limit)


@router.get("/stats", response_model=SyncStats)
async def sync_stats(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    return await orchestrator.sync_stats()


@router.get("/entities/needing-full-sync")
async def entities_needing_full_sync(orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator)):
    return await orchestrator.entities_needing_full_sync()


@router.get("/scheduler")
async def scheduler_status(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    return scheduler.scheduler_status()


@router.post("/incremental")
async def run_incremental(scheduler: SyncScheduler = Depends(get_sync_scheduler)):
    """Run the scheduler's incremental batch now. Skipped if one is already running."""
    results = await scheduler.run_incremental_sync()
    await scheduler.governor.flush()
    if results is None:
        return {"started": False, "reason": "Incremental sync already in progress", "results": []}
    return {"started": True, "results": [result.model_dump(mode="json") for result in results]}
