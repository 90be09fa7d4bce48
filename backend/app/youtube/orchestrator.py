"""Sync orchestrator: one quota-governed ingestion run for one band or creator.

A run asks the governor to approve its estimated cost up front, then issues
paid calls one at a time, each checked before it is made and tracked after
it returns. Channel enumeration is always preferred over keyword search when
the entity's channel id is known, since a search call costs 100 units.

Failures are layered:
- refused approval: the run ends immediately with a failed job, no calls made
- fetch failure: that branch stops and the error is recorded
- upsert failure: the video is skipped and the error is recorded
- anything else: the job is marked failed and the exception propagates
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    EntityNotFoundError,
    ExternalCallFailedError,
    QuotaRefusedError,
    SyncJobStateError,
    UpsertFailedError,
)
from app.youtube.catalog import CatalogEntity, CatalogStore
from app.youtube.costs import YouTubeOperation
from app.youtube.governor import QuotaGovernor
from app.youtube.repository import SyncJobRepository, as_utc
from app.youtube.schemas import (
    SyncCostInputs,
    SyncJobOut,
    SyncJobStatus,
    SyncJobType,
    SyncOptions,
    SyncPriority,
    SyncResult,
    SyncStats,
    TrackingContext,
)
from app.youtube.source import Fetched, VideoSource, VideoStub

logger = structlog.get_logger(__name__)

T = TypeVar("T")

YOUTUBE_LAUNCH_DATE = datetime(2005, 4, 23, tzinfo=UTC)

# A paid call was refused or failed; the current fetch branch stops
_FETCH_ERRORS = (QuotaRefusedError, ExternalCallFailedError)


@dataclass
class _RunState:
    entity: CatalogEntity
    job_id: str
    quota_used: int = 0
    videos_found: int = 0
    videos_added: int = 0
    videos_updated: int = 0
    errors: list[str] = field(default_factory=list)
    aborted: bool = False

    def context(self, **extra: Any) -> TrackingContext:
        return TrackingContext(entity_id=self.entity.id, entity_name=self.entity.name, job_id=self.job_id, **extra)

    def abort(self, message: str) -> None:
        self.errors.append(message)
        self.aborted = True


def _utcnow() -> datetime:
    return datetime.now(UTC)


def choose_priority(entity: CatalogEntity, is_full: bool) -> SyncPriority:
    if entity.youtube_channel_id or entity.is_featured:
        return SyncPriority.CRITICAL
    if is_full or entity.is_active:
        return SyncPriority.HIGH
    return SyncPriority.MEDIUM


class SyncOrchestrator:
    def __init__(
        self,
        governor: QuotaGovernor,
        catalog: CatalogStore,
        jobs: SyncJobRepository,
        source: VideoSource,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.governor = governor
        self.catalog = catalog
        self.jobs = jobs
        self.source = source
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Single entity
    # ------------------------------------------------------------------

    async def sync_entity(self, entity_id: str, options: SyncOptions | None = None) -> SyncResult:
        """Run one sync for a band or creator.

        Raises:
            EntityNotFoundError: no band or creator has this id.
        """
        options = options or SyncOptions()
        started = time.monotonic()

        entity = await self.catalog.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError("Entity", entity_id)

        is_full = options.force_full or entity.first_synced_at is None
        job_type = SyncJobType.FULL if is_full else SyncJobType.INCREMENTAL
        priority = options.priority or choose_priority(entity, is_full)
        has_channel = bool(entity.youtube_channel_id)
        # None means no cap: fetch to the window start or the end of the listing
        max_items = options.max_items
        queries = entity.search_queries

        estimated_cost = self.governor.estimate_cost(
            SyncCostInputs(
                has_channel_id=has_channel,
                estimated_video_count=max_items or self.settings.sync_default_estimated_videos,
                use_search=not has_channel,
                search_queries_count=len(queries),
            )
        )

        published_after = as_utc(options.published_after)
        if published_after is None and not is_full:
            published_after = entity.last_synced_at
        published_before = as_utc(options.published_before)

        now = self.clock()
        plan = await self.governor.approve_sync_job(entity.id, priority, estimated_cost, now=now)

        job_fields = {
            "id": plan.job_id,
            "entity_id": entity.id,
            "entity_type": entity.kind,
            "entity_name": entity.name,
            "job_type": job_type.value,
            "priority": priority.value,
            "published_after": published_after,
            "published_before": published_before,
            "max_videos": options.max_items,
            "estimated_quota_cost": estimated_cost,
            "quota_approved": plan.approved,
            "quota_approval_reason": plan.reason,
        }
        result_fields = {
            "entity_id": entity.id,
            "entity_name": entity.name,
            "sync_job_id": plan.job_id,
            "job_type": job_type,
            "priority": priority,
            "estimated_cost": estimated_cost,
            "quota_approved": plan.approved,
        }

        if not plan.approved:
            await self.jobs.create(
                **job_fields,
                status=SyncJobStatus.FAILED.value,
                error_message=plan.reason,
                errors=[plan.reason],
                started_at=now,
                completed_at=now,
            )
            logger.warning(
                "sync_quota_refused",
                entity_id=entity.id,
                entity_name=entity.name,
                priority=priority.value,
                estimated_cost=estimated_cost,
                reason=plan.reason,
            )
            return SyncResult(
                **result_fields,
                status=SyncJobStatus.FAILED,
                errors=[plan.reason] if plan.reason else [],
                duration_ms=int((time.monotonic() - started) * 1000),
            )

        await self.jobs.create(**job_fields, status=SyncJobStatus.IN_PROGRESS.value, started_at=now)
        logger.info(
            "sync_started",
            entity_id=entity.id,
            entity_name=entity.name,
            job_id=plan.job_id,
            job_type=job_type.value,
            priority=priority.value,
            estimated_cost=estimated_cost,
        )

        run = _RunState(entity=entity, job_id=plan.job_id)
        try:
            if has_channel:
                stubs = await self._fetch_channel(run, max_items, published_after, published_before)
            else:
                stubs = await self._fetch_search(run, queries, max_items, published_after, published_before)
            run.videos_found = len(stubs)
            await self._enrich_and_upsert(run, stubs)
        except Exception as exc:
            await self.jobs.update(
                plan.job_id,
                status=SyncJobStatus.FAILED.value,
                videos_found=run.videos_found,
                videos_added=run.videos_added,
                videos_updated=run.videos_updated,
                errors=[*run.errors, str(exc)],
                error_message=str(exc),
                actual_quota_cost=run.quota_used,
                completed_at=self.clock(),
            )
            logger.error(
                "sync_failed",
                entity_id=entity.id,
                job_id=plan.job_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

        status = SyncJobStatus.FAILED if run.aborted and run.videos_found == 0 else SyncJobStatus.COMPLETED
        completed_at = self.clock()
        await self.jobs.update(
            plan.job_id,
            status=status.value,
            videos_found=run.videos_found,
            videos_added=run.videos_added,
            videos_updated=run.videos_updated,
            errors=run.errors,
            error_message=run.errors[-1] if status == SyncJobStatus.FAILED else None,
            actual_quota_cost=run.quota_used,
            completed_at=completed_at,
        )
        if status == SyncJobStatus.COMPLETED:
            await self.catalog.mark_synced(entity, completed_at, full=is_full)

        logger.info(
            "sync_finished",
            entity_id=entity.id,
            job_id=plan.job_id,
            status=status.value,
            videos_found=run.videos_found,
            videos_added=run.videos_added,
            videos_updated=run.videos_updated,
            quota_used=run.quota_used,
            error_count=len(run.errors),
        )

        return SyncResult(
            **result_fields,
            status=status,
            videos_found=run.videos_found,
            videos_added=run.videos_added,
            videos_updated=run.videos_updated,
            quota_used=run.quota_used,
            errors=run.errors,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

    async def _paid_call(
        self,
        run: _RunState,
        operation: YouTubeOperation,
        call: Callable[[], Awaitable[Fetched[T]]],
    ) -> T:
        """Check, call, track.

        Raises:
            QuotaRefusedError: the governor would not let the call go out.
            ExternalCallFailedError: YouTube answered with an error. The
                failed attempt is tracked before this propagates.
        """
        check = await self.governor.check_available(operation)
        if not check.available:
            raise QuotaRefusedError(f"{operation.value} not issued, {check.reason}")

        try:
            fetched = await call()
        except ExternalCallFailedError as exc:
            await self.governor.track_operation(operation, False, run.context(error_message=str(exc)))
            raise

        run.quota_used += await self.governor.track_operation(
            operation,
            True,
            run.context(cache_hit=fetched.cache_hit),
        )
        return fetched.value

    async def _fetch_channel(
        self,
        run: _RunState,
        max_items: int | None,
        published_after: datetime | None,
        published_before: datetime | None,
    ) -> list[VideoStub]:
        """Walk the channel's uploads playlist, newest first, to `max_items` or the window start."""
        channel_id = run.entity.youtube_channel_id
        stubs: list[VideoStub] = []

        try:
            playlist_id = await self._paid_call(
                run,
                YouTubeOperation.CHANNEL_LIST,
                lambda: self.source.resolve_uploads_playlist(channel_id),
            )
            if not playlist_id:
                run.abort(f"No uploads playlist found for channel {channel_id}")
                return stubs

            page_token = None
            while max_items is None or len(stubs) < max_items:
                page = await self._paid_call(
                    run,
                    YouTubeOperation.PLAYLIST_ITEMS_LIST,
                    lambda: self.source.list_channel_uploads(playlist_id, page_token),
                )

                reached_window_start = False
                for stub in page.items:
                    published_at = as_utc(stub.published_at)
                    if published_before and published_at and published_at >= published_before:
                        continue
                    if published_after and published_at and published_at < published_after:
                        reached_window_start = True
                        break
                    stubs.append(stub)
                    if max_items is not None and len(stubs) >= max_items:
                        break

                page_token = page.next_page_token
                if reached_window_start or not page_token:
                    break
        except _FETCH_ERRORS as exc:
            run.abort(str(exc))

        return stubs

    async def _fetch_search(
        self,
        run: _RunState,
        queries: list[str],
        max_items: int | None,
        published_after: datetime | None,
        published_before: datetime | None,
    ) -> list[VideoStub]:
        stubs: dict[str, VideoStub] = {}

        for index, query in enumerate(queries):
            if max_items is not None and len(stubs) >= max_items:
                break
            if index > 0:
                await self.sleep(self.settings.sync_search_delay_seconds)
            try:
                found = await self._paid_call(
                    run,
                    YouTubeOperation.SEARCH,
                    lambda: self.source.search_by_keyword(
                        query,
                        self.settings.sync_max_results_per_search,
                        published_after,
                        published_before,
                    ),
                )
            except _FETCH_ERRORS as exc:
                run.abort(str(exc))
                break

            for stub in found:
                if max_items is not None and len(stubs) >= max_items:
                    break
                stubs.setdefault(stub.youtube_id, stub)

        return list(stubs.values())

    async def _enrich_and_upsert(self, run: _RunState, stubs: list[VideoStub]) -> None:
        batch_size = self.settings.sync_detail_batch_size

        for start in range(0, len(stubs), batch_size):
            ids = [stub.youtube_id for stub in stubs[start : start + batch_size]]
            try:
                details = await self._paid_call(
                    run,
                    YouTubeOperation.VIDEO_LIST,
                    lambda: self.source.get_item_details(ids),
                )
            except _FETCH_ERRORS as exc:
                run.abort(str(exc))
                break

            for item in details:
                try:
                    created = await self.catalog.upsert_video(run.entity, item)
                except UpsertFailedError as exc:
                    run.errors.append(str(exc))
                    continue
                if created:
                    run.videos_added += 1
                else:
                    run.videos_updated += 1

    # ------------------------------------------------------------------
    # Variants
    # ------------------------------------------------------------------

    async def full_backfill(self, entity_id: str, max_items: int | None = None) -> SyncResult:
        """Full history sync back to YouTube's launch, at low priority."""
        return await self.sync_entity(
            entity_id,
            SyncOptions(
                force_full=True,
                published_after=YOUTUBE_LAUNCH_DATE,
                max_items=max_items,
                priority=SyncPriority.LOW,
            ),
        )

    async def retry_job(self, job_id: str) -> SyncResult:
        """Re-run approval and sync for a failed job with its original options."""
        job = await self.jobs.get(job_id)
        if job is None:
            raise EntityNotFoundError("SyncJob", job_id)
        if job.status != SyncJobStatus.FAILED.value:
            raise SyncJobStateError(job_id, job.status, "only failed jobs can be retried")

        logger.info("sync_retry", job_id=job_id, entity_id=job.entity_id)
        return await self.sync_entity(
            job.entity_id,
            SyncOptions(
                published_after=job.published_after,
                published_before=job.published_before,
                max_items=job.max_videos,
                force_full=job.job_type == SyncJobType.FULL.value,
                priority=SyncPriority(job.priority),
            ),
        )

    async def sync_all_incremental(
        self,
        budget_floor: int | None = None,
        entity_delay: float | None = None,
    ) -> list[SyncResult]:
        """Incremental sync of every active entity, stalest first, until the budget floor."""
        floor = self.settings.sync_budget_floor if budget_floor is None else budget_floor
        delay = self.settings.sync_entity_delay_seconds if entity_delay is None else entity_delay

        entities = await self.catalog.active_entities_by_staleness()
        logger.info("sync_batch_started", entity_count=len(entities))

        results: list[SyncResult] = []
        for index, entity in enumerate(entities):
            remaining = await self.governor.remaining()
            if remaining < floor:
                logger.warning(
                    "sync_batch_budget_floor_reached",
                    remaining=remaining,
                    floor=floor,
                    skipped=len(entities) - index,
                )
                break

            if index > 0:
                await self.sleep(delay)

            try:
                results.append(await self.sync_entity(entity.id, SyncOptions(priority=SyncPriority.MEDIUM)))
            except Exception as exc:
                logger.error(
                    "sync_batch_entity_failed",
                    entity_id=entity.id,
                    entity_name=entity.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

        logger.info("sync_batch_finished", synced=len(results), entity_count=len(entities))
        return results

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def list_jobs(self, limit: int = 20) -> list[SyncJobOut]:
        jobs = await self.jobs.recent(limit)
        return [SyncJobOut.model_validate(job, from_attributes=True) for job in jobs]

    async def sync_stats(self) -> SyncStats:
        status = await self.governor.status()
        total, synced, videos = await self.catalog.counts()
        return SyncStats(
            total_entities=total,
            synced_entities=synced,
            unsynced_entities=total - synced,
            total_videos=videos,
            daily_quota_used=status.current_usage,
            daily_quota_remaining=status.remaining,
            quota_reset_time=status.reset_time,
            is_emergency_mode=status.is_emergency_mode,
            recent_jobs=await self.list_jobs(10),
        )

    async def entities_needing_full_sync(self) -> list[dict[str, Any]]:
        entities = await self.catalog.entities_needing_full_sync()
        return [
            {
                "id": entity.id,
                "kind": entity.kind,
                "name": entity.name,
                "last_full_sync_at": entity.last_full_sync_at,
                "first_synced_at": entity.first_synced_at,
            }
            for entity in entities
        ]
