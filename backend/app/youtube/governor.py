"""Quota governor: admission control and accounting for the YouTube daily quota.

Every paid YouTube call goes through here twice: `check_available` before
the call and `track_operation` after it. Only successful, non-cached calls
are charged. The governor is the only writer of the usage ledger and the
emergency flag.

Audit writes (usage logs, alerts) are best-effort background tasks: their
failures are logged and never reach the caller. Availability checks and
approvals are authoritative and fail closed when the ledger is unreachable.
"""

import asyncio
import math
import uuid
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from app.core.config import Settings, get_settings
from app.core.exceptions import LedgerUnavailableError
from app.youtube import analytics as quota_analytics
from app.youtube.allocator import PriorityAllocator
from app.youtube.costs import ITEMS_PER_PAGE, KNOWN_OPERATIONS, YouTubeOperation, quota_cost
from app.youtube.ledger import UsageLedger
from app.youtube.quota_clock import date_key, next_reset_time, quota_date, quota_day_window
from app.youtube.repository import QuotaRepository
from app.youtube.schemas import (
    AlertOut,
    AllocationPlan,
    AvailabilityCheck,
    CostEstimate,
    DailySummaryOut,
    EfficiencyStats,
    QuotaAlertLevel,
    QuotaAnalytics,
    QuotaStatus,
    SyncCostInputs,
    SyncPriority,
    TodayUsage,
    TrackingContext,
    UsageLogOut,
)

logger = structlog.get_logger(__name__)

EMERGENCY_REASON = "Emergency quota preservation mode active"
LEDGER_UNAVAILABLE_REASON = "Quota unknown: usage ledger unavailable"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class QuotaGovernor:
    """Meters the daily quota across everything that calls YouTube."""

    def __init__(
        self,
        ledger: UsageLedger,
        repository: QuotaRepository,
        settings: Settings | None = None,
        allocator: PriorityAllocator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.ledger = ledger
        self.repository = repository
        self.settings = settings or get_settings()
        self.allocator = allocator or PriorityAllocator(self.settings.quota_priority_allocation)
        self.clock = clock or _utcnow
        self._pending: set[asyncio.Task] = set()

    @property
    def limit(self) -> int:
        return self.settings.quota_daily_limit

    # ------------------------------------------------------------------
    # Levels
    # ------------------------------------------------------------------

    def alert_level_for(self, usage: int) -> QuotaAlertLevel:
        fraction = usage / self.limit if self.limit else 1.0
        level = QuotaAlertLevel.INFO
        for candidate in (QuotaAlertLevel.WARNING, QuotaAlertLevel.CRITICAL, QuotaAlertLevel.DEPLETED):
            threshold = self.settings.quota_alert_thresholds.get(candidate.value)
            if threshold is not None and fraction >= threshold:
                level = candidate
        return level

    def _percentage(self, usage: int) -> float:
        return (usage / self.limit) * 100 if self.limit else 100.0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def status(self, now: datetime | None = None) -> QuotaStatus:
        """Current quota snapshot. Raises LedgerUnavailableError if Redis is down."""
        now = now or self.clock()
        usage = await self.ledger.current_usage()
        emergency = await self.ledger.emergency_active()

        return QuotaStatus(
            current_usage=usage,
            limit=self.limit,
            remaining=max(0, self.limit - usage),
            percentage_used=self._percentage(usage),
            alert_level=self.alert_level_for(usage),
            reset_time=next_reset_time(now),
            is_emergency_mode=emergency,
            last_updated=now,
        )

    async def remaining(self) -> int:
        usage = await self.ledger.current_usage()
        return max(0, self.limit - usage)

    async def check_available(self, operation: YouTubeOperation, count: int = 1) -> AvailabilityCheck:
        """Decide whether `count` calls of `operation` may be issued now.

        Never raises: an unreachable ledger means the quota is unknown, which
        is reported as unavailable.
        """
        try:
            if await self.ledger.emergency_active():
                return AvailabilityCheck(available=False, reason=EMERGENCY_REASON)

            remaining = await self.remaining()
        except LedgerUnavailableError as exc:
            logger.error("quota_check_ledger_unavailable", operation=operation.value, error=str(exc))
            return AvailabilityCheck(available=False, reason=LEDGER_UNAVAILABLE_REASON)

        required = quota_cost(operation, count)
        if remaining < required:
            return AvailabilityCheck(
                available=False,
                reason=f"Insufficient quota: {required} units required, {remaining} remaining",
            )
        return AvailabilityCheck(available=True)

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def track_operation(
        self,
        operation: YouTubeOperation,
        success: bool,
        context: TrackingContext | None = None,
        now: datetime | None = None,
    ) -> int:
        """Record one call attempt and charge it against the ledger.

        Args:
            operation: The YouTube operation that was issued
            success: Whether the call returned a usable response
            context: Entity/job tags, cache-hit flag and error details
            now: Current time (for deterministic testing)

        Returns:
            Units charged: 0 for cache hits and failed calls.

        Raises:
            LedgerUnavailableError: a chargeable call could not be counted.
        """
        context = context or TrackingContext()
        now = now or self.clock()
        cost = 0 if context.cache_hit or not success else quota_cost(operation)

        new_total: int | None = None
        if cost > 0:
            try:
                new_total = await self.ledger.increment(cost)
            except LedgerUnavailableError:
                self._record_usage(operation, 0, success, context, now, ledger_unavailable=True)
                raise

        self._record_usage(operation, cost, success, context, now)

        if new_total is not None:
            await self._after_increment(new_total - cost, new_total, now)

        return cost

    def _record_usage(
        self,
        operation: YouTubeOperation,
        cost: int,
        success: bool,
        context: TrackingContext,
        now: datetime,
        ledger_unavailable: bool = False,
    ) -> None:
        metadata = dict(context.metadata or {})
        if ledger_unavailable:
            metadata["ledger_unavailable"] = True

        self._spawn(
            self.repository.add_usage_log(
                operation=operation.value,
                cost=cost,
                success=success,
                cache_hit=context.cache_hit,
                timestamp=now,
                entity_id=context.entity_id,
                entity_name=context.entity_name,
                sync_job_id=context.job_id,
                error_message=context.error_message,
                metadata=metadata or None,
            ),
            "quota_usage_log_write_failed",
            operation=operation.value,
            job_id=context.job_id,
        )

    async def _after_increment(self, before: int, after: int, now: datetime) -> None:
        """Emit one alert per threshold crossing and enter emergency mode at its threshold.

        `before` and `after` come from this caller's own INCRBY result, so two
        concurrent callers can never both observe the same crossing.
        """
        level_before = self.alert_level_for(before)
        level_after = self.alert_level_for(after)

        if self.settings.quota_enable_alerts and level_after.rank > level_before.rank:
            percentage = self._percentage(after)
            message = f"Quota usage at {percentage:.1f}% ({after}/{self.limit})"
            logger.warning("quota_alert", level=level_after.value, current_usage=after, limit=self.limit)
            self._save_alert(level_after, message, after, now)

        threshold_units = self.limit * self.settings.quota_emergency_threshold
        if self.settings.quota_enable_emergency_mode and before < threshold_units <= after:
            await self._enter_emergency_mode("Emergency quota preservation mode activated", after, now)

    def _save_alert(self, level: QuotaAlertLevel, message: str, usage: int, now: datetime) -> None:
        self._spawn(
            self.repository.add_alert(level.value, message, usage, now),
            "quota_alert_write_failed",
            level=level.value,
        )

    # ------------------------------------------------------------------
    # Best-effort background writes
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], failure_event: str, **log_context: Any) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(lambda done: self._on_write_done(done, failure_event, log_context))

    def _on_write_done(self, task: asyncio.Task, failure_event: str, log_context: dict[str, Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(failure_event, error=str(exc), error_type=type(exc).__name__, **log_context)

    async def flush(self) -> None:
        """Wait for outstanding audit writes. Failures were already logged."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Estimation and approval
    # ------------------------------------------------------------------

    def estimate_cost(self, inputs: SyncCostInputs) -> int:
        return sum(self._cost_breakdown(inputs).values())

    def _cost_breakdown(self, inputs: SyncCostInputs) -> dict[str, int]:
        pages = math.ceil(inputs.estimated_video_count / ITEMS_PER_PAGE)
        breakdown: dict[str, int] = {}
        if inputs.use_search:
            breakdown[YouTubeOperation.SEARCH.value] = quota_cost(YouTubeOperation.SEARCH, inputs.search_queries_count)
        if inputs.has_channel_id:
            breakdown[YouTubeOperation.CHANNEL_LIST.value] = quota_cost(YouTubeOperation.CHANNEL_LIST)
            breakdown[YouTubeOperation.PLAYLIST_ITEMS_LIST.value] = quota_cost(
                YouTubeOperation.PLAYLIST_ITEMS_LIST, pages
            )
        # Detail enrichment is always batched by page size
        breakdown[YouTubeOperation.VIDEO_LIST.value] = quota_cost(YouTubeOperation.VIDEO_LIST, pages)
        return breakdown

    def estimate_breakdown(self, inputs: SyncCostInputs) -> CostEstimate:
        breakdown = self._cost_breakdown(inputs)
        estimated = sum(breakdown.values())

        if inputs.has_channel_id:
            sync_method = "Channel-based sync (efficient)"
        elif inputs.use_search:
            sync_method = "Search-based sync (expensive)"
        else:
            sync_method = "Unknown method"

        return CostEstimate(
            estimated_cost=estimated,
            breakdown=breakdown,
            sync_method=sync_method,
            is_high_cost=estimated > self.settings.quota_high_cost_threshold,
        )

    async def approve_sync_job(
        self,
        entity_id: str,
        priority: SyncPriority,
        estimated_cost: int,
        now: datetime | None = None,
    ) -> AllocationPlan:
        """Decide whether a sync of `estimated_cost` may start.

        Refuses in emergency mode regardless of priority, and refuses when the
        ledger cannot be read.
        """
        now = now or self.clock()
        plan_fields = {
            "job_id": str(uuid.uuid4()),
            "entity_id": entity_id,
            "priority": priority,
            "estimated_cost": estimated_cost,
            "timestamp": now,
        }

        try:
            emergency = await self.ledger.emergency_active()
            remaining = await self.remaining()
        except LedgerUnavailableError as exc:
            logger.error("quota_approval_ledger_unavailable", entity_id=entity_id, error=str(exc))
            return AllocationPlan(**plan_fields, allocated_quota=0, approved=False, reason=LEDGER_UNAVAILABLE_REASON)

        if emergency:
            return AllocationPlan(**plan_fields, allocated_quota=0, approved=False, reason=EMERGENCY_REASON)

        approved, allocated, reason = self.allocator.decide(remaining, priority, estimated_cost)
        log = logger.info if approved else logger.warning
        log(
            "quota_sync_approval",
            entity_id=entity_id,
            priority=priority.value,
            estimated_cost=estimated_cost,
            allocated_quota=allocated,
            remaining=remaining,
            approved=approved,
            reason=reason,
        )
        return AllocationPlan(**plan_fields, allocated_quota=allocated, approved=approved, reason=reason)

    # ------------------------------------------------------------------
    # Emergency mode
    # ------------------------------------------------------------------

    async def _enter_emergency_mode(self, message: str, usage: int, now: datetime) -> None:
        await self.ledger.set_emergency(self.settings.quota_emergency_ttl_seconds, message)
        self._save_alert(QuotaAlertLevel.DEPLETED, message, usage, now)
        logger.error("quota_emergency_mode_activated", current_usage=usage, limit=self.limit)

    async def activate_emergency_mode(self, reason: str = "Manual activation", now: datetime | None = None) -> None:
        now = now or self.clock()
        usage = await self.ledger.current_usage()
        await self._enter_emergency_mode(f"Emergency quota preservation mode activated: {reason}", usage, now)

    async def deactivate_emergency_mode(self) -> None:
        await self.ledger.clear_emergency()
        logger.info("quota_emergency_mode_deactivated")

    # ------------------------------------------------------------------
    # Alerts, history, logs
    # ------------------------------------------------------------------

    async def list_alerts(self, limit: int = 50, unacknowledged_only: bool = False) -> list[AlertOut]:
        alerts = await self.repository.list_alerts(limit, unacknowledged_only)
        return [AlertOut.model_validate(alert, from_attributes=True) for alert in alerts]

    async def acknowledge_alert(self, alert_id: str, acknowledged_by: str, now: datetime | None = None) -> AlertOut | None:
        alert = await self.repository.acknowledge_alert(alert_id, acknowledged_by, now or self.clock())
        if alert is None:
            return None
        return AlertOut.model_validate(alert, from_attributes=True)

    async def history(self, days: int = 30, now: datetime | None = None) -> list[DailySummaryOut]:
        now = now or self.clock()
        since = quota_date(now) - timedelta(days=days)
        summaries = await self.repository.daily_summaries(since)
        return [
            DailySummaryOut(
                date=summary.date.isoformat(),
                total_usage=summary.total_usage,
                quota_limit=summary.quota_limit,
                percentage_used=summary.percentage_used,
            )
            for summary in summaries
        ]

    async def usage_logs(
        self,
        limit: int = 100,
        entity_id: str | None = None,
        operation: str | None = None,
    ) -> list[UsageLogOut]:
        logs = await self.repository.usage_logs(limit, entity_id, operation)
        return [
            UsageLogOut(
                id=log.id,
                operation=log.operation,
                cost=log.cost,
                timestamp=log.timestamp,
                entity_id=log.entity_id,
                entity_name=log.entity_name,
                sync_job_id=log.sync_job_id,
                success=log.success,
                cache_hit=log.cache_hit,
                error_message=log.error_message,
                metadata=log.metadata_,
            )
            for log in logs
        ]

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    async def analytics(self, now: datetime | None = None) -> QuotaAnalytics:
        now = now or self.clock()
        today = quota_date(now)
        start, end = quota_day_window(today)
        month_ago = now - timedelta(days=30)

        usage = await self.ledger.current_usage()
        breakdown = await self.repository.operation_breakdown(start, end)
        top_consumers = await self.repository.top_consumers(start, end)
        requests_today, hits_by_operation = await self.repository.cache_stats(start, end)

        last_7 = await self.repository.daily_summaries(today - timedelta(days=7))
        last_30 = await self.repository.daily_summaries(today - timedelta(days=30))
        window_7 = quota_analytics.window_stats([summary.total_usage for summary in last_7])
        window_30 = quota_analytics.window_stats([summary.total_usage for summary in last_30])

        cache_hits = sum(hits_by_operation.values())
        hit_rate = cache_hits / requests_today if requests_today else 0.0
        saved = sum(
            count * quota_cost(YouTubeOperation(operation))
            for operation, count in hits_by_operation.items()
            if operation in KNOWN_OPERATIONS
        )

        efficiency = EfficiencyStats(
            cache_hit_rate=hit_rate,
            quota_saved_by_cache=saved,
            average_cost_per_sync=await self.repository.average_cost_per_sync(month_ago),
            most_expensive_operations=await self.repository.most_expensive_operations(month_ago),
        )

        return QuotaAnalytics(
            today=TodayUsage(
                used=usage,
                remaining=max(0, self.limit - usage),
                percentage_used=self._percentage(usage),
                operation_breakdown=breakdown,
                top_consumers=top_consumers,
            ),
            last_7_days=window_7,
            last_30_days=window_30,
            efficiency=efficiency,
            forecast=quota_analytics.build_forecast(
                window_7.average_daily,
                self.limit,
                cache_hit_rate=hit_rate,
                requests_today=requests_today,
                operation_breakdown=breakdown,
            ),
        )

    async def recommendations(self, now: datetime | None = None) -> dict[str, Any]:
        report = await self.analytics(now)
        return {
            "recommendations": report.forecast.recommendations,
            "risk_level": report.forecast.risk_level,
            "cache_hit_rate": report.efficiency.cache_hit_rate,
            "estimated_daily_usage": report.forecast.estimated_daily_usage,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, now: datetime | None = None) -> None:
        """Reconcile with the ledger at startup: reset if the quota day rolled over."""
        now = now or self.clock()
        last_reset = await self.ledger.last_reset_date_key()

        if last_reset != date_key(now):
            logger.info("quota_new_day_detected", last_reset=last_reset, today=date_key(now))
            await self.daily_reset(now)
        else:
            usage = await self.ledger.current_usage()
            logger.info("quota_tracking_restored", current_usage=usage, limit=self.limit)

    async def reset(self, now: datetime | None = None) -> None:
        """Archive the closing quota day, then zero the ledger and clear emergency mode.

        The archived date is the ledger's last-reset day, or yesterday when the
        ledger has never been reset.
        """
        now = now or self.clock()
        today_key = date_key(now)
        last_reset = await self.ledger.last_reset_date_key()
        usage = await self.ledger.current_usage()

        closing_day = quota_date(now) - timedelta(days=1)
        if last_reset:
            closing_day = datetime.fromisoformat(last_reset).date()

        if closing_day.isoformat() != today_key:
            try:
                archived = await self.repository.add_daily_summary(closing_day, usage, self.limit)
            except Exception as exc:
                logger.warning(
                    "quota_daily_summary_write_failed",
                    day=closing_day.isoformat(),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
            else:
                if not archived:
                    logger.info("quota_daily_summary_exists", day=closing_day.isoformat())

        await self.ledger.reset(today_key)
        await self.ledger.clear_emergency()
        logger.info("quota_reset", archived_day=closing_day.isoformat(), archived_usage=usage, today=today_key)

    async def daily_reset(self, now: datetime | None = None) -> bool:
        """Once-per-day reset shared by startup and the scheduler.

        Returns False when the ledger was already reset today or another
        process holds today's reset claim.
        """
        now = now or self.clock()
        if await self.ledger.last_reset_date_key() == date_key(now):
            logger.info("quota_reset_already_done", today=date_key(now))
            return False
        if not await self.ledger.claim_reset(date_key(now)):
            logger.info("quota_reset_already_claimed", today=date_key(now))
            return False
        await self.reset(now)
        return True
