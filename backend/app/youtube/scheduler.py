"""Sync scheduler: named Pacific-time timers that drive resets, reports and syncs.

Every timer's handler takes the current time as an argument, so each one can
be exercised directly with a fixed clock. The background loop only decides
which timers are due and calls them.

Timers (US Pacific wall clock, the YouTube quota day):
- quota-reset               00:00 daily
- daily-summary             00:05 daily
- daily-analytics           01:00 daily
- incremental-sync          03:00 and 15:00 daily (configurable)
- quarterly-sync-reminder   06:00 on Jan/Apr/Jul/Oct 1
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

import structlog

from app.core.config import Settings, get_settings
from app.youtube.governor import QuotaGovernor
from app.youtube.orchestrator import SyncOrchestrator
from app.youtube.quota_clock import pacific_to_utc, quota_date
from app.youtube.schemas import SyncResult

logger = structlog.get_logger(__name__)

QUARTER_MONTHS = frozenset({1, 4, 7, 10})

# Longest gap between two firings of any timer is a quarter
_MAX_LOOKAHEAD_DAYS = 370


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class NamedTimer:
    name: str
    times: tuple[time, ...]
    handler: Callable[[datetime], Awaitable[Any]]
    schedule: str
    months: frozenset[int] | None = None
    day_of_month: int | None = None
    background: bool = False
    next_run: datetime | None = None

    def runs_on(self, day: date) -> bool:
        if self.months is not None and day.month not in self.months:
            return False
        if self.day_of_month is not None and day.day != self.day_of_month:
            return False
        return True

    def compute_next_run(self, after: datetime) -> datetime:
        """First firing strictly after `after`, in UTC."""
        day = quota_date(after)
        for _ in range(_MAX_LOOKAHEAD_DAYS):
            if self.runs_on(day):
                for at in sorted(self.times):
                    candidate = pacific_to_utc(datetime.combine(day, at))
                    if candidate > after:
                        return candidate
            day += timedelta(days=1)
        raise ValueError(f"Timer {self.name} never fires")


class SyncScheduler:
    def __init__(
        self,
        governor: QuotaGovernor,
        orchestrator: SyncOrchestrator,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.governor = governor
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow
        self.timers = self._build_timers()
        self._incremental_in_progress = False
        self._task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    def _build_timers(self) -> list[NamedTimer]:
        sync_hours = sorted(self.settings.scheduler_incremental_hours)
        return [
            NamedTimer("quota-reset", (time(0, 0),), self.reset_quota, "Daily at 00:00 Pacific"),
            NamedTimer("daily-summary", (time(0, 5),), self.daily_summary, "Daily at 00:05 Pacific"),
            NamedTimer("daily-analytics", (time(1, 0),), self.daily_analytics, "Daily at 01:00 Pacific"),
            NamedTimer(
                "incremental-sync",
                tuple(time(hour, 0) for hour in sync_hours),
                self.run_incremental_sync,
                "Daily at " + " and ".join(f"{hour:02d}:00" for hour in sync_hours) + " Pacific",
                background=True,
            ),
            NamedTimer(
                "quarterly-sync-reminder",
                (time(6, 0),),
                self.quarterly_reminder,
                "First day of each quarter at 06:00 Pacific",
                months=QUARTER_MONTHS,
                day_of_month=1,
            ),
        ]

    def timer(self, name: str) -> NamedTimer:
        for timer in self.timers:
            if timer.name == name:
                return timer
        raise KeyError(name)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._task is not None:
            return
        now = self.clock()
        for timer in self.timers:
            timer.next_run = timer.compute_next_run(now)
        self._task = asyncio.create_task(self._run_loop())
        logger.info("scheduler_started", timers=[timer.name for timer in self.timers])

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("scheduler_stopped")

    async def _run_loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self.settings.scheduler_poll_seconds)

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Fire every timer that is due at `now`. Returns the names fired.

        Background timers are started as tasks so a long sync batch never
        holds back the quota reset or the reports.
        """
        now = now or self.clock()
        fired = []
        for timer in self.timers:
            if timer.next_run is None:
                timer.next_run = timer.compute_next_run(now)
                continue
            if timer.next_run > now:
                continue

            fired.append(timer.name)
            timer.next_run = timer.compute_next_run(now)
            if timer.background:
                task = asyncio.create_task(self._run_timer(timer, now))
                self._background.add(task)
                task.add_done_callback(self._background.discard)
            else:
                await self._run_timer(timer, now)
        return fired

    async def drain(self) -> None:
        """Wait for background timer runs started by `tick`."""
        await asyncio.gather(*self._background)

    async def _run_timer(self, timer: NamedTimer, now: datetime) -> None:
        try:
            await timer.handler(now)
        except Exception as exc:
            logger.error(
                "scheduler_timer_failed",
                timer=timer.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def reset_quota(self, now: datetime) -> bool:
        return await self.governor.daily_reset(now)

    async def daily_summary(self, now: datetime) -> dict[str, Any]:
        """Log the totals of the quota day that just closed."""
        closed_day = (quota_date(now) - timedelta(days=1)).isoformat()
        history = await self.governor.history(days=2, now=now)
        closed = next((summary for summary in history if summary.date == closed_day), None)
        stats = await self.orchestrator.sync_stats()

        summary = {
            "date": closed_day,
            "total_usage": closed.total_usage if closed else 0,
            "percentage_used": closed.percentage_used if closed else 0.0,
            "total_entities": stats.total_entities,
            "synced_entities": stats.synced_entities,
            "total_videos": stats.total_videos,
        }
        logger.info("daily_quota_summary", **summary)
        return summary

    async def daily_analytics(self, now: datetime):
        report = await self.governor.analytics(now)
        logger.info(
            "daily_quota_analytics",
            average_daily_7d=report.last_7_days.average_daily,
            trend_7d=report.last_7_days.trend,
            cache_hit_rate=report.efficiency.cache_hit_rate,
            risk_level=report.forecast.risk_level,
            recommendations=report.forecast.recommendations,
        )
        return report

    async def run_incremental_sync(self, now: datetime | None = None) -> list[SyncResult] | None:
        """Run one incremental batch. Returns None if a batch is already running."""
        if self._incremental_in_progress:
            logger.warning("incremental_sync_skipped", reason="previous batch still running")
            return None

        self._incremental_in_progress = True
        try:
            results = await self.orchestrator.sync_all_incremental()
            logger.info(
                "incremental_sync_finished",
                synced=len(results),
                videos_added=sum(result.videos_added for result in results),
                quota_used=sum(result.quota_used for result in results),
            )
            return results
        finally:
            self._incremental_in_progress = False

    async def quarterly_reminder(self, now: datetime) -> list[dict[str, Any]]:
        entities = await self.orchestrator.entities_needing_full_sync()
        logger.info(
            "quarterly_sync_reminder",
            entities_needing_full_sync=len(entities),
            names=[entity["name"] for entity in entities[:20]],
        )
        return entities

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def incremental_in_progress(self) -> bool:
        return self._incremental_in_progress

    def scheduler_status(self) -> dict[str, Any]:
        now = self.clock()
        return {
            "is_running": self._task is not None and not self._task.done(),
            "incremental_sync_in_progress": self._incremental_in_progress,
            "timers": [
                {
                    "name": timer.name,
                    "schedule": timer.schedule,
                    "next_run": timer.next_run or timer.compute_next_run(now),
                }
                for timer in self.timers
            ],
        }
