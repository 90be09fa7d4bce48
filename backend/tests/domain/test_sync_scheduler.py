"""Tests for SyncScheduler timers, handlers and the incremental overlap guard."""

import asyncio
from datetime import UTC, datetime, time

import pytest

from app.youtube.catalog import CatalogStore
from app.youtube.ledger import LAST_RESET_KEY, USAGE_KEY
from app.youtube.orchestrator import SyncOrchestrator
from app.youtube.repository import SyncJobRepository
from app.youtube.scheduler import NamedTimer, SyncScheduler
from app.youtube.source_fake import FakeVideoSource

pytestmark = pytest.mark.unit


async def _noop(now):
    return None


@pytest.fixture
def orchestrator(governor, session_factory, settings, now):
    return SyncOrchestrator(
        governor,
        CatalogStore(session_factory),
        SyncJobRepository(session_factory),
        FakeVideoSource(),
        settings,
        clock=lambda: now,
    )


@pytest.fixture
def scheduler(governor, orchestrator, settings, now):
    return SyncScheduler(governor, orchestrator, settings, clock=lambda: now)


class _BlockingOrchestrator:
    """Holds sync_all_incremental open until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def sync_all_incremental(self):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return []


class _FailingOrchestrator:
    async def sync_all_incremental(self):
        raise RuntimeError("catalog unavailable")


# ============================================================================
# Timer arithmetic
# ============================================================================


@pytest.mark.parametrize(
    "name,expected",
    [
        ("quota-reset", datetime(2025, 1, 16, 8, 0, tzinfo=UTC)),
        ("daily-summary", datetime(2025, 1, 16, 8, 5, tzinfo=UTC)),
        ("daily-analytics", datetime(2025, 1, 16, 9, 0, tzinfo=UTC)),
        ("incremental-sync", datetime(2025, 1, 15, 23, 0, tzinfo=UTC)),
        ("quarterly-sync-reminder", datetime(2025, 4, 1, 13, 0, tzinfo=UTC)),
    ],
)
@pytest.mark.asyncio
async def test_next_run_from_winter_noon(scheduler, now, name, expected):
    assert scheduler.timer(name).compute_next_run(now) == expected


@pytest.mark.asyncio
async def test_incremental_sync_in_summer_uses_daylight_time(scheduler):
    after = datetime(2025, 7, 4, 12, 0, tzinfo=UTC)  # 05:00 PDT
    assert scheduler.timer("incremental-sync").compute_next_run(after) == datetime(2025, 7, 4, 22, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_next_run_is_strictly_after(scheduler):
    at_reset = datetime(2025, 1, 16, 8, 0, tzinfo=UTC)
    assert scheduler.timer("quota-reset").compute_next_run(at_reset) == datetime(2025, 1, 17, 8, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_quarterly_timer_only_runs_on_quarter_starts(scheduler):
    timer = scheduler.timer("quarterly-sync-reminder")
    assert timer.runs_on(datetime(2025, 10, 1).date()) is True
    assert timer.runs_on(datetime(2025, 11, 1).date()) is False
    assert timer.runs_on(datetime(2025, 10, 2).date()) is False


def test_timer_that_never_fires():
    timer = NamedTimer("never", (time(0, 0),), _noop, "Never", months=frozenset({2}), day_of_month=30)
    with pytest.raises(ValueError):
        timer.compute_next_run(datetime(2025, 1, 1, tzinfo=UTC))


@pytest.mark.asyncio
async def test_incremental_hours_come_from_settings(governor, orchestrator, settings, now):
    custom = settings.model_copy(update={"scheduler_incremental_hours": [6]})
    timer = SyncScheduler(governor, orchestrator, custom, clock=lambda: now).timer("incremental-sync")

    assert timer.schedule == "Daily at 06:00 Pacific"
    assert timer.compute_next_run(now) == datetime(2025, 1, 16, 14, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_unknown_timer(scheduler):
    with pytest.raises(KeyError):
        scheduler.timer("hourly")


# ============================================================================
# Tick
# ============================================================================


@pytest.mark.asyncio
async def test_first_tick_only_arms_timers(scheduler, now):
    assert await scheduler.tick(now) == []
    assert all(timer.next_run is not None for timer in scheduler.timers)


@pytest.mark.asyncio
async def test_tick_fires_reset_at_pacific_midnight(scheduler, redis, ledger, now):
    await redis.set(LAST_RESET_KEY, "2025-01-15")
    await redis.set(USAGE_KEY, 4200)
    await scheduler.tick(datetime(2025, 1, 16, 7, 0, tzinfo=UTC))

    fired = await scheduler.tick(datetime(2025, 1, 16, 8, 0, 30, tzinfo=UTC))

    assert fired == ["quota-reset"]
    assert await ledger.current_usage() == 0
    assert scheduler.timer("quota-reset").next_run == datetime(2025, 1, 17, 8, 0, tzinfo=UTC)

    fired = await scheduler.tick(datetime(2025, 1, 16, 8, 5, tzinfo=UTC))
    assert fired == ["daily-summary"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_the_tick(governor, settings, now):
    scheduler = SyncScheduler(governor, _FailingOrchestrator(), settings, clock=lambda: now)
    await scheduler.tick(now)

    fired = await scheduler.tick(datetime(2025, 1, 15, 23, 0, tzinfo=UTC))

    assert fired == ["incremental-sync"]
    await scheduler.drain()
    assert scheduler.incremental_in_progress is False


@pytest.mark.asyncio
async def test_running_batch_does_not_delay_the_reset(governor, ledger, settings, now):
    orchestrator = _BlockingOrchestrator()
    scheduler = SyncScheduler(governor, orchestrator, settings, clock=lambda: now)
    await scheduler.tick(now)

    assert await scheduler.tick(datetime(2025, 1, 15, 23, 0, tzinfo=UTC)) == ["incremental-sync"]
    await orchestrator.started.wait()

    fired = await scheduler.tick(datetime(2025, 1, 16, 8, 0, 30, tzinfo=UTC))

    assert fired == ["quota-reset"]
    assert scheduler.incremental_in_progress is True
    assert await ledger.last_reset_date_key() == "2025-01-16"

    orchestrator.release.set()
    await scheduler.drain()
    assert orchestrator.calls == 1
    assert scheduler.incremental_in_progress is False


# ============================================================================
# Handlers
# ============================================================================


@pytest.mark.asyncio
async def test_reset_handler_runs_once_per_day(scheduler):
    midnight = datetime(2025, 1, 16, 8, 0, tzinfo=UTC)
    assert await scheduler.reset_quota(midnight) is True
    assert await scheduler.reset_quota(midnight) is False


@pytest.mark.asyncio
async def test_daily_summary_reports_closed_day(scheduler, redis):
    await redis.set(LAST_RESET_KEY, "2025-01-15")
    await redis.set(USAGE_KEY, 2500)
    midnight = datetime(2025, 1, 16, 8, 0, tzinfo=UTC)
    await scheduler.reset_quota(midnight)

    summary = await scheduler.daily_summary(datetime(2025, 1, 16, 8, 5, tzinfo=UTC))

    assert summary["date"] == "2025-01-15"
    assert summary["total_usage"] == 2500
    assert summary["percentage_used"] == pytest.approx(25.0)


@pytest.mark.asyncio
async def test_daily_analytics_handler(scheduler, now):
    report = await scheduler.daily_analytics(now)
    assert report.forecast.risk_level == "low"


@pytest.mark.asyncio
async def test_incremental_handler_syncs_active_entities(scheduler, add_band):
    band_id = await add_band(youtube_channel_id="UC4aYpLzVYm3wPhX2kQ3lA9g")

    results = await scheduler.run_incremental_sync()

    assert [result.entity_id for result in results] == [band_id]
    assert scheduler.incremental_in_progress is False


@pytest.mark.asyncio
async def test_incremental_batches_never_overlap(governor, settings, now):
    orchestrator = _BlockingOrchestrator()
    scheduler = SyncScheduler(governor, orchestrator, settings, clock=lambda: now)

    first = asyncio.create_task(scheduler.run_incremental_sync())
    await orchestrator.started.wait()

    assert scheduler.incremental_in_progress is True
    assert await scheduler.run_incremental_sync() is None

    orchestrator.release.set()
    assert await first == []
    assert orchestrator.calls == 1
    assert scheduler.incremental_in_progress is False


@pytest.mark.asyncio
async def test_quarterly_reminder_lists_entities(scheduler, add_band, now):
    await add_band(name="Sonic Boom of the South")

    entities = await scheduler.quarterly_reminder(now)

    assert [entity["name"] for entity in entities] == ["Sonic Boom of the South"]


# ============================================================================
# Loop and status
# ============================================================================


@pytest.mark.asyncio
async def test_start_and_stop(scheduler):
    await scheduler.start()
    status = scheduler.scheduler_status()
    assert status["is_running"] is True
    assert {timer["name"] for timer in status["timers"]} == {
        "quota-reset",
        "daily-summary",
        "daily-analytics",
        "incremental-sync",
        "quarterly-sync-reminder",
    }

    await scheduler.stop()
    assert scheduler.scheduler_status()["is_running"] is False


@pytest.mark.asyncio
async def test_status_before_start_reports_next_runs(scheduler):
    status = scheduler.scheduler_status()

    assert status["is_running"] is False
    assert status["incremental_sync_in_progress"] is False
    reset = next(timer for timer in status["timers"] if timer["name"] == "quota-reset")
    assert reset["next_run"] == datetime(2025, 1, 16, 8, 0, tzinfo=UTC)
