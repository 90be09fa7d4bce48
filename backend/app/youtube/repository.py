"""Persistence for quota audit data and sync job records.

Usage logs, alerts and daily summaries are append-only (alerts only ever
gain acknowledgement fields). Time-window queries take UTC bounds from
app.youtube.quota_clock so "today" always means the Pacific quota day.
"""

from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import QuotaAlert, QuotaDailySummary, QuotaUsageLog, SyncJob
from app.youtube.schemas import ExpensiveOperation, TopConsumer


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to datetimes read back from backends that drop tzinfo (SQLite)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class QuotaRepository:
    """Reads and writes usage logs, alerts and daily summaries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_usage_log(
        self,
        operation: str,
        cost: int,
        success: bool,
        cache_hit: bool,
        timestamp: datetime,
        entity_id: str | None = None,
        entity_name: str | None = None,
        sync_job_id: str | None = None,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                QuotaUsageLog(
                    operation=operation,
                    cost=cost,
                    timestamp=timestamp,
                    entity_id=entity_id,
                    entity_name=entity_name,
                    sync_job_id=sync_job_id,
                    success=success,
                    cache_hit=cache_hit,
                    error_message=error_message,
                    metadata_=metadata,
                )
            )
            await session.commit()

    async def add_alert(self, level: str, message: str, current_usage: int, timestamp: datetime) -> str:
        async with self.session_factory() as session:
            alert = QuotaAlert(
                level=level,
                message=message,
                current_usage=current_usage,
                timestamp=timestamp,
                acknowledged=False,
            )
            session.add(alert)
            await session.commit()
            return alert.id

    async def add_daily_summary(self, day: date, total_usage: int, quota_limit: int) -> bool:
        """Archive one closed quota day.

        Returns:
            False when a summary for `day` already exists. Existing rows are
            never overwritten.
        """
        async with self.session_factory() as session:
            existing = await session.execute(select(QuotaDailySummary.id).where(QuotaDailySummary.date == day))
            if existing.scalar_one_or_none() is not None:
                return False

            session.add(
                QuotaDailySummary(
                    date=day,
                    total_usage=total_usage,
                    quota_limit=quota_limit,
                    percentage_used=(total_usage / quota_limit) * 100 if quota_limit else 0.0,
                )
            )
            await session.commit()
            return True

    async def acknowledge_alert(self, alert_id: str, acknowledged_by: str, now: datetime) -> QuotaAlert | None:
        async with self.session_factory() as session:
            alert = await session.get(QuotaAlert, alert_id)
            if alert is None:
                return None
            alert.acknowledged = True
            alert.acknowledged_at = now
            alert.acknowledged_by = acknowledged_by
            await session.commit()
            return alert

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_alerts(self, limit: int = 50, unacknowledged_only: bool = False) -> list[QuotaAlert]:
        query = select(QuotaAlert)
        if unacknowledged_only:
            query = query.where(QuotaAlert.acknowledged.is_(False))
        query = query.order_by(QuotaAlert.timestamp.desc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def daily_summaries(self, since: date) -> list[QuotaDailySummary]:
        """Summaries on or after `since`, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(QuotaDailySummary).where(QuotaDailySummary.date >= since).order_by(QuotaDailySummary.date.asc())
            )
            return list(result.scalars().all())

    async def usage_logs(
        self,
        limit: int = 100,
        entity_id: str | None = None,
        operation: str | None = None,
    ) -> list[QuotaUsageLog]:
        query = select(QuotaUsageLog)
        if entity_id:
            query = query.where(QuotaUsageLog.entity_id == entity_id)
        if operation:
            query = query.where(QuotaUsageLog.operation == operation)
        query = query.order_by(QuotaUsageLog.timestamp.desc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def operation_breakdown(self, start: datetime, end: datetime) -> dict[str, int]:
        """Units charged per operation for successful calls in [start, end)."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(QuotaUsageLog.operation, func.coalesce(func.sum(QuotaUsageLog.cost), 0))
                .where(
                    QuotaUsageLog.timestamp >= start,
                    QuotaUsageLog.timestamp < end,
                    QuotaUsageLog.success.is_(True),
                )
                .group_by(QuotaUsageLog.operation)
            )
            return {operation: int(total) for operation, total in result.all()}

    async def top_consumers(self, start: datetime, end: datetime, limit: int = 10) -> list[TopConsumer]:
        cost_sum = func.sum(QuotaUsageLog.cost)
        async with self.session_factory() as session:
            result = await session.execute(
                select(QuotaUsageLog.entity_id, func.max(QuotaUsageLog.entity_name), cost_sum)
                .where(
                    QuotaUsageLog.timestamp >= start,
                    QuotaUsageLog.timestamp < end,
                    QuotaUsageLog.success.is_(True),
                    QuotaUsageLog.entity_id.is_not(None),
                )
                .group_by(QuotaUsageLog.entity_id)
                .order_by(cost_sum.desc())
                .limit(limit)
            )
            rows = result.all()

        total = sum(int(used or 0) for _, _, used in rows)
        return [
            TopConsumer(
                entity_id=entity_id,
                entity_name=entity_name or "Unknown",
                quota_used=int(used or 0),
                percentage_of_total=(int(used or 0) / total) * 100 if total else 0.0,
            )
            for entity_id, entity_name, used in rows
        ]

    async def cache_stats(self, start: datetime, end: datetime) -> tuple[int, dict[str, int]]:
        """Return (total requests, cache hits per operation) for [start, end)."""
        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count(QuotaUsageLog.id)).where(
                    QuotaUsageLog.timestamp >= start,
                    QuotaUsageLog.timestamp < end,
                )
            )
            result = await session.execute(
                select(QuotaUsageLog.operation, func.count(QuotaUsageLog.id))
                .where(
                    QuotaUsageLog.timestamp >= start,
                    QuotaUsageLog.timestamp < end,
                    QuotaUsageLog.cache_hit.is_(True),
                )
                .group_by(QuotaUsageLog.operation)
            )
            hits = {operation: int(count) for operation, count in result.all()}
        return int(total or 0), hits

    async def average_cost_per_sync(self, since: datetime) -> float:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.sum(QuotaUsageLog.cost))
                .where(
                    QuotaUsageLog.timestamp >= since,
                    QuotaUsageLog.sync_job_id.is_not(None),
                )
                .group_by(QuotaUsageLog.sync_job_id)
            )
            per_job = [int(total or 0) for (total,) in result.all()]
        return sum(per_job) / len(per_job) if per_job else 0.0

    async def most_expensive_operations(self, since: datetime, limit: int = 5) -> list[ExpensiveOperation]:
        cost_sum = func.coalesce(func.sum(QuotaUsageLog.cost), 0)
        async with self.session_factory() as session:
            result = await session.execute(
                select(QuotaUsageLog.operation, func.count(QuotaUsageLog.id), cost_sum)
                .where(
                    QuotaUsageLog.timestamp >= since,
                    QuotaUsageLog.success.is_(True),
                )
                .group_by(QuotaUsageLog.operation)
                .order_by(cost_sum.desc())
                .limit(limit)
            )
            return [
                ExpensiveOperation(operation=operation, count=int(count), total_cost=int(total))
                for operation, count, total in result.all()
            ]

    async def job_cost(self, job_id: str) -> int:
        """Sum of units charged to calls tagged with `job_id`."""
        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.coalesce(func.sum(QuotaUsageLog.cost), 0)).where(QuotaUsageLog.sync_job_id == job_id)
            )
            return int(total or 0)


class SyncJobRepository:
    """Sync job rows. Each run owns its row; nothing else mutates it."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, **fields: Any) -> SyncJob:
        async with self.session_factory() as session:
            job = SyncJob(**fields)
            session.add(job)
            await session.commit()
            await session.refresh(job)
            return job

    async def update(self, job_id: str, **fields: Any) -> SyncJob | None:
        async with self.session_factory() as session:
            job = await session.get(SyncJob, job_id)
            if job is None:
                return None
            for name, value in fields.items():
                setattr(job, name, value)
            await session.commit()
            await session.refresh(job)
            return job

    async def get(self, job_id: str) -> SyncJob | None:
        async with self.session_factory() as session:
            return await session.get(SyncJob, job_id)

    async def recent(self, limit: int = 20) -> list[SyncJob]:
        async with self.session_factory() as session:
            result = await session.execute(select(SyncJob).order_by(SyncJob.created_at.desc()).limit(limit))
            return list(result.scalars().all())
