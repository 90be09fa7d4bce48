"""Quota and sync schemas shared by the governor, orchestrator and API routes."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

Trend = Literal["increasing", "decreasing", "stable"]
RiskLevel = Literal["low", "medium", "high"]


class SyncPriority(str, Enum):
    """Priority classes, highest first."""

    CRITICAL = "CRITICAL"  # official channels, featured bands
    HIGH = "HIGH"  # active bands, first syncs
    MEDIUM = "MEDIUM"  # regular incremental syncs
    LOW = "LOW"  # historical backfills


class QuotaAlertLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    DEPLETED = "DEPLETED"

    @property
    def rank(self) -> int:
        return _ALERT_RANK[self]


_ALERT_RANK = {
    QuotaAlertLevel.INFO: 0,
    QuotaAlertLevel.WARNING: 1,
    QuotaAlertLevel.CRITICAL: 2,
    QuotaAlertLevel.DEPLETED: 3,
}


class SyncJobType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncJobStatus(str, Enum):
    """Sync job lifecycle: pending -> in_progress -> completed | failed."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Governor
# ---------------------------------------------------------------------------


class QuotaStatus(BaseModel):
    current_usage: int
    limit: int
    remaining: int
    percentage_used: float
    alert_level: QuotaAlertLevel
    reset_time: datetime
    is_emergency_mode: bool
    last_updated: datetime


class AvailabilityCheck(BaseModel):
    available: bool
    reason: str | None = None


class TrackingContext(BaseModel):
    """Who a tracked call was made for, and how it was served."""

    entity_id: str | None = None
    entity_name: str | None = None
    job_id: str | None = None
    cache_hit: bool = False
    error_message: str | None = None
    metadata: dict[str, Any] | None = None


class SyncCostInputs(BaseModel):
    """Inputs to the deterministic sync cost projection."""

    has_channel_id: bool
    estimated_video_count: int = Field(ge=0)
    use_search: bool
    search_queries_count: int = Field(default=3, ge=0)


class CostEstimate(BaseModel):
    estimated_cost: int
    breakdown: dict[str, int]
    sync_method: str
    is_high_cost: bool


class AllocationPlan(BaseModel):
    job_id: str
    entity_id: str
    priority: SyncPriority
    estimated_cost: int
    allocated_quota: float
    approved: bool
    reason: str | None = None
    timestamp: datetime


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


class TopConsumer(BaseModel):
    entity_id: str
    entity_name: str
    quota_used: int
    percentage_of_total: float


class TodayUsage(BaseModel):
    used: int
    remaining: int
    percentage_used: float
    operation_breakdown: dict[str, int]
    top_consumers: list[TopConsumer]


class UsageWindow(BaseModel):
    average_daily: float
    peak_daily: int
    total_used: int
    trend: Trend


class ExpensiveOperation(BaseModel):
    operation: str
    count: int
    total_cost: int


class EfficiencyStats(BaseModel):
    cache_hit_rate: float
    quota_saved_by_cache: int
    average_cost_per_sync: float
    most_expensive_operations: list[ExpensiveOperation]


class Forecast(BaseModel):
    estimated_daily_usage: int
    projected_monthly_usage: int
    risk_level: RiskLevel
    recommendations: list[str]


class QuotaAnalytics(BaseModel):
    today: TodayUsage
    last_7_days: UsageWindow
    last_30_days: UsageWindow
    efficiency: EfficiencyStats
    forecast: Forecast


class AlertOut(BaseModel):
    id: str
    level: QuotaAlertLevel
    message: str
    current_usage: int
    timestamp: datetime
    acknowledged: bool
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None


class DailySummaryOut(BaseModel):
    date: str
    total_usage: int
    quota_limit: int
    percentage_used: float


class UsageLogOut(BaseModel):
    id: str
    operation: str
    cost: int
    timestamp: datetime
    entity_id: str | None = None
    entity_name: str | None = None
    sync_job_id: str | None = None
    success: bool
    cache_hit: bool
    error_message: str | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class SyncOptions(BaseModel):
    """Per-run options. Unset fields fall back to the entity's own state."""

    published_after: datetime | None = None
    published_before: datetime | None = None
    max_items: int | None = Field(default=None, ge=1)
    force_full: bool = False
    priority: SyncPriority | None = None


class SyncResult(BaseModel):
    entity_id: str
    entity_name: str
    sync_job_id: str | None = None
    status: SyncJobStatus
    job_type: SyncJobType
    priority: SyncPriority
    videos_found: int = 0
    videos_added: int = 0
    videos_updated: int = 0
    estimated_cost: int = 0
    quota_used: int = 0
    quota_approved: bool = False
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0


class SyncJobOut(BaseModel):
    id: str
    entity_id: str
    entity_type: str
    entity_name: str | None = None
    job_type: SyncJobType
    status: SyncJobStatus
    priority: SyncPriority
    videos_found: int
    videos_added: int
    videos_updated: int
    errors: list[str]
    estimated_quota_cost: int
    actual_quota_cost: int
    quota_approved: bool
    quota_approval_reason: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class SyncStats(BaseModel):
    total_entities: int
    synced_entities: int
    unsynced_entities: int
    total_videos: int
    daily_quota_used: int
    daily_quota_remaining: int
    quota_reset_time: datetime
    is_emergency_mode: bool
    recent_jobs: list[SyncJobOut]
