"""Re-export all models so Base.metadata sees them."""

from app.db.models.band import Band
from app.db.models.creator import Creator
from app.db.models.quota_alert import QuotaAlert
from app.db.models.quota_daily_summary import QuotaDailySummary
from app.db.models.quota_usage_log import QuotaUsageLog
from app.db.models.sync_job import SyncJob
from app.db.models.video import Video

__all__ = [
    "Band",
    "Creator",
    "QuotaAlert",
    "QuotaDailySummary",
    "QuotaUsageLog",
    "SyncJob",
    "Video",
]
