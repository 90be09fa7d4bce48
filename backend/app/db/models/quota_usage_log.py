"""QuotaUsageLog model: append-only audit row per tracked YouTube call attempt."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base


class QuotaUsageLog(Base):
    __tablename__ = "quota_usage_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation = Column(String(50), nullable=False, index=True)
    cost = Column(Integer, nullable=False, default=0)  # 0 for cache hits and failed calls
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)

    entity_id = Column(String(36), nullable=True, index=True)
    entity_name = Column(String(255), nullable=True)
    sync_job_id = Column(String(36), nullable=True, index=True)

    success = Column(Boolean, nullable=False)
    cache_hit = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)
