"""SyncJob model: one row per ingestion run for a band or creator."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_id = Column(String(36), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)  # band, creator
    entity_name = Column(String(255), nullable=True)

    job_type = Column(String(20), nullable=False)  # full, incremental
    status = Column(String(20), nullable=False, default="pending")  # SyncJobStatus values
    priority = Column(String(20), nullable=False)

    # Requested window
    published_after = Column(DateTime(timezone=True), nullable=True)
    published_before = Column(DateTime(timezone=True), nullable=True)
    max_videos = Column(Integer, nullable=True)

    # Results
    videos_found = Column(Integer, nullable=False, default=0)
    videos_added = Column(Integer, nullable=False, default=0)
    videos_updated = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    error_message = Column(Text, nullable=True)

    # Quota
    estimated_quota_cost = Column(Integer, nullable=False, default=0)
    actual_quota_cost = Column(Integer, nullable=False, default=0)
    quota_approved = Column(Boolean, nullable=False, default=False)
    quota_approval_reason = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
