"""Band model: catalog entity synced from an official channel or keyword search."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String

from app.db.base import Base


class Band(Base):
    __tablename__ = "bands"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    school_name = Column(String(255), nullable=False)

    youtube_channel_id = Column(String(64), nullable=True)  # stable UC... id when known
    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)

    # Sync bookkeeping
    last_synced_at = Column(DateTime(timezone=True), nullable=True, index=True)
    first_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_full_sync_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
