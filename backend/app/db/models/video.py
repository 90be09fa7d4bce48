"""Video model: one row per YouTube video, keyed by its external id."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, Text

from app.db.base import Base


class Video(Base):
    __tablename__ = "videos"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    youtube_id = Column(String(32), nullable=False, unique=True, index=True)

    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    thumbnail_url = Column(Text, nullable=False, default="")
    duration_seconds = Column(Integer, nullable=False, default=0)
    published_at = Column(DateTime(timezone=True), nullable=True)
    view_count = Column(BigInteger, nullable=False, default=0)
    like_count = Column(BigInteger, nullable=False, default=0)

    channel_id = Column(String(64), nullable=True)
    channel_title = Column(String(255), nullable=True)

    band_id = Column(String(36), ForeignKey("bands.id"), nullable=True, index=True)
    creator_id = Column(String(36), ForeignKey("creators.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
