"""QuotaDailySummary model: archived total for one closed quota day."""

from datetime import datetime, timezone

from sqlalchemy import Column, Date, DateTime, Float, Integer

from app.db.base import Base


class QuotaDailySummary(Base):
    __tablename__ = "quota_daily_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False, unique=True, index=True)  # Pacific quota day
    total_usage = Column(Integer, nullable=False)
    quota_limit = Column(Integer, nullable=False)
    percentage_used = Column(Float, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
