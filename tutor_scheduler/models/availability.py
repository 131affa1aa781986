"""Availability policy model definitions."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, String, Time
from tutor_scheduler.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AvailabilityDefault(Base):
    """Weekly template row: bookable hours for one weekday (0 = Monday)."""
    __tablename__ = "availability_defaults"

    id = Column(Integer, primary_key=True)
    day_of_week = Column(Integer, nullable=False, unique=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


class AvailabilityException(Base):
    """Date-scoped exclusion. No start/end means the whole day is closed."""
    __tablename__ = "availability_exceptions"
    __table_args__ = (
        # NULL start times (full-day rows) are distinct, so only partial windows collide here.
        Index("uq_availability_exceptions_date_start", "date", "start_time", unique=True),
    )

    id = Column(Integer, primary_key=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    type = Column(String(32), nullable=False, default="unavailable")
    reason = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)
