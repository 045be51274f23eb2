"""Recurring availability pattern model definitions."""

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Time, func
from officehours.database import Base


class RecurringPattern(Base):
    """A weekly window that expands into availability slots.

    ``day_of_week`` follows ``date.weekday()``: Monday is 0, Sunday is 6.
    """
    __tablename__ = "recurring_patterns"

    id = Column(Integer, primary_key=True)
    instructor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    location = Column(String)
    meeting_type = Column(String, nullable=False, default='either')
    buffer_minutes = Column(Integer, nullable=False, default=0)
    notes = Column(String)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
