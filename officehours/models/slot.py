"""Availability slot model definitions."""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
    func,
)
from officehours.database import Base

MEETING_IN_PERSON = 'in-person'
MEETING_VIRTUAL = 'virtual'
MEETING_EITHER = 'either'
SLOT_MEETING_TYPES = (MEETING_IN_PERSON, MEETING_VIRTUAL, MEETING_EITHER)
BOOKING_MEETING_TYPES = (MEETING_IN_PERSON, MEETING_VIRTUAL)


class AvailabilitySlot(Base):
    """Represents a window an instructor has opened for office hours.

    Whether the slot is booked is not stored here; it is derived from the
    presence of a scheduled appointment that references the slot.
    """
    __tablename__ = "availability_slots"
    __table_args__ = (
        UniqueConstraint('instructor_id', 'date', 'start_time', 'end_time', name='uq_slots_instructor_window'),
    )

    id = Column(Integer, primary_key=True)
    instructor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    location = Column(String)
    meeting_type = Column(String, nullable=False, default=MEETING_EITHER)
    notes = Column(String)
    recurring_pattern_id = Column(Integer, ForeignKey("recurring_patterns.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
