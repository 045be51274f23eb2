"""Waitlist model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, UniqueConstraint, func
from officehours.database import Base


class WaitlistEntry(Base):
    """A student's place in line for a booked slot."""
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        UniqueConstraint('slot_id', 'position', name='uq_waitlist_slot_position'),
    )

    id = Column(Integer, primary_key=True)
    slot_id = Column(Integer, ForeignKey("availability_slots.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    notified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())
