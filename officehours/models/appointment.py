"""Appointment model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, func, text
from officehours.database import Base

STATUS_SCHEDULED = 'scheduled'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_NO_SHOW = 'no-show'
COMPLETION_STATUSES = (STATUS_COMPLETED, STATUS_NO_SHOW)


class Appointment(Base):
    """Represents a booking of one availability slot by one student.

    Date, times and location are copied from the slot when the booking is
    made, so later edits to the slot never move a confirmed appointment.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            'uq_appointments_slot_scheduled',
            'slot_id',
            unique=True,
            sqlite_where=text("status = 'scheduled'"),
            postgresql_where=text("status = 'scheduled'"),
        ),
        Index('idx_appointments_student_date', 'student_id', 'date'),
    )

    id = Column(Integer, primary_key=True)
    slot_id = Column(Integer, ForeignKey("availability_slots.id", ondelete="SET NULL"))
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    instructor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)
    meeting_type = Column(String, nullable=False)
    location = Column(String)
    meeting_link = Column(String)
    topic = Column(String)
    notes = Column(String)
    cancelled_by = Column(Integer, ForeignKey("users.id"))
    cancellation_reason = Column(String)
    cancelled_at = Column(DateTime)
    reminder_24h_sent_at = Column(DateTime)
    reminder_1h_sent_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
