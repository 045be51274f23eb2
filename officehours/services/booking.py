"""Booking engine and appointment state transitions.

Booking serializes per slot: the slot row is locked while the checks run
(on backends that support ``SELECT ... FOR UPDATE``) and the partial unique
index ``uq_appointments_slot_scheduled`` rejects a second scheduled appointment
for the same slot even if two requests pass the checks at the same time.
Bookings by one student also serialize on the student's row, and the
overlap check is repeated after the insert is flushed so it holds at commit.
"""

import logging
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from officehours.core.errors import (
    AlreadyCancelled,
    AlreadyTerminal,
    AppointmentInPast,
    ConflictingAppointment,
    Forbidden,
    InvalidStatus,
    MeetingTypeMismatch,
    NotFound,
    NothingToUpdate,
    SlotAlreadyBooked,
    SlotInPast,
)
from officehours.models.appointment import (
    COMPLETION_STATUSES,
    STATUS_CANCELLED,
    STATUS_SCHEDULED,
    Appointment,
)
from officehours.models.slot import BOOKING_MEETING_TYPES, MEETING_EITHER
from officehours.models.user import User
from officehours.services import audit
from officehours.services.notifications import (
    notify_booking_cancelled,
    notify_booking_confirmed,
    notify_new_booking,
)
from officehours.services.outbox import Outbox
from officehours.services.slots import get_active_appointment, get_slot, slot_start
from officehours.services.waitlist import promote_next, remove_student_entries

logger = logging.getLogger(__name__)

SLOT_BOOKING_INDEX = 'uq_appointments_slot_scheduled'


def appointment_start(appointment: Appointment) -> datetime:
    return datetime.combine(appointment.date, appointment.start_time)


def is_participant(actor: User, appointment: Appointment) -> bool:
    return actor.id in (appointment.student_id, appointment.instructor_id)


def find_conflicting_appointment(
    db: Session,
    student_id: int,
    day: date,
    start_time: time,
    end_time: time,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    query = db.query(Appointment).filter(
        Appointment.student_id == student_id,
        Appointment.date == day,
        Appointment.status == STATUS_SCHEDULED,
        Appointment.start_time < end_time,
        Appointment.end_time > start_time,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query.first()


def _is_slot_booking_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return SLOT_BOOKING_INDEX in message or 'appointments.slot_id' in message


def _run_effects(db: Session, effects: Outbox, outbox: Outbox | None) -> None:
    if outbox is None:
        effects.flush(db)


def book_slot(
    db: Session,
    student: User,
    slot_id: int,
    meeting_type: str,
    topic: str | None = None,
    notes: str | None = None,
    outbox: Outbox | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Book ``slot_id`` for ``student``.

    Checks run in a fixed order and each failure has its own error kind:
    NotFound, SlotInPast, MeetingTypeMismatch, SlotAlreadyBooked,
    ConflictingAppointment. Notifications and the audit record are queued on
    ``outbox`` (or run right after the commit when no outbox is given); their
    failure never undoes the booking.
    """
    now = now or datetime.now()
    slot = get_slot(db, slot_id, lock=True)

    if slot_start(slot) <= now:
        raise SlotInPast('Cannot book a slot that has already started.')

    if meeting_type not in BOOKING_MEETING_TYPES:
        raise MeetingTypeMismatch('Meeting type must be in-person or virtual.')

    if slot.meeting_type != MEETING_EITHER and slot.meeting_type != meeting_type:
        raise MeetingTypeMismatch(f'This slot only allows {slot.meeting_type} meetings.')

    if get_active_appointment(db, slot.id) is not None:
        raise SlotAlreadyBooked()

    # Bookings by the same student serialize on the student's row.
    db.query(User).filter(User.id == student.id).with_for_update().one()

    if find_conflicting_appointment(db, student.id, slot.date, slot.start_time, slot.end_time):
        raise ConflictingAppointment()

    appointment = Appointment(
        slot_id=slot.id,
        student_id=student.id,
        instructor_id=slot.instructor_id,
        date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        status=STATUS_SCHEDULED,
        meeting_type=meeting_type,
        location=slot.location,
        topic=topic,
        notes=notes,
    )
    db.add(appointment)
    removed_entries = remove_student_entries(db, student.id, slot.id)

    try:
        db.flush()
        # SQLite ignores FOR UPDATE; the flush holds its write lock, so a concurrent
        # booking that slipped past the first check is visible here.
        if find_conflicting_appointment(
            db, student.id, slot.date, slot.start_time, slot.end_time,
            exclude_appointment_id=appointment.id,
        ):
            db.rollback()
            raise ConflictingAppointment()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _is_slot_booking_violation(exc):
            raise SlotAlreadyBooked() from exc
        raise
    db.refresh(appointment)

    logger.info(
        'Student %s booked slot %s as appointment %s (removed %s waitlist entries)',
        student.id, appointment.slot_id, appointment.id, removed_entries,
    )

    effects = outbox if outbox is not None else Outbox()
    effects.add(notify_new_booking, appointment.id)
    effects.add(notify_booking_confirmed, appointment.id)
    effects.add(audit.record_effect, student.id, audit.APPOINTMENT_BOOKED, {
        'appointment_id': appointment.id,
        'slot_id': appointment.slot_id,
        'instructor_id': appointment.instructor_id,
        'date': appointment.date,
    })
    _run_effects(db, effects, outbox)

    return appointment


def get_appointment(db: Session, appointment_id: int, lock: bool = False) -> Appointment:
    query = db.query(Appointment).filter(Appointment.id == appointment_id)
    if lock:
        query = query.with_for_update()
    appointment = query.first()
    if appointment is None:
        raise NotFound('Appointment not found.')
    return appointment


def get_appointment_for(db: Session, actor: User, appointment_id: int) -> Appointment:
    appointment = get_appointment(db, appointment_id)
    if not (actor.is_admin or is_participant(actor, appointment)):
        raise Forbidden('Access denied.')
    return appointment


def cancel_appointment(
    db: Session,
    actor: User,
    appointment_id: int,
    reason: str | None = None,
    outbox: Outbox | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Cancel a scheduled appointment and hand the slot to the waitlist.

    The freed slot becomes bookable as soon as the status changes. The other
    party's notification and the waitlist promotion are always queued, and run
    independently of this commit.
    """
    now = now or datetime.now()
    appointment = get_appointment(db, appointment_id, lock=True)

    if appointment.status == STATUS_CANCELLED:
        raise AlreadyCancelled()

    if appointment.status != STATUS_SCHEDULED:
        raise AlreadyTerminal()

    if not (actor.is_admin or is_participant(actor, appointment)):
        raise Forbidden('Not authorized to cancel this appointment.')

    if appointment_start(appointment) <= now:
        raise AppointmentInPast()

    reason = (reason or '').strip() or None
    appointment.status = STATUS_CANCELLED
    appointment.cancelled_by = actor.id
    appointment.cancellation_reason = reason
    appointment.cancelled_at = now
    db.commit()
    db.refresh(appointment)

    logger.info('Appointment %s cancelled by user %s', appointment.id, actor.id)

    effects = outbox if outbox is not None else Outbox()
    effects.add(notify_booking_cancelled, appointment.id)
    effects.add(audit.record_effect, actor.id, audit.APPOINTMENT_CANCELLED, {
        'appointment_id': appointment.id,
        'cancelled_by_role': actor.role,
        'reason': reason,
    })
    if appointment.slot_id is not None:
        effects.add(promote_next, appointment.slot_id)
    _run_effects(db, effects, outbox)

    return appointment


def complete_appointment(
    db: Session,
    actor: User,
    appointment_id: int,
    status: str,
    outbox: Outbox | None = None,
) -> Appointment:
    if status not in COMPLETION_STATUSES:
        raise InvalidStatus()

    appointment = get_appointment(db, appointment_id, lock=True)

    if not (actor.is_admin or appointment.instructor_id == actor.id):
        raise Forbidden('Only the instructor can mark completion.')

    if appointment.status != STATUS_SCHEDULED:
        raise AlreadyTerminal()

    appointment.status = status
    db.commit()
    db.refresh(appointment)

    logger.info('Appointment %s marked %s by user %s', appointment.id, status, actor.id)

    effects = outbox if outbox is not None else Outbox()
    effects.add(audit.record_effect, actor.id, audit.completion_action(status), {'appointment_id': appointment.id})
    _run_effects(db, effects, outbox)

    return appointment


def update_appointment(db: Session, actor: User, appointment_id: int, changes: dict) -> Appointment:
    """Edit topic, notes or meeting link of a scheduled appointment."""
    appointment = get_appointment(db, appointment_id)

    if not (actor.is_admin or is_participant(actor, appointment)):
        raise Forbidden('Not authorized.')

    if appointment.status != STATUS_SCHEDULED:
        raise AlreadyTerminal()

    if 'meeting_link' in changes and not (actor.is_admin or appointment.instructor_id == actor.id):
        raise Forbidden('Only the instructor can set the meeting link.')

    updates = {field: changes[field] for field in ('topic', 'notes', 'meeting_link') if field in changes}
    if not updates:
        raise NothingToUpdate()

    for field, value in updates.items():
        setattr(appointment, field, value)
    db.commit()
    db.refresh(appointment)

    audit.record(actor.id, audit.APPOINTMENT_UPDATED, {
        'appointment_id': appointment.id,
        'updated_fields': sorted(updates),
    })
    return appointment


def list_appointments_for(
    db: Session,
    user: User,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    upcoming_only: bool = False,
    now: datetime | None = None,
) -> list[Appointment]:
    now = now or datetime.now()
    query = db.query(Appointment).filter(
        (Appointment.student_id == user.id) | (Appointment.instructor_id == user.id)
    )

    if status:
        query = query.filter(Appointment.status == status)
    if start_date:
        query = query.filter(Appointment.date >= start_date)
    if end_date:
        query = query.filter(Appointment.date <= end_date)
    if upcoming_only:
        query = query.filter(
            Appointment.date >= now.date(),
            Appointment.status == STATUS_SCHEDULED,
        )

    return query.order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()
