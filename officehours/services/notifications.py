"""In-app notifications sent by the booking, waitlist and reminder flows."""

import logging
from datetime import date, time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.models.appointment import Appointment
from officehours.models.notification import Notification
from officehours.models.slot import AvailabilitySlot
from officehours.models.user import User

logger = logging.getLogger(__name__)

KIND_BOOKING_CONFIRMED = 'booking_confirmed'
KIND_NEW_BOOKING = 'new_booking'
KIND_BOOKING_CANCELLED = 'booking_cancelled'
KIND_WAITLIST_AVAILABLE = 'waitlist_available'
KIND_APPOINTMENT_REMINDER = 'appointment_reminder'

APPOINTMENTS_LINK = '/my-appointments'
BOOKING_LINK = '/book'
UNSPECIFIED_REASON = 'not specified'


def format_day(value: date) -> str:
    return f'{value:%b} {value.day}'


def format_clock(value: time) -> str:
    return value.strftime('%H:%M')


def notify(
    db: Session,
    user_id: int,
    kind: str,
    title: str,
    message: str,
    link: str | None = None,
) -> Notification | None:
    """Store a notification for ``user_id``.

    Storage failures are logged and swallowed; the caller's operation has
    already succeeded by the time notifications go out.
    """
    try:
        notification = Notification(
            user_id=user_id,
            kind=kind,
            title=title,
            message=message,
            link=link,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Failed to store %s notification for user %s', kind, user_id)
        return None

    logger.debug('Notified user %s: %s', user_id, kind)
    return notification


def _load_appointment(db: Session, appointment_id: int) -> tuple[Appointment, User, User] | None:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        logger.warning('Appointment %s vanished before notifications were sent', appointment_id)
        return None
    student = db.get(User, appointment.student_id)
    instructor = db.get(User, appointment.instructor_id)
    if student is None or instructor is None:
        logger.warning('Appointment %s references a missing user', appointment_id)
        return None
    return appointment, student, instructor


def notify_booking_confirmed(db: Session, appointment_id: int) -> Notification | None:
    loaded = _load_appointment(db, appointment_id)
    if loaded is None:
        return None
    appointment, student, instructor = loaded
    return notify(
        db,
        student.id,
        KIND_BOOKING_CONFIRMED,
        'Appointment Confirmed',
        f'Your appointment with {instructor.full_name} on {format_day(appointment.date)} '
        f'at {format_clock(appointment.start_time)} has been confirmed.',
        APPOINTMENTS_LINK,
    )


def notify_new_booking(db: Session, appointment_id: int) -> Notification | None:
    loaded = _load_appointment(db, appointment_id)
    if loaded is None:
        return None
    appointment, student, instructor = loaded
    return notify(
        db,
        instructor.id,
        KIND_NEW_BOOKING,
        'New Appointment',
        f'{student.full_name} has booked an appointment on {format_day(appointment.date)} '
        f'at {format_clock(appointment.start_time)}.',
        APPOINTMENTS_LINK,
    )


def notify_booking_cancelled(db: Session, appointment_id: int) -> Notification | None:
    """Tell the party who did not cancel that the appointment is off.

    When an admin cancels, both participants are "other parties"; the student
    is notified first and the instructor second.
    """
    loaded = _load_appointment(db, appointment_id)
    if loaded is None:
        return None
    appointment, student, instructor = loaded

    reason = appointment.cancellation_reason or UNSPECIFIED_REASON
    when = f'{format_day(appointment.date)} at {format_clock(appointment.start_time)}'

    if appointment.cancelled_by == student.id:
        messages = [(instructor, f'{student.full_name} has cancelled the appointment on {when}.')]
    elif appointment.cancelled_by == instructor.id:
        messages = [(student, f'{instructor.full_name} has cancelled the appointment on {when}.')]
    else:
        messages = [
            (student, f'An administrator has cancelled your appointment with {instructor.full_name} on {when}.'),
            (instructor, f'An administrator has cancelled your appointment with {student.full_name} on {when}.'),
        ]

    sent = None
    for recipient, message in messages:
        sent = notify(
            db,
            recipient.id,
            KIND_BOOKING_CANCELLED,
            'Appointment Cancelled',
            f'{message} Reason: {reason}.',
            APPOINTMENTS_LINK,
        )
    return sent


def notify_waitlist_spot_available(db: Session, student_id: int, slot_id: int) -> Notification | None:
    slot = db.get(AvailabilitySlot, slot_id)
    if slot is None:
        logger.warning('Slot %s vanished before the waitlist could be notified', slot_id)
        return None
    instructor = db.get(User, slot.instructor_id)
    instructor_name = instructor.full_name if instructor else 'your instructor'
    return notify(
        db,
        student_id,
        KIND_WAITLIST_AVAILABLE,
        'Spot Available!',
        f"A spot has opened up for {instructor_name}'s office hours on {format_day(slot.date)} "
        f'at {format_clock(slot.start_time)}. Book it before someone else does!',
        BOOKING_LINK,
    )


def notify_appointment_reminder(
    db: Session,
    appointment: Appointment,
    recipient: User,
    other_party: User,
    label: str,
) -> Notification | None:
    return notify(
        db,
        recipient.id,
        KIND_APPOINTMENT_REMINDER,
        f'Appointment {label}',
        f'Reminder: You have an appointment with {other_party.full_name} on '
        f'{format_day(appointment.date)} at {format_clock(appointment.start_time)}.',
        APPOINTMENTS_LINK,
    )


def list_notifications(db: Session, user_id: int, include_read: bool = False, limit: int = 50) -> list[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if not include_read:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def count_unread(db: Session, user_id: int) -> int:
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).count()


def mark_read(db: Session, user_id: int, notification_id: int) -> bool:
    updated = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).update({Notification.is_read: True}, synchronize_session=False)
    db.commit()
    return updated > 0


def mark_all_read(db: Session, user_id: int) -> int:
    updated = db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.is_read.is_(False),
    ).update({Notification.is_read: True}, synchronize_session=False)
    db.commit()
    return updated
