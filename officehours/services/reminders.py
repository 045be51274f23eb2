"""Appointment reminder sweep.

Each scheduled appointment gets at most one reminder of each kind. A kind is
due while the time left before the start lies inside its window; the windows
are wider than the sweep interval so a sweep can never step over one. The
sent timestamp is stored on the appointment and is set once a send has been
attempted, whether or not it succeeded.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.models.appointment import STATUS_SCHEDULED, Appointment
from officehours.models.user import User
from officehours.services import audit
from officehours.services.notifications import notify_appointment_reminder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderKind:
    name: str
    min_lead: timedelta
    max_lead: timedelta
    sent_column: str
    preference: str
    label: str


REMINDER_24H = ReminderKind(
    name='24h',
    min_lead=timedelta(hours=23),
    max_lead=timedelta(hours=25),
    sent_column='reminder_24h_sent_at',
    preference='reminder_24h',
    label='tomorrow',
)
REMINDER_1H = ReminderKind(
    name='1h',
    min_lead=timedelta(minutes=30),
    max_lead=timedelta(minutes=90),
    sent_column='reminder_1h_sent_at',
    preference='reminder_1h',
    label='in 1 hour',
)
REMINDER_KINDS = (REMINDER_24H, REMINDER_1H)
LOOKAHEAD = max(kind.max_lead for kind in REMINDER_KINDS)


@dataclass
class ReminderSweepResult:
    scanned: int = 0
    sent: int = 0
    failed: int = 0


def time_until_start(appointment: Appointment, now: datetime) -> timedelta:
    return datetime.combine(appointment.date, appointment.start_time) - now


def due_reminder_kinds(appointment: Appointment, now: datetime) -> list[ReminderKind]:
    remaining = time_until_start(appointment, now)
    if remaining <= timedelta(0):
        return []
    return [
        kind for kind in REMINDER_KINDS
        if getattr(appointment, kind.sent_column) is None
        and kind.min_lead <= remaining <= kind.max_lead
    ]


def find_reminder_candidates(db: Session, now: datetime) -> list[Appointment]:
    horizon = now + LOOKAHEAD
    return db.query(Appointment).filter(
        Appointment.status == STATUS_SCHEDULED,
        Appointment.date >= now.date(),
        Appointment.date <= horizon.date(),
        or_(Appointment.reminder_24h_sent_at.is_(None), Appointment.reminder_1h_sent_at.is_(None)),
    ).order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()


def send_reminder(db: Session, appointment: Appointment, kind: ReminderKind) -> int:
    """Notify both participants who want this kind of reminder. Returns the number sent."""
    student = db.get(User, appointment.student_id)
    instructor = db.get(User, appointment.instructor_id)
    if student is None or instructor is None:
        raise LookupError(f'Appointment {appointment.id} references a missing user')

    sent = 0
    for recipient, other_party in ((student, instructor), (instructor, student)):
        if not getattr(recipient, kind.preference, True):
            logger.debug('User %s opted out of %s reminders', recipient.id, kind.name)
            continue
        if notify_appointment_reminder(db, appointment, recipient, other_party, kind.label) is not None:
            sent += 1
    return sent


def run_reminder_sweep(db: Session, now: datetime | None = None) -> ReminderSweepResult:
    now = now or datetime.now()
    result = ReminderSweepResult()

    for appointment in find_reminder_candidates(db, now):
        result.scanned += 1
        appointment_id = appointment.id
        try:
            for kind in due_reminder_kinds(appointment, now):
                try:
                    if send_reminder(db, appointment, kind) > 0:
                        result.sent += 1
                except Exception:
                    result.failed += 1
                    logger.exception('Failed to send %s reminder for appointment %s', kind.name, appointment_id)

                setattr(appointment, kind.sent_column, now)
                db.commit()
                audit.record(None, audit.REMINDER_SENT, {'appointment_id': appointment_id, 'type': kind.name})
                logger.info('Marked %s reminder sent for appointment %s', kind.name, appointment_id)
        except SQLAlchemyError:
            db.rollback()
            result.failed += 1
            logger.exception('Reminder sweep failed for appointment %s', appointment_id)

    if result.scanned:
        logger.info(
            'Reminder sweep scanned %s appointments, sent %s reminders, %s failures',
            result.scanned, result.sent, result.failed,
        )
    return result
