import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from officehours.core import config
from officehours.core.errors import Forbidden, InvalidSlot, NotFound, SlotOverlap
from officehours.models.appointment import STATUS_SCHEDULED, Appointment
from officehours.models.recurring_pattern import RecurringPattern
from officehours.models.slot import MEETING_EITHER, AvailabilitySlot
from officehours.models.user import User
from officehours.services import audit
from officehours.services.slots import detach_slots, find_overlapping_slot, validate_slot_window

logger = logging.getLogger(__name__)

DAYS_OF_WEEK = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']


def iterate_pattern_dates(pattern: RecurringPattern, until: date) -> list[date]:
    current = pattern.start_date + timedelta(days=(pattern.day_of_week - pattern.start_date.weekday()) % 7)
    dates = []
    while current <= until:
        dates.append(current)
        current += timedelta(days=7)
    return dates


def iterate_slot_windows(
    start_time: time,
    end_time: time,
    slot_duration: int,
    buffer_minutes: int = 0,
) -> list[tuple[time, time]]:
    """Split a daily window into slots of ``slot_duration`` minutes, each followed by a buffer."""
    anchor = date.min
    window_end = datetime.combine(anchor, end_time)
    current = datetime.combine(anchor, start_time)
    step = timedelta(minutes=slot_duration + buffer_minutes)
    duration = timedelta(minutes=slot_duration)

    windows = []
    while current + duration <= window_end:
        windows.append((current.time(), (current + duration).time()))
        current += step
    return windows


def generate_slots_for_pattern(
    db: Session,
    pattern: RecurringPattern,
    slot_duration: int = config.DEFAULT_SLOT_DURATION_MINUTES,
    weeks_ahead: int = config.RECURRING_WEEKS_AHEAD,
    now: datetime | None = None,
) -> int:
    """Create the pattern's future slots that do not exist yet. Returns the number created."""
    if slot_duration <= 0:
        raise InvalidSlot('Slot duration must be positive.')

    now = now or datetime.now()
    horizon = now.date() + timedelta(weeks=weeks_ahead)
    until = min(pattern.end_date, horizon) if pattern.end_date else horizon
    windows = iterate_slot_windows(pattern.start_time, pattern.end_time, slot_duration, pattern.buffer_minutes or 0)

    created = 0
    for slot_date in iterate_pattern_dates(pattern, until):
        for start_time, end_time in windows:
            if datetime.combine(slot_date, start_time) <= now:
                continue
            if find_overlapping_slot(db, pattern.instructor_id, slot_date, start_time, end_time):
                continue
            db.add(AvailabilitySlot(
                instructor_id=pattern.instructor_id,
                date=slot_date,
                start_time=start_time,
                end_time=end_time,
                location=pattern.location,
                meeting_type=pattern.meeting_type,
                notes=pattern.notes,
                recurring_pattern_id=pattern.id,
            ))
            db.flush()
            created += 1

    db.commit()
    logger.info('Generated %s slots for recurring pattern %s', created, pattern.id)
    return created


def create_pattern(
    db: Session,
    instructor: User,
    day_of_week: int,
    start_time: time,
    end_time: time,
    start_date: date,
    end_date: date | None = None,
    location: str | None = None,
    meeting_type: str = MEETING_EITHER,
    buffer_minutes: int = 0,
    notes: str | None = None,
    generate_slots: bool = True,
    slot_duration: int = config.DEFAULT_SLOT_DURATION_MINUTES,
    now: datetime | None = None,
) -> tuple[RecurringPattern, int]:
    if not 0 <= day_of_week <= 6:
        raise InvalidSlot('Valid day_of_week (0-6) is required.')
    validate_slot_window(start_date, start_time, end_time, meeting_type, location, notes)
    if end_date is not None and end_date < start_date:
        raise InvalidSlot('End date must not be before start date.')
    if buffer_minutes < 0:
        raise InvalidSlot('Buffer minutes cannot be negative.')

    overlapping = db.query(RecurringPattern).filter(
        RecurringPattern.instructor_id == instructor.id,
        RecurringPattern.day_of_week == day_of_week,
        RecurringPattern.is_active.is_(True),
        RecurringPattern.start_time < end_time,
        RecurringPattern.end_time > start_time,
    ).first()
    if overlapping:
        raise SlotOverlap('Overlapping recurring pattern exists.')

    pattern = RecurringPattern(
        instructor_id=instructor.id,
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        location=location,
        meeting_type=meeting_type,
        buffer_minutes=buffer_minutes,
        notes=notes,
        start_date=start_date,
        end_date=end_date,
    )
    db.add(pattern)
    db.commit()
    db.refresh(pattern)

    audit.record(instructor.id, audit.RECURRING_PATTERN_CREATED, {
        'pattern_id': pattern.id,
        'day_of_week': day_of_week,
        'start_time': start_time,
        'end_time': end_time,
    })

    slots_created = 0
    if generate_slots:
        slots_created = generate_slots_for_pattern(db, pattern, slot_duration, now=now)
    return pattern, slots_created


def get_pattern(db: Session, actor: User, pattern_id: int) -> RecurringPattern:
    pattern = db.get(RecurringPattern, pattern_id)
    if pattern is None:
        raise NotFound('Pattern not found.')
    if not (actor.is_admin or pattern.instructor_id == actor.id):
        raise Forbidden('Not authorized to manage this pattern.')
    return pattern


def list_patterns(db: Session, instructor_id: int) -> list[RecurringPattern]:
    return db.query(RecurringPattern).filter(
        RecurringPattern.instructor_id == instructor_id,
        RecurringPattern.is_active.is_(True),
    ).order_by(RecurringPattern.day_of_week.asc(), RecurringPattern.start_time.asc()).all()


def regenerate_slots(
    db: Session,
    actor: User,
    pattern_id: int,
    slot_duration: int = config.DEFAULT_SLOT_DURATION_MINUTES,
    weeks_ahead: int = config.RECURRING_WEEKS_AHEAD,
    now: datetime | None = None,
) -> int:
    pattern = get_pattern(db, actor, pattern_id)
    if not pattern.is_active:
        raise NotFound('Pattern not found.')
    created = generate_slots_for_pattern(db, pattern, slot_duration, weeks_ahead, now)
    audit.record(actor.id, audit.SLOTS_GENERATED, {'pattern_id': pattern.id, 'slots_created': created})
    return created


def deactivate_pattern(
    db: Session,
    actor: User,
    pattern_id: int,
    delete_future_slots: bool = False,
    now: datetime | None = None,
) -> int:
    """Deactivate a pattern, optionally deleting its future slots that nobody has booked."""
    now = now or datetime.now()
    pattern = get_pattern(db, actor, pattern_id)
    pattern.is_active = False

    slots_deleted = 0
    if delete_future_slots:
        booked_slot_ids = select(Appointment.slot_id).where(
            Appointment.status == STATUS_SCHEDULED,
            Appointment.slot_id.is_not(None),
        )
        slot_ids = [row.id for row in db.query(AvailabilitySlot.id).filter(
            AvailabilitySlot.recurring_pattern_id == pattern.id,
            AvailabilitySlot.date >= now.date(),
            AvailabilitySlot.id.not_in(booked_slot_ids),
        )]
        detach_slots(db, slot_ids)
        if slot_ids:
            slots_deleted = db.query(AvailabilitySlot).filter(
                AvailabilitySlot.id.in_(slot_ids),
            ).delete(synchronize_session=False)

    db.commit()

    audit.record(actor.id, audit.RECURRING_PATTERN_DELETED, {
        'pattern_id': pattern.id,
        'slots_deleted': slots_deleted,
    })
    return slots_deleted
