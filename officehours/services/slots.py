"""Slot store: instructor-published availability windows.

A slot is bookable when no scheduled appointment references it. That state is
always derived from the appointments table; slots carry no booked flag.
"""

import logging
from datetime import date, datetime, time

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from officehours.core import config
from officehours.core.errors import (
    Forbidden,
    InvalidSlot,
    NotFound,
    NothingToUpdate,
    SlotHasActiveAppointment,
    SlotOverlap,
)
from officehours.models.appointment import STATUS_SCHEDULED, Appointment
from officehours.models.slot import MEETING_EITHER, SLOT_MEETING_TYPES, AvailabilitySlot
from officehours.models.user import User
from officehours.models.waitlist import WaitlistEntry
from officehours.services import audit

logger = logging.getLogger(__name__)

MAX_LOCATION_LENGTH = 200
MAX_SLOT_NOTES_LENGTH = 500
UPDATABLE_SLOT_FIELDS = ('date', 'start_time', 'end_time', 'location', 'meeting_type', 'notes')


def slot_start(slot: AvailabilitySlot) -> datetime:
    return datetime.combine(slot.date, slot.start_time)


def slot_end(slot: AvailabilitySlot) -> datetime:
    return datetime.combine(slot.date, slot.end_time)


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open overlap: touching intervals such as 09:00-09:30 and 09:30-10:00 do not overlap."""
    return start_a < end_b and end_a > start_b


def get_active_appointment(db: Session, slot_id: int) -> Appointment | None:
    return db.query(Appointment).filter(
        Appointment.slot_id == slot_id,
        Appointment.status == STATUS_SCHEDULED,
    ).first()


def is_slot_booked(db: Session, slot_id: int) -> bool:
    return get_active_appointment(db, slot_id) is not None


def get_slot(db: Session, slot_id: int, lock: bool = False) -> AvailabilitySlot:
    query = db.query(AvailabilitySlot).filter(AvailabilitySlot.id == slot_id)
    if lock:
        query = query.with_for_update()
    slot = query.first()
    if slot is None:
        raise NotFound('Slot not found.')
    return slot


def can_manage_slot(actor: User, slot: AvailabilitySlot) -> bool:
    return actor.is_admin or slot.instructor_id == actor.id


def validate_slot_window(
    slot_date: date,
    start_time: time,
    end_time: time,
    meeting_type: str = MEETING_EITHER,
    location: str | None = None,
    notes: str | None = None,
) -> None:
    if slot_date is None or start_time is None or end_time is None:
        raise InvalidSlot('Date, start_time, and end_time are required.')
    if start_time >= end_time:
        raise InvalidSlot('End time must be after start time.')
    if meeting_type not in SLOT_MEETING_TYPES:
        raise InvalidSlot('Meeting type must be in-person, virtual, or either.')
    if location and len(location) > MAX_LOCATION_LENGTH:
        raise InvalidSlot(f'Location must be {MAX_LOCATION_LENGTH} characters or fewer.')
    if notes and len(notes) > MAX_SLOT_NOTES_LENGTH:
        raise InvalidSlot(f'Notes must be {MAX_SLOT_NOTES_LENGTH} characters or fewer.')


def find_overlapping_slot(
    db: Session,
    instructor_id: int,
    slot_date: date,
    start_time: time,
    end_time: time,
    exclude_slot_id: int | None = None,
) -> AvailabilitySlot | None:
    query = db.query(AvailabilitySlot).filter(
        AvailabilitySlot.instructor_id == instructor_id,
        AvailabilitySlot.date == slot_date,
        AvailabilitySlot.start_time < end_time,
        AvailabilitySlot.end_time > start_time,
    )
    if exclude_slot_id is not None:
        query = query.filter(AvailabilitySlot.id != exclude_slot_id)
    return query.first()


def _new_slot(
    db: Session,
    instructor_id: int,
    slot_date: date,
    start_time: time,
    end_time: time,
    location: str | None,
    meeting_type: str,
    notes: str | None,
    today: date,
) -> AvailabilitySlot:
    validate_slot_window(slot_date, start_time, end_time, meeting_type, location, notes)

    if slot_date < today:
        raise InvalidSlot('Cannot create slots in the past.')

    if find_overlapping_slot(db, instructor_id, slot_date, start_time, end_time):
        raise SlotOverlap()

    slot = AvailabilitySlot(
        instructor_id=instructor_id,
        date=slot_date,
        start_time=start_time,
        end_time=end_time,
        location=location,
        meeting_type=meeting_type,
        notes=notes,
    )
    db.add(slot)
    return slot


def create_slot(
    db: Session,
    instructor: User,
    slot_date: date,
    start_time: time,
    end_time: time,
    location: str | None = None,
    meeting_type: str = MEETING_EITHER,
    notes: str | None = None,
    now: datetime | None = None,
) -> AvailabilitySlot:
    now = now or datetime.now()
    slot = _new_slot(db, instructor.id, slot_date, start_time, end_time, location, meeting_type, notes, now.date())

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise SlotOverlap('This exact slot already exists.') from exc
    db.refresh(slot)
    logger.info('Instructor %s created slot %s on %s', instructor.id, slot.id, slot.date)

    audit.record(instructor.id, audit.SLOT_CREATED, {
        'slot_id': slot.id,
        'date': slot.date,
        'start_time': slot.start_time,
        'end_time': slot.end_time,
    })
    return slot


def bulk_create_slots(
    db: Session,
    instructor: User,
    items: list[dict],
    now: datetime | None = None,
) -> tuple[list[AvailabilitySlot], list[dict]]:
    """Create several slots in one transaction, collecting per-item failures.

    Items that fail validation or overlap (including with earlier items of
    the same request) are reported back and skipped; the rest are committed.
    """
    if not items:
        raise InvalidSlot('At least one slot is required.')
    if len(items) > config.MAX_BULK_SLOTS:
        raise InvalidSlot(f'Maximum {config.MAX_BULK_SLOTS} slots per request.')

    now = now or datetime.now()
    created: list[AvailabilitySlot] = []
    errors: list[dict] = []

    for index, item in enumerate(items):
        try:
            slot = _new_slot(
                db,
                instructor.id,
                item.get('date'),
                item.get('start_time'),
                item.get('end_time'),
                item.get('location'),
                item.get('meeting_type') or MEETING_EITHER,
                item.get('notes'),
                now.date(),
            )
            db.flush()
        except (InvalidSlot, SlotOverlap) as exc:
            errors.append({'index': index, 'error': exc.message})
            continue
        created.append(slot)

    db.commit()
    for slot in created:
        db.refresh(slot)

    audit.record(instructor.id, audit.SLOTS_BULK_CREATED, {
        'created_count': len(created),
        'error_count': len(errors),
    })
    return created, errors


def update_slot(
    db: Session,
    actor: User,
    slot_id: int,
    changes: dict,
) -> AvailabilitySlot:
    slot = get_slot(db, slot_id, lock=True)

    if not can_manage_slot(actor, slot):
        raise Forbidden('Not authorized to modify this slot.')

    if is_slot_booked(db, slot.id):
        raise SlotHasActiveAppointment('Cannot modify a booked slot.')

    updates = {field: value for field, value in changes.items() if field in UPDATABLE_SLOT_FIELDS}
    if not updates:
        raise NothingToUpdate()

    slot_date = updates.get('date') or slot.date
    start_time = updates.get('start_time') or slot.start_time
    end_time = updates.get('end_time') or slot.end_time
    meeting_type = updates.get('meeting_type') or slot.meeting_type
    validate_slot_window(
        slot_date,
        start_time,
        end_time,
        meeting_type,
        updates.get('location'),
        updates.get('notes'),
    )

    if find_overlapping_slot(db, slot.instructor_id, slot_date, start_time, end_time, exclude_slot_id=slot.id):
        raise SlotOverlap()

    for field, value in updates.items():
        if field in ('date', 'start_time', 'end_time', 'meeting_type') and value is None:
            continue
        setattr(slot, field, value)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise SlotOverlap('This exact slot already exists.') from exc
    db.refresh(slot)

    audit.record(actor.id, audit.SLOT_UPDATED, {'slot_id': slot.id, 'updated_fields': sorted(updates)})
    return slot


def detach_slots(db: Session, slot_ids: list[int]) -> None:
    """Drop waitlist entries and unlink past appointments ahead of deleting ``slot_ids``.

    SQLite does not enforce the ``ondelete`` rules unless foreign keys are switched on,
    so both are cleared explicitly.
    """
    if not slot_ids:
        return
    db.query(WaitlistEntry).filter(WaitlistEntry.slot_id.in_(slot_ids)).delete(synchronize_session=False)
    db.query(Appointment).filter(Appointment.slot_id.in_(slot_ids)).update(
        {Appointment.slot_id: None},
        synchronize_session=False,
    )


def delete_slot(db: Session, actor: User, slot_id: int) -> None:
    slot = get_slot(db, slot_id, lock=True)

    if not can_manage_slot(actor, slot):
        raise Forbidden('Not authorized to delete this slot.')

    if is_slot_booked(db, slot.id):
        raise SlotHasActiveAppointment()

    details = {'slot_id': slot.id, 'date': slot.date, 'start_time': slot.start_time, 'end_time': slot.end_time}
    detach_slots(db, [slot.id])
    db.delete(slot)
    db.commit()
    logger.info('Slot %s deleted by user %s', details['slot_id'], actor.id)

    audit.record(actor.id, audit.SLOT_DELETED, details)


def list_slots(
    db: Session,
    instructor_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    available_only: bool = False,
    now: datetime | None = None,
) -> list[tuple[AvailabilitySlot, Appointment | None]]:
    """Return slots paired with their scheduled appointment, if any."""
    now = now or datetime.now()

    query = db.query(AvailabilitySlot, Appointment).outerjoin(
        Appointment,
        and_(Appointment.slot_id == AvailabilitySlot.id, Appointment.status == STATUS_SCHEDULED),
    )

    if instructor_id is not None:
        query = query.filter(AvailabilitySlot.instructor_id == instructor_id)

    query = query.filter(AvailabilitySlot.date >= (start_date or now.date()))

    if end_date is not None:
        query = query.filter(AvailabilitySlot.date <= end_date)

    if available_only:
        query = query.filter(Appointment.id.is_(None))

    return query.order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()
