"""Waitlist manager.

Positions are a join-order ledger per slot: a new entry gets ``max + 1`` and
nothing is renumbered when someone leaves. Order is always read by sorting.
"""

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from officehours.core.errors import NotFound, SlotInPast, SlotNotBooked
from officehours.models.slot import AvailabilitySlot
from officehours.models.user import User
from officehours.models.waitlist import WaitlistEntry
from officehours.services import audit
from officehours.services.notifications import notify_waitlist_spot_available
from officehours.services.outbox import Outbox
from officehours.services.slots import get_slot, is_slot_booked, slot_start

logger = logging.getLogger(__name__)

POSITION_RETRIES = 3


def next_position(db: Session, slot_id: int) -> int:
    current_max = db.query(func.max(WaitlistEntry.position)).filter(WaitlistEntry.slot_id == slot_id).scalar()
    return (current_max or 0) + 1


def join_waitlist(
    db: Session,
    student: User,
    slot_id: int,
    outbox: Outbox | None = None,
    now: datetime | None = None,
) -> WaitlistEntry:
    """Append ``student`` to the waitlist of a booked slot.

    Joining twice is not rejected; each join gets its own position.
    """
    now = now or datetime.now()
    slot = get_slot(db, slot_id)

    if slot_start(slot) <= now:
        raise SlotInPast('Cannot join the waitlist for a past slot.')

    if not is_slot_booked(db, slot.id):
        raise SlotNotBooked()

    # Two concurrent joins can read the same max; the unique (slot, position)
    # constraint rejects the loser, which then retries with a fresh max.
    for attempt in range(1, POSITION_RETRIES + 1):
        entry = WaitlistEntry(slot_id=slot.id, student_id=student.id, position=next_position(db, slot.id))
        db.add(entry)
        try:
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            if attempt == POSITION_RETRIES:
                raise
            logger.info('Waitlist position clash on slot %s, retrying', slot.id)
    db.refresh(entry)

    logger.info('Student %s joined waitlist for slot %s at position %s', student.id, slot.id, entry.position)

    effects = outbox if outbox is not None else Outbox()
    effects.add(audit.record_effect, student.id, audit.WAITLIST_JOINED, {
        'waitlist_id': entry.id,
        'slot_id': slot.id,
        'position': entry.position,
    })
    if outbox is None:
        effects.flush(db)

    return entry


def leave_waitlist(db: Session, student: User, slot_id: int, outbox: Outbox | None = None) -> int:
    removed = db.query(WaitlistEntry).filter(
        WaitlistEntry.slot_id == slot_id,
        WaitlistEntry.student_id == student.id,
    ).delete(synchronize_session=False)

    if not removed:
        db.rollback()
        raise NotFound('Not on the waitlist for this slot.')

    db.commit()

    effects = outbox if outbox is not None else Outbox()
    effects.add(audit.record_effect, student.id, audit.WAITLIST_LEFT, {'slot_id': slot_id})
    if outbox is None:
        effects.flush(db)

    return removed


def remove_student_entries(db: Session, student_id: int, slot_id: int) -> int:
    """Delete a student's entries for a slot without committing."""
    return db.query(WaitlistEntry).filter(
        WaitlistEntry.slot_id == slot_id,
        WaitlistEntry.student_id == student_id,
    ).delete(synchronize_session=False)


def get_waitlist(db: Session, slot_id: int) -> list[WaitlistEntry]:
    return db.query(WaitlistEntry).filter(
        WaitlistEntry.slot_id == slot_id,
    ).order_by(WaitlistEntry.position.asc(), WaitlistEntry.id.asc()).all()


def get_head(db: Session, slot_id: int) -> WaitlistEntry | None:
    return db.query(WaitlistEntry).filter(
        WaitlistEntry.slot_id == slot_id,
    ).order_by(WaitlistEntry.position.asc(), WaitlistEntry.id.asc()).first()


def get_student_position(db: Session, student_id: int, slot_id: int) -> int | None:
    return db.query(func.min(WaitlistEntry.position)).filter(
        WaitlistEntry.slot_id == slot_id,
        WaitlistEntry.student_id == student_id,
    ).scalar()


def count_waiting(db: Session, slot_id: int) -> int:
    return db.query(WaitlistEntry).filter(WaitlistEntry.slot_id == slot_id).count()


def list_student_waitlist(
    db: Session,
    student_id: int,
    now: datetime | None = None,
) -> list[tuple[WaitlistEntry, AvailabilitySlot]]:
    now = now or datetime.now()
    return db.query(WaitlistEntry, AvailabilitySlot).join(
        AvailabilitySlot, AvailabilitySlot.id == WaitlistEntry.slot_id,
    ).filter(
        WaitlistEntry.student_id == student_id,
        AvailabilitySlot.date >= now.date(),
    ).order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()


def promote_next(db: Session, slot_id: int, outbox: Outbox | None = None) -> WaitlistEntry | None:
    """Tell the first student in line that the slot is free again.

    The slot is not booked on their behalf and the entry stays in place until
    the student books or leaves, so a later cancellation can notify the same
    student again.
    """
    entry = get_head(db, slot_id)
    if entry is None:
        logger.debug('No waitlist for slot %s', slot_id)
        return None

    entry.notified = True
    db.commit()
    db.refresh(entry)

    logger.info('Promoting student %s (position %s) on slot %s', entry.student_id, entry.position, slot_id)

    effects = outbox if outbox is not None else Outbox()
    effects.add(notify_waitlist_spot_available, entry.student_id, slot_id)
    effects.add(audit.record_effect, None, audit.WAITLIST_PROMOTED, {
        'waitlist_id': entry.id,
        'slot_id': slot_id,
        'student_id': entry.student_id,
    })
    if outbox is None:
        effects.flush(db)

    return entry
