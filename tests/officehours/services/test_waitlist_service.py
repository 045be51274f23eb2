from datetime import datetime, time

import pytest

from conftest import NOW, TOMORROW
from officehours.core.errors import NotFound, SlotInPast, SlotNotBooked
from officehours.models.slot import MEETING_IN_PERSON
from officehours.models.user import ROLE_INSTRUCTOR
from officehours.models.waitlist import WaitlistEntry
from officehours.services import booking, waitlist
from officehours.services.notifications import KIND_WAITLIST_AVAILABLE


@pytest.fixture
def booked_slot(db, make_user, make_slot):
    instructor = make_user(ROLE_INSTRUCTOR)
    holder = make_user()
    slot = make_slot(instructor)
    appointment = booking.book_slot(db, holder, slot.id, MEETING_IN_PERSON, now=NOW)
    return slot, holder, appointment


def test_join_waitlist_requires_booked_slot(db, make_user, make_slot) -> None:
    slot = make_slot(make_user(ROLE_INSTRUCTOR))

    with pytest.raises(SlotNotBooked):
        waitlist.join_waitlist(db, make_user(), slot.id, now=NOW)


def test_join_waitlist_rejects_missing_slot(db, make_user) -> None:
    with pytest.raises(NotFound):
        waitlist.join_waitlist(db, make_user(), 404, now=NOW)


def test_join_waitlist_rejects_started_slot(db, make_user, booked_slot) -> None:
    slot, _holder, _appointment = booked_slot
    after_start = datetime.combine(TOMORROW, time(10, 0))

    with pytest.raises(SlotInPast):
        waitlist.join_waitlist(db, make_user(), slot.id, now=after_start)


def test_join_waitlist_assigns_increasing_positions(db, make_user, booked_slot) -> None:
    slot, _holder, _appointment = booked_slot

    positions = [waitlist.join_waitlist(db, make_user(), slot.id, now=NOW).position for _ in range(3)]

    assert positions == [1, 2, 3]


def test_leave_waitlist_keeps_remaining_positions(db, make_user, booked_slot) -> None:
    slot, _holder, _appointment = booked_slot
    first, second, third = make_user(), make_user(), make_user()
    for student in (first, second, third):
        waitlist.join_waitlist(db, student, slot.id, now=NOW)

    waitlist.leave_waitlist(db, second, slot.id)

    assert [(entry.student_id, entry.position) for entry in waitlist.get_waitlist(db, slot.id)] == [
        (first.id, 1),
        (third.id, 3),
    ]
    assert waitlist.join_waitlist(db, make_user(), slot.id, now=NOW).position == 4


def test_leave_waitlist_raises_when_not_waiting(db, make_user, booked_slot) -> None:
    slot, _holder, _appointment = booked_slot

    with pytest.raises(NotFound):
        waitlist.leave_waitlist(db, make_user(), slot.id)


def test_join_waitlist_twice_creates_two_entries(db, make_user, booked_slot) -> None:
    slot, _holder, _appointment = booked_slot
    student = make_user()

    waitlist.join_waitlist(db, student, slot.id, now=NOW)
    waitlist.join_waitlist(db, student, slot.id, now=NOW)

    assert waitlist.count_waiting(db, slot.id) == 2
    assert waitlist.get_student_position(db, student.id, slot.id) == 1


def test_join_waitlist_retries_on_position_clash(db, make_user, booked_slot, monkeypatch: pytest.MonkeyPatch) -> None:
    slot, _holder, _appointment = booked_slot
    waitlist.join_waitlist(db, make_user(), slot.id, now=NOW)
    stale_then_fresh = iter([1, 2])
    monkeypatch.setattr(waitlist, 'next_position', lambda _db, _slot_id: next(stale_then_fresh))

    entry = waitlist.join_waitlist(db, make_user(), slot.id, now=NOW)

    assert entry.position == 2


def test_cancellation_notifies_only_head_of_waitlist(db, make_user, booked_slot, notifications_for) -> None:
    slot, holder, appointment = booked_slot
    head, behind = make_user(), make_user()
    waitlist.join_waitlist(db, head, slot.id, now=NOW)
    waitlist.join_waitlist(db, behind, slot.id, now=NOW)

    booking.cancel_appointment(db, holder, appointment.id, now=NOW)

    assert len(notifications_for(head, KIND_WAITLIST_AVAILABLE)) == 1
    assert notifications_for(behind, KIND_WAITLIST_AVAILABLE) == []
    head_entry = db.query(WaitlistEntry).filter(WaitlistEntry.student_id == head.id).one()
    assert head_entry.notified is True
    assert head_entry.position == 1


def test_promotion_does_not_book_for_the_student(db, make_user, booked_slot, scheduled_for_slot) -> None:
    slot, holder, appointment = booked_slot
    waitlist.join_waitlist(db, make_user(), slot.id, now=NOW)

    booking.cancel_appointment(db, holder, appointment.id, now=NOW)

    assert scheduled_for_slot(slot) == []


def test_head_is_notified_again_after_later_cancellation(db, make_user, booked_slot, notifications_for) -> None:
    slot, holder, appointment = booked_slot
    head = make_user()
    waitlist.join_waitlist(db, head, slot.id, now=NOW)
    booking.cancel_appointment(db, holder, appointment.id, now=NOW)

    someone_else = make_user()
    second = booking.book_slot(db, someone_else, slot.id, MEETING_IN_PERSON, now=NOW)
    booking.cancel_appointment(db, someone_else, second.id, now=NOW)

    assert len(notifications_for(head, KIND_WAITLIST_AVAILABLE)) == 2


def test_promote_next_without_waitlist_returns_none(db, booked_slot) -> None:
    slot, _holder, _appointment = booked_slot

    assert waitlist.promote_next(db, slot.id) is None


def test_list_student_waitlist_pairs_entries_with_slots(db, make_user, booked_slot) -> None:
    slot, _holder, _appointment = booked_slot
    student = make_user()
    waitlist.join_waitlist(db, student, slot.id, now=NOW)

    [(entry, listed_slot)] = waitlist.list_student_waitlist(db, student.id, now=NOW)

    assert entry.position == 1
    assert listed_slot.id == slot.id
