import threading
from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import NOW, TOMORROW
from officehours.core.errors import (
    ConflictingAppointment,
    MeetingTypeMismatch,
    NotFound,
    SlotAlreadyBooked,
    SlotInPast,
)
from officehours.database import Base
from officehours.models.appointment import STATUS_SCHEDULED, Appointment
from officehours.models.slot import MEETING_IN_PERSON, MEETING_VIRTUAL, AvailabilitySlot
from officehours.models.user import ROLE_INSTRUCTOR, User
from officehours.models.waitlist import WaitlistEntry
from officehours.services import booking
from officehours.services.notifications import KIND_BOOKING_CONFIRMED, KIND_NEW_BOOKING
from officehours.services.outbox import Outbox
from officehours.services.waitlist import join_waitlist


@pytest.fixture
def instructor(make_user):
    return make_user(ROLE_INSTRUCTOR)


def test_book_slot_creates_scheduled_appointment_from_slot(db, make_user, make_slot, instructor, notifications_for) -> None:
    student = make_user()
    slot = make_slot(instructor, location='Room 204')

    appointment = booking.book_slot(db, student, slot.id, MEETING_IN_PERSON, topic='Recursion', now=NOW)

    assert appointment.status == STATUS_SCHEDULED
    assert appointment.slot_id == slot.id
    assert appointment.student_id == student.id
    assert appointment.instructor_id == instructor.id
    assert appointment.date == TOMORROW
    assert (appointment.start_time, appointment.end_time) == (time(10, 0), time(10, 30))
    assert appointment.location == 'Room 204'
    assert appointment.topic == 'Recursion'
    assert len(notifications_for(student, KIND_BOOKING_CONFIRMED)) == 1
    assert len(notifications_for(instructor, KIND_NEW_BOOKING)) == 1


def test_book_slot_rejects_second_booking_of_same_slot(db, make_user, make_slot, instructor, scheduled_for_slot) -> None:
    first_student = make_user()
    second_student = make_user()
    slot = make_slot(instructor)
    first = booking.book_slot(db, first_student, slot.id, MEETING_IN_PERSON, now=NOW)

    with pytest.raises(SlotAlreadyBooked) as exception_info:
        booking.book_slot(db, second_student, slot.id, MEETING_VIRTUAL, now=NOW)

    assert exception_info.value.status_code == 409
    assert [appointment.id for appointment in scheduled_for_slot(slot)] == [first.id]


def test_book_slot_rejects_overlap_with_students_other_appointment(db, make_user, make_slot, instructor) -> None:
    other_instructor = make_user(ROLE_INSTRUCTOR)
    student = make_user()
    first_slot = make_slot(instructor, start_time=time(10, 0), end_time=time(10, 30))
    overlapping_slot = make_slot(other_instructor, start_time=time(10, 15), end_time=time(10, 45))
    booking.book_slot(db, student, first_slot.id, MEETING_IN_PERSON, now=NOW)

    with pytest.raises(ConflictingAppointment):
        booking.book_slot(db, student, overlapping_slot.id, MEETING_IN_PERSON, now=NOW)

    assert db.query(Appointment).filter(Appointment.slot_id == overlapping_slot.id).count() == 0


def test_book_slot_allows_back_to_back_appointments(db, make_user, make_slot, instructor) -> None:
    other_instructor = make_user(ROLE_INSTRUCTOR)
    student = make_user()
    first_slot = make_slot(instructor, start_time=time(10, 0), end_time=time(10, 30))
    next_slot = make_slot(other_instructor, start_time=time(10, 30), end_time=time(11, 0))

    booking.book_slot(db, student, first_slot.id, MEETING_IN_PERSON, now=NOW)
    appointment = booking.book_slot(db, student, next_slot.id, MEETING_IN_PERSON, now=NOW)

    assert appointment.status == STATUS_SCHEDULED


def test_book_slot_raises_not_found_for_missing_slot(db, make_user) -> None:
    with pytest.raises(NotFound):
        booking.book_slot(db, make_user(), 999, MEETING_IN_PERSON, now=NOW)


def test_book_slot_rejects_slot_that_has_started(db, make_user, make_slot, instructor) -> None:
    slot = make_slot(instructor, slot_date=NOW.date(), start_time=time(9, 0), end_time=time(9, 30))

    with pytest.raises(SlotInPast):
        booking.book_slot(db, make_user(), slot.id, MEETING_IN_PERSON, now=NOW)


def test_book_slot_rejects_explicit_meeting_type_mismatch(db, make_user, make_slot, instructor) -> None:
    slot = make_slot(instructor, meeting_type=MEETING_VIRTUAL)

    with pytest.raises(MeetingTypeMismatch):
        booking.book_slot(db, make_user(), slot.id, MEETING_IN_PERSON, now=NOW)


@pytest.mark.parametrize('meeting_type', [MEETING_IN_PERSON, MEETING_VIRTUAL])
def test_book_slot_either_accepts_both_meeting_types(db, make_user, make_slot, instructor, meeting_type: str) -> None:
    slot = make_slot(instructor)

    appointment = booking.book_slot(db, make_user(), slot.id, meeting_type, now=NOW)

    assert appointment.meeting_type == meeting_type


def test_book_slot_checks_past_before_meeting_type(db, make_user, make_slot, instructor) -> None:
    slot = make_slot(
        instructor,
        slot_date=NOW.date() - timedelta(days=1),
        meeting_type=MEETING_VIRTUAL,
    )

    with pytest.raises(SlotInPast):
        booking.book_slot(db, make_user(), slot.id, MEETING_IN_PERSON, now=NOW)


def test_book_slot_checks_meeting_type_before_availability(db, make_user, make_slot, instructor) -> None:
    slot = make_slot(instructor, meeting_type=MEETING_VIRTUAL)
    booking.book_slot(db, make_user(), slot.id, MEETING_VIRTUAL, now=NOW)

    with pytest.raises(MeetingTypeMismatch):
        booking.book_slot(db, make_user(), slot.id, MEETING_IN_PERSON, now=NOW)


def test_book_slot_maps_unique_index_violation_to_slot_already_booked(
    db,
    make_user,
    make_slot,
    instructor,
    scheduled_for_slot,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    slot = make_slot(instructor)
    winner = booking.book_slot(db, make_user(), slot.id, MEETING_IN_PERSON, now=NOW)

    # Simulate a concurrent request that passed the availability check before the winner committed.
    monkeypatch.setattr(booking, 'get_active_appointment', lambda _db, _slot_id: None)

    with pytest.raises(SlotAlreadyBooked):
        booking.book_slot(db, make_user(), slot.id, MEETING_IN_PERSON, now=NOW)

    assert [appointment.id for appointment in scheduled_for_slot(slot)] == [winner.id]


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'booking.db'}",
        connect_args={'check_same_thread': False, 'timeout': 15},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


def test_concurrent_overlapping_bookings_by_one_student_keep_one(
    file_session_factory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    setup = file_session_factory()
    student = User(email='student@example.edu', first_name='Sam', last_name='Student')
    first_instructor = User(email='first@example.edu', first_name='Ada', last_name='One', role=ROLE_INSTRUCTOR)
    second_instructor = User(email='second@example.edu', first_name='Bo', last_name='Two', role=ROLE_INSTRUCTOR)
    setup.add_all([student, first_instructor, second_instructor])
    setup.flush()
    slots = [
        AvailabilitySlot(instructor_id=first_instructor.id, date=TOMORROW, start_time=time(9, 0), end_time=time(9, 30)),
        AvailabilitySlot(instructor_id=second_instructor.id, date=TOMORROW, start_time=time(9, 15), end_time=time(9, 45)),
    ]
    setup.add_all(slots)
    setup.commit()
    student_id = student.id
    slot_ids = [slot.id for slot in slots]
    setup.close()

    # Both requests pass the first overlap check before either one inserts.
    barrier = threading.Barrier(2, timeout=10)
    real_check = booking.find_conflicting_appointment

    def check_then_wait(*args, **kwargs):
        found = real_check(*args, **kwargs)
        if kwargs.get('exclude_appointment_id') is None:
            barrier.wait()
        return found

    monkeypatch.setattr(booking, 'find_conflicting_appointment', check_then_wait)
    outcomes: list[object] = []

    def book(slot_id: int) -> None:
        session = file_session_factory()
        try:
            outcomes.append(booking.book_slot(
                session, session.get(User, student_id), slot_id, MEETING_IN_PERSON, now=NOW,
            ).id)
        except ConflictingAppointment as exc:
            outcomes.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=book, args=(slot_id,)) for slot_id in slot_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    check = file_session_factory()
    try:
        scheduled = check.query(Appointment).filter(
            Appointment.student_id == student_id,
            Appointment.status == STATUS_SCHEDULED,
        ).count()
    finally:
        check.close()

    assert scheduled == 1
    assert sum(isinstance(outcome, ConflictingAppointment) for outcome in outcomes) == 1


def test_book_slot_queues_side_effects_on_outbox(db, make_user, make_slot, instructor, notifications_for) -> None:
    student = make_user()
    slot = make_slot(instructor)
    outbox = Outbox()

    booking.book_slot(db, student, slot.id, MEETING_IN_PERSON, outbox=outbox, now=NOW)

    assert outbox.pending == ['notify_new_booking', 'notify_booking_confirmed', 'record_effect']
    assert notifications_for(student) == []

    assert outbox.flush(db) == 3
    assert len(notifications_for(student, KIND_BOOKING_CONFIRMED)) == 1


def test_book_slot_succeeds_when_notifications_fail(
    db,
    make_user,
    make_slot,
    instructor,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_notify(_db, _appointment_id):
        raise RuntimeError('notification backend down')

    broken_notify.__name__ = 'notify_new_booking'
    monkeypatch.setattr(booking, 'notify_new_booking', broken_notify)
    slot = make_slot(instructor)

    appointment = booking.book_slot(db, make_user(), slot.id, MEETING_IN_PERSON, now=NOW)

    assert db.get(Appointment, appointment.id).status == STATUS_SCHEDULED


def test_book_slot_removes_students_waitlist_entry(db, make_user, make_slot, instructor) -> None:
    holder = make_user()
    waiting = make_user()
    slot = make_slot(instructor)
    first = booking.book_slot(db, holder, slot.id, MEETING_IN_PERSON, now=NOW)
    join_waitlist(db, waiting, slot.id, now=NOW)
    booking.cancel_appointment(db, holder, first.id, now=NOW)

    booking.book_slot(db, waiting, slot.id, MEETING_IN_PERSON, now=NOW)

    assert db.query(WaitlistEntry).filter(WaitlistEntry.student_id == waiting.id).count() == 0


def test_list_appointments_for_returns_both_sides(db, make_user, make_slot, instructor) -> None:
    student = make_user()
    slot = make_slot(instructor)
    appointment = booking.book_slot(db, student, slot.id, MEETING_IN_PERSON, now=NOW)

    assert [item.id for item in booking.list_appointments_for(db, student, now=NOW)] == [appointment.id]
    assert [item.id for item in booking.list_appointments_for(db, instructor, now=NOW)] == [appointment.id]
    assert booking.list_appointments_for(db, student, status='cancelled', now=NOW) == []
    assert booking.list_appointments_for(db, student, upcoming_only=True, now=datetime(2031, 1, 1)) == []
