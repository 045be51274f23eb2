import itertools
import os
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('REMINDERS_ENABLED', 'false')

from officehours.database import Base  # noqa: E402
from officehours.models import appointment, notification, recurring_pattern, waitlist  # noqa: E402,F401
from officehours.models.appointment import Appointment  # noqa: E402
from officehours.models.notification import Notification  # noqa: E402
from officehours.models.slot import MEETING_EITHER, AvailabilitySlot  # noqa: E402
from officehours.models.user import ROLE_STUDENT, User  # noqa: E402

# Monday. Services take ``now`` explicitly so these tests never depend on the wall clock.
NOW = datetime(2030, 6, 10, 9, 0)
TOMORROW = NOW.date() + timedelta(days=1)


def future_day(days: int = 14) -> date:
    """A date relative to the real clock, for route handlers that read ``datetime.now()``."""
    return date.today() + timedelta(days=days)


@pytest.fixture
def session_factory():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield testing_session_local
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def factory(role: str = ROLE_STUDENT, **overrides) -> User:
        number = next(counter)
        fields = {
            'email': f'{role}{number}@example.edu',
            'first_name': role.title(),
            'last_name': str(number),
            'role': role,
        }
        fields.update(overrides)
        user = User(**fields)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def make_slot(db):
    def factory(
        instructor: User,
        slot_date: date = TOMORROW,
        start_time: time = time(10, 0),
        end_time: time = time(10, 30),
        meeting_type: str = MEETING_EITHER,
        location: str | None = 'Room 101',
    ) -> AvailabilitySlot:
        slot = AvailabilitySlot(
            instructor_id=instructor.id,
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            meeting_type=meeting_type,
            location=location,
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        return slot

    return factory


@pytest.fixture
def notifications_for(db):
    def lookup(user: User, kind: str | None = None) -> list[Notification]:
        query = db.query(Notification).filter(Notification.user_id == user.id)
        if kind is not None:
            query = query.filter(Notification.kind == kind)
        return query.order_by(Notification.id.asc()).all()

    return lookup


@pytest.fixture
def scheduled_for_slot(db):
    def lookup(slot: AvailabilitySlot) -> list[Appointment]:
        return db.query(Appointment).filter(
            Appointment.slot_id == slot.id,
            Appointment.status == 'scheduled',
        ).all()

    return lookup
