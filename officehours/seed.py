"""Create demo users and open slots, then print a development token for each user.

Usage:
    python -m officehours.seed
"""
import sys
from datetime import datetime, time, timedelta

from sqlalchemy.exc import SQLAlchemyError

from officehours.auth.jwt_handler import create_access_token
from officehours.core.errors import OfficeHoursError
from officehours.core.logging import configure_logging
from officehours.database import Base, SessionLocal, engine, ensure_schema
from officehours.models import appointment, notification, recurring_pattern, slot, waitlist  # noqa: F401
from officehours.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, ROLE_STUDENT, User
from officehours.services.slots import create_slot

DEMO_USERS = [
    ('admin@example.edu', 'Avery', 'Admin', ROLE_ADMIN, None),
    ('instructor@example.edu', 'Ivy', 'Instructor', ROLE_INSTRUCTOR, 'Computer Science'),
    ('student1@example.edu', 'Sam', 'Student', ROLE_STUDENT, 'Computer Science'),
    ('student2@example.edu', 'Robin', 'Student', ROLE_STUDENT, 'Mathematics'),
]

DEMO_SLOT_TIMES = [(time(10, 0), time(10, 30)), (time(10, 30), time(11, 0)), (time(14, 0), time(14, 30))]


def get_or_create_user(db, email, first_name, last_name, role, department) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email, first_name=first_name, last_name=last_name, role=role, department=department)
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def main() -> None:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    ensure_schema()

    db = SessionLocal()
    try:
        users = [get_or_create_user(db, *row) for row in DEMO_USERS]
        instructor = next(user for user in users if user.role == ROLE_INSTRUCTOR)

        tomorrow = datetime.now().date() + timedelta(days=1)
        created = 0
        for start_time, end_time in DEMO_SLOT_TIMES:
            try:
                create_slot(db, instructor, tomorrow, start_time, end_time, location='Room 101')
                created += 1
            except OfficeHoursError as exc:
                print(f'Skipping slot {start_time}-{end_time}: {exc.message}', file=sys.stderr)

        print(f'Created {created} slots for {tomorrow.isoformat()}')
        for user in users:
            print(f'{user.role:<10} {user.email:<26} {create_access_token(user.email)}')
    except SQLAlchemyError as exc:
        print(f'Database error: {exc}', file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
