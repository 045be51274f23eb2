from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from officehours.core import config


_url = make_url(config.DATABASE_URL)

engine = create_engine(
    config.DATABASE_URL,
    connect_args={'check_same_thread': False} if _url.drivername.startswith('sqlite') else {},
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_checked_tables: set[str] = set()

SLOT_MIGRATIONS = [
    ('recurring_pattern_id', 'ALTER TABLE availability_slots ADD COLUMN recurring_pattern_id INTEGER'),
    ('updated_at', 'ALTER TABLE availability_slots ADD COLUMN updated_at TIMESTAMP'),
]
SLOT_INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_slots_instructor_date ON availability_slots(instructor_id, date)',
]

APPOINTMENT_MIGRATIONS = [
    ('meeting_link', 'ALTER TABLE appointments ADD COLUMN meeting_link VARCHAR'),
    ('reminder_24h_sent_at', 'ALTER TABLE appointments ADD COLUMN reminder_24h_sent_at TIMESTAMP'),
    ('reminder_1h_sent_at', 'ALTER TABLE appointments ADD COLUMN reminder_1h_sent_at TIMESTAMP'),
]
APPOINTMENT_INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_appointments_student_date ON appointments(student_id, date)',
    'CREATE INDEX IF NOT EXISTS idx_appointments_status_date ON appointments(status, date)',
    # At most one scheduled appointment per slot, enforced by the database.
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_slot_scheduled ON appointments(slot_id) "
    "WHERE status = 'scheduled'",
]

USER_MIGRATIONS = [
    ('reminder_24h', 'ALTER TABLE users ADD COLUMN reminder_24h BOOLEAN DEFAULT TRUE'),
    ('reminder_1h', 'ALTER TABLE users ADD COLUMN reminder_1h BOOLEAN DEFAULT TRUE'),
]

WAITLIST_INDEXES = [
    'CREATE INDEX IF NOT EXISTS idx_waitlist_slot_position ON waitlist_entries(slot_id, position)',
]


def _ensure_table_schema(
    table_name: str,
    migration_steps: list[tuple[str, str]],
    index_statements: list[str],
) -> None:
    if table_name in _checked_tables:
        return

    with _schema_lock:
        if table_name in _checked_tables:
            return

        inspector = inspect(engine)

        if table_name not in inspector.get_table_names():
            _checked_tables.add(table_name)
            return

        existing_columns = {column['name'] for column in inspector.get_columns(table_name)}

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            for statement in index_statements:
                connection.execute(text(statement))

        _checked_tables.add(table_name)


def ensure_slot_schema() -> None:
    _ensure_table_schema('availability_slots', SLOT_MIGRATIONS, SLOT_INDEXES)


def ensure_appointment_schema() -> None:
    _ensure_table_schema('appointments', APPOINTMENT_MIGRATIONS, APPOINTMENT_INDEXES)


def ensure_user_schema() -> None:
    _ensure_table_schema('users', USER_MIGRATIONS, [])


def ensure_waitlist_schema() -> None:
    _ensure_table_schema('waitlist_entries', [], WAITLIST_INDEXES)


def ensure_schema() -> None:
    ensure_user_schema()
    ensure_slot_schema()
    ensure_appointment_schema()
    ensure_waitlist_schema()
