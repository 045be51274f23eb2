import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from officehours.core import config
from officehours.core.logging import configure_logging
from officehours.database import Base, engine, ensure_schema
from officehours.models import appointment, notification, recurring_pattern, slot, user, waitlist
from officehours.routes import (
    appointment_routes,
    auth_routes,
    availability_routes,
    notification_routes,
    recurring_routes,
    reminder_routes,
    waitlist_routes,
)
from officehours.services.reminder_scheduler import ReminderScheduler

configure_logging()
config.validate_runtime_config()

app = FastAPI(title='Office Hours API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

reminder_scheduler = ReminderScheduler()


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('startup')
async def start_reminder_scheduler() -> None:
    if not config.REMINDERS_ENABLED:
        logger.info('Reminder scheduler disabled')
        return
    reminder_scheduler.start()


@app.on_event('shutdown')
async def stop_reminder_scheduler() -> None:
    await reminder_scheduler.stop()


@app.get('/')
def root():
    return {'status': 'Office Hours API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(availability_routes.router, prefix='/slots')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(waitlist_routes.router, prefix='/waitlist')
app.include_router(recurring_routes.router, prefix='/recurring')
app.include_router(notification_routes.router, prefix='/notifications')
app.include_router(reminder_routes.router, prefix='/reminders')
