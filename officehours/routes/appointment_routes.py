from datetime import date, datetime, time

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.auth.dependencies import get_current_user, require_roles
from officehours.core.errors import OfficeHoursError
from officehours.models.slot import BOOKING_MEETING_TYPES
from officehours.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, ROLE_STUDENT, User
from officehours.routes.common import database_unavailable, ensure_database_ready, get_db, to_http_exception
from officehours.services import booking
from officehours.services.outbox import Outbox

router = APIRouter(tags=['appointments'])

MAX_TOPIC_LENGTH = 200
MAX_APPOINTMENT_NOTES_LENGTH = 500
MAX_CANCELLATION_REASON_LENGTH = 500
MAX_MEETING_LINK_LENGTH = 500


def normalize_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class BookAppointmentRequest(BaseModel):
    slot_id: int
    meeting_type: str
    topic: str | None = None
    notes: str | None = None

    @field_validator('meeting_type')
    @classmethod
    def validate_meeting_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in BOOKING_MEETING_TYPES:
            raise ValueError('Meeting type must be in-person or virtual.')
        return normalized

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_TOPIC_LENGTH, 'Topic')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')


class CancelAppointmentRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_CANCELLATION_REASON_LENGTH, 'Cancellation reason')


class CompleteAppointmentRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()


class UpdateAppointmentRequest(BaseModel):
    topic: str | None = None
    notes: str | None = None
    meeting_link: str | None = None

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_TOPIC_LENGTH, 'Topic')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')

    @field_validator('meeting_link')
    @classmethod
    def validate_meeting_link(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_MEETING_LINK_LENGTH, 'Meeting link')


class AppointmentResponse(BaseModel):
    id: int
    slot_id: int | None = None
    student_id: int
    instructor_id: int
    date: date
    start_time: time
    end_time: time
    status: str
    meeting_type: str
    location: str | None = None
    meeting_link: str | None = None
    topic: str | None = None
    notes: str | None = None
    cancelled_by: int | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    message: str


@router.post('/book', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(ROLE_STUDENT, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    outbox = Outbox()
    try:
        appointment = booking.book_slot(
            db,
            current_user,
            data.slot_id,
            data.meeting_type,
            topic=data.topic,
            notes=data.notes,
            outbox=outbox,
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(outbox.dispatch)
    return appointment


@router.post('/{appointment_id}/cancel', response_model=MessageResponse)
def cancel_appointment(
    appointment_id: int,
    background_tasks: BackgroundTasks,
    data: CancelAppointmentRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    outbox = Outbox()
    try:
        booking.cancel_appointment(
            db,
            current_user,
            appointment_id,
            reason=data.reason if data else None,
            outbox=outbox,
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(outbox.dispatch)
    return MessageResponse(message='Appointment cancelled successfully.')


@router.post('/{appointment_id}/complete', response_model=MessageResponse)
def complete_appointment(
    appointment_id: int,
    data: CompleteAppointmentRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    outbox = Outbox()
    try:
        appointment = booking.complete_appointment(db, current_user, appointment_id, data.status, outbox=outbox)
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(outbox.dispatch)
    return MessageResponse(message=f'Appointment marked as {appointment.status}.')


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking.update_appointment(db, current_user, appointment_id, data.model_dump(exclude_unset=True))
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    status_filter: str | None = Query(default=None, alias='status'),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    upcoming_only: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking.list_appointments_for(
            db,
            current_user,
            status=status_filter,
            start_date=start_date,
            end_date=end_date,
            upcoming_only=upcoming_only,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking.get_appointment_for(db, current_user, appointment_id)
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
