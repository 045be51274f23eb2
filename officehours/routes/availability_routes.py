import datetime
from datetime import date, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.auth.dependencies import get_current_user, require_roles
from officehours.core import config
from officehours.core.errors import OfficeHoursError
from officehours.models.appointment import Appointment
from officehours.models.slot import MEETING_EITHER, SLOT_MEETING_TYPES, AvailabilitySlot
from officehours.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, User
from officehours.routes.common import database_unavailable, ensure_database_ready, get_db, to_http_exception
from officehours.services import slots as slot_store

router = APIRouter(tags=['availability'])


def normalize_meeting_type(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in SLOT_MEETING_TYPES:
        raise ValueError('Meeting type must be in-person, virtual, or either.')
    return normalized


def normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CreateSlotRequest(BaseModel):
    date: date
    start_time: time
    end_time: time
    location: str | None = None
    meeting_type: str = MEETING_EITHER
    notes: str | None = None

    @field_validator('meeting_type')
    @classmethod
    def validate_meeting_type(cls, value: str) -> str:
        return normalize_meeting_type(value)

    @field_validator('location', 'notes')
    @classmethod
    def strip_text(cls, value: str | None) -> str | None:
        return normalize_text(value)

    @model_validator(mode='after')
    def validate_window(self):
        if self.start_time >= self.end_time:
            raise ValueError('End time must be after start time.')
        return self


class BulkCreateSlotsRequest(BaseModel):
    slots: list[CreateSlotRequest]

    @field_validator('slots')
    @classmethod
    def validate_count(cls, value: list[CreateSlotRequest]) -> list[CreateSlotRequest]:
        if not value:
            raise ValueError('Slots array is required.')
        if len(value) > config.MAX_BULK_SLOTS:
            raise ValueError(f'Maximum {config.MAX_BULK_SLOTS} slots per request.')
        return value


class UpdateSlotRequest(BaseModel):
    date: datetime.date | None = None
    start_time: time | None = None
    end_time: time | None = None
    location: str | None = None
    meeting_type: str | None = None
    notes: str | None = None

    @field_validator('meeting_type')
    @classmethod
    def validate_meeting_type(cls, value: str | None) -> str | None:
        return normalize_meeting_type(value)

    @field_validator('location', 'notes')
    @classmethod
    def strip_text(cls, value: str | None) -> str | None:
        return normalize_text(value)


class SlotResponse(BaseModel):
    id: int
    instructor_id: int
    date: date
    start_time: time
    end_time: time
    location: str | None = None
    meeting_type: str
    notes: str | None = None
    recurring_pattern_id: int | None = None

    class Config:
        from_attributes = True


class SlotListingResponse(SlotResponse):
    is_booked: bool
    is_mine: bool = False
    appointment_id: int | None = None


class BookedAppointmentSummary(BaseModel):
    id: int
    student_id: int
    topic: str | None = None
    meeting_type: str
    status: str


class InstructorSlotResponse(SlotResponse):
    is_booked: bool
    appointment: BookedAppointmentSummary | None = None


class BulkCreateError(BaseModel):
    index: int
    error: str


class BulkCreateSlotsResponse(BaseModel):
    created: list[SlotResponse]
    errors: list[BulkCreateError]


class InstructorResponse(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str
    department: str | None = None

    class Config:
        from_attributes = True


def build_listing(slot: AvailabilitySlot, appointment: Appointment | None, viewer: User) -> SlotListingResponse:
    is_mine = appointment is not None and appointment.student_id == viewer.id
    return SlotListingResponse(
        **SlotResponse.model_validate(slot).model_dump(),
        is_booked=appointment is not None,
        is_mine=is_mine,
        appointment_id=appointment.id if is_mine else None,
    )


@router.get('/instructors', response_model=list[InstructorResponse])
def list_instructors(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return db.query(User).filter(
            User.role == ROLE_INSTRUCTOR,
            User.is_active.is_(True),
        ).order_by(User.last_name.asc(), User.first_name.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('', response_model=list[SlotListingResponse])
def list_availability_slots(
    instructor_id: int | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    available_only: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rows = slot_store.list_slots(
            db,
            instructor_id=instructor_id,
            start_date=start_date,
            end_date=end_date,
            available_only=available_only,
        )
        return [build_listing(slot, appointment, current_user) for slot, appointment in rows]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/mine', response_model=list[InstructorSlotResponse])
def list_my_slots(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        rows = slot_store.list_slots(
            db,
            instructor_id=current_user.id,
            start_date=start_date,
            end_date=end_date,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    return [
        InstructorSlotResponse(
            **SlotResponse.model_validate(slot).model_dump(),
            is_booked=appointment is not None,
            appointment=BookedAppointmentSummary(
                id=appointment.id,
                student_id=appointment.student_id,
                topic=appointment.topic,
                meeting_type=appointment.meeting_type,
                status=appointment.status,
            ) if appointment else None,
        )
        for slot, appointment in rows
    ]


@router.post('', response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(
    data: CreateSlotRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return slot_store.create_slot(
            db,
            current_user,
            data.date,
            data.start_time,
            data.end_time,
            location=data.location,
            meeting_type=data.meeting_type,
            notes=data.notes,
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/bulk', response_model=BulkCreateSlotsResponse, status_code=status.HTTP_201_CREATED)
def bulk_create_slots(
    data: BulkCreateSlotsRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        created, errors = slot_store.bulk_create_slots(
            db,
            current_user,
            [item.model_dump() for item in data.slots],
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return BulkCreateSlotsResponse(
        created=[SlotResponse.model_validate(slot) for slot in created],
        errors=[BulkCreateError(**error) for error in errors],
    )


@router.put('/{slot_id}', response_model=SlotResponse)
def update_slot(
    slot_id: int,
    data: UpdateSlotRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return slot_store.update_slot(db, current_user, slot_id, data.model_dump(exclude_unset=True))
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.delete('/{slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_slot(
    slot_id: int,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slot_store.delete_slot(db, current_user, slot_id)
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc
