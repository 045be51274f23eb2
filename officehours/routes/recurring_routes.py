from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.auth.dependencies import require_roles
from officehours.core import config
from officehours.core.errors import OfficeHoursError
from officehours.models.slot import MEETING_EITHER, SLOT_MEETING_TYPES
from officehours.models.user import ROLE_ADMIN, ROLE_INSTRUCTOR, User
from officehours.routes.common import database_unavailable, ensure_database_ready, get_db, to_http_exception
from officehours.services import recurring

router = APIRouter(tags=['recurring'])


class CreatePatternRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    start_date: date
    end_date: date | None = None
    location: str | None = None
    meeting_type: str = MEETING_EITHER
    buffer_minutes: int = Field(default=0, ge=0)
    notes: str | None = None
    generate_slots: bool = True
    slot_duration: int = Field(default=config.DEFAULT_SLOT_DURATION_MINUTES, gt=0)

    @field_validator('meeting_type')
    @classmethod
    def validate_meeting_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SLOT_MEETING_TYPES:
            raise ValueError('Meeting type must be in-person, virtual, or either.')
        return normalized


class GenerateSlotsRequest(BaseModel):
    slot_duration: int = Field(default=config.DEFAULT_SLOT_DURATION_MINUTES, gt=0)
    weeks_ahead: int = Field(default=config.RECURRING_WEEKS_AHEAD, gt=0, le=52)


class PatternResponse(BaseModel):
    id: int
    instructor_id: int
    day_of_week: int
    start_time: time
    end_time: time
    start_date: date
    end_date: date | None = None
    location: str | None = None
    meeting_type: str
    buffer_minutes: int
    notes: str | None = None
    is_active: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CreatePatternResponse(BaseModel):
    pattern: PatternResponse
    slots_created: int


class GenerateSlotsResponse(BaseModel):
    slots_created: int


class DeletePatternResponse(BaseModel):
    message: str
    slots_deleted: int


@router.get('', response_model=list[PatternResponse])
def list_patterns(
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return recurring.list_patterns(db, current_user.id)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=CreatePatternResponse, status_code=status.HTTP_201_CREATED)
def create_pattern(
    data: CreatePatternRequest,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        pattern, slots_created = recurring.create_pattern(
            db,
            current_user,
            data.day_of_week,
            data.start_time,
            data.end_time,
            data.start_date,
            end_date=data.end_date,
            location=data.location,
            meeting_type=data.meeting_type,
            buffer_minutes=data.buffer_minutes,
            notes=data.notes,
            generate_slots=data.generate_slots,
            slot_duration=data.slot_duration,
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return CreatePatternResponse(pattern=PatternResponse.model_validate(pattern), slots_created=slots_created)


@router.post('/{pattern_id}/generate', response_model=GenerateSlotsResponse)
def generate_slots(
    pattern_id: int,
    data: GenerateSlotsRequest | None = None,
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    data = data or GenerateSlotsRequest()
    try:
        created = recurring.regenerate_slots(
            db,
            current_user,
            pattern_id,
            slot_duration=data.slot_duration,
            weeks_ahead=data.weeks_ahead,
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return GenerateSlotsResponse(slots_created=created)


@router.delete('/{pattern_id}', response_model=DeletePatternResponse)
def delete_pattern(
    pattern_id: int,
    delete_future_slots: bool = Query(default=False),
    current_user: User = Depends(require_roles(ROLE_INSTRUCTOR, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        slots_deleted = recurring.deactivate_pattern(
            db,
            current_user,
            pattern_id,
            delete_future_slots=delete_future_slots,
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return DeletePatternResponse(message='Pattern deactivated.', slots_deleted=slots_deleted)
