from datetime import date, datetime, time

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.auth.dependencies import get_current_user, require_roles
from officehours.core.errors import OfficeHoursError
from officehours.models.user import ROLE_ADMIN, ROLE_STUDENT, User
from officehours.routes.common import database_unavailable, ensure_database_ready, get_db, to_http_exception
from officehours.services import slots as slot_store
from officehours.services import waitlist
from officehours.services.outbox import Outbox

router = APIRouter(tags=['waitlist'])


class JoinWaitlistRequest(BaseModel):
    slot_id: int


class JoinWaitlistResponse(BaseModel):
    id: int
    slot_id: int
    position: int


class WaitlistEntryResponse(BaseModel):
    id: int
    slot_id: int
    student_id: int
    position: int
    notified: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class SlotWaitlistResponse(BaseModel):
    slot_id: int
    total_waiting: int
    my_position: int | None = None
    entries: list[WaitlistEntryResponse] | None = None


class MyWaitlistEntryResponse(BaseModel):
    id: int
    slot_id: int
    position: int
    notified: bool
    date: date
    start_time: time
    end_time: time
    location: str | None = None
    instructor_id: int


@router.post('/join', response_model=JoinWaitlistResponse, status_code=status.HTTP_201_CREATED)
def join_waitlist(
    data: JoinWaitlistRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(ROLE_STUDENT, ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    outbox = Outbox()
    try:
        entry = waitlist.join_waitlist(db, current_user, data.slot_id, outbox=outbox)
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(outbox.dispatch)
    return JoinWaitlistResponse(id=entry.id, slot_id=entry.slot_id, position=entry.position)


@router.delete('/leave/{slot_id}')
def leave_waitlist(
    slot_id: int,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    outbox = Outbox()
    try:
        waitlist.leave_waitlist(db, current_user, slot_id, outbox=outbox)
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    background_tasks.add_task(outbox.dispatch)
    return {'message': 'Removed from waitlist.'}


@router.get('/slot/{slot_id}', response_model=SlotWaitlistResponse)
def get_slot_waitlist(
    slot_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Full queue for the slot's instructor and admins; everyone else sees only their own place."""
    ensure_database_ready()

    try:
        slot = slot_store.get_slot(db, slot_id)
        total_waiting = waitlist.count_waiting(db, slot.id)

        if not slot_store.can_manage_slot(current_user, slot):
            return SlotWaitlistResponse(
                slot_id=slot.id,
                total_waiting=total_waiting,
                my_position=waitlist.get_student_position(db, current_user.id, slot.id),
            )

        return SlotWaitlistResponse(
            slot_id=slot.id,
            total_waiting=total_waiting,
            entries=[WaitlistEntryResponse.model_validate(entry) for entry in waitlist.get_waitlist(db, slot.id)],
        )
    except OfficeHoursError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/mine', response_model=list[MyWaitlistEntryResponse])
def list_my_waitlist(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [
            MyWaitlistEntryResponse(
                id=entry.id,
                slot_id=slot.id,
                position=entry.position,
                notified=entry.notified,
                date=slot.date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                location=slot.location,
                instructor_id=slot.instructor_id,
            )
            for entry, slot in waitlist.list_student_waitlist(db, current_user.id)
        ]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc
