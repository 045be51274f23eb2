from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.auth.dependencies import get_current_user
from officehours.models.user import User
from officehours.routes.common import database_unavailable, ensure_database_ready, get_db
from officehours.services import notifications

router = APIRouter(tags=['notifications'])


class NotificationResponse(BaseModel):
    id: int
    kind: str
    title: str
    message: str
    link: str | None = None
    is_read: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    unread_count: int


class MarkReadResponse(BaseModel):
    updated: int


@router.get('', response_model=NotificationListResponse)
def list_notifications(
    include_read: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return NotificationListResponse(
            notifications=[
                NotificationResponse.model_validate(item)
                for item in notifications.list_notifications(db, current_user.id, include_read, limit)
            ],
            unread_count=notifications.count_unread(db, current_user.id),
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/read-all', response_model=MarkReadResponse)
def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return MarkReadResponse(updated=notifications.mark_all_read(db, current_user.id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


@router.post('/{notification_id}/read', response_model=MarkReadResponse)
def mark_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        updated = notifications.mark_read(db, current_user.id, notification_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    if not updated:
        raise HTTPException(status_code=404, detail='Notification not found.')
    return MarkReadResponse(updated=1)
