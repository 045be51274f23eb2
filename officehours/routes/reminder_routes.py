import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officehours.auth.dependencies import require_roles
from officehours.models.user import ROLE_ADMIN, User
from officehours.routes.common import database_unavailable, ensure_database_ready, get_db
from officehours.services.reminders import run_reminder_sweep

router = APIRouter(tags=['reminders'])

logger = logging.getLogger(__name__)


class ReminderSweepResponse(BaseModel):
    scanned: int
    sent: int
    failed: int


@router.post('/run', response_model=ReminderSweepResponse)
def run_reminders(
    current_user: User = Depends(require_roles(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    """Trigger a reminder sweep outside the regular schedule."""
    ensure_database_ready()

    logger.info('Manual reminder sweep requested by user %s', current_user.id)
    try:
        result = run_reminder_sweep(db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc

    return ReminderSweepResponse(scanned=result.scanned, sent=result.sent, failed=result.failed)
