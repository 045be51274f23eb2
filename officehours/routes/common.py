from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from officehours.core.errors import OfficeHoursError
from officehours.database import SessionLocal, ensure_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


def to_http_exception(exc: OfficeHoursError) -> HTTPException:
    return HTTPException(
        status_code=exc.status_code,
        detail={'error': exc.kind, 'message': exc.message},
    )
