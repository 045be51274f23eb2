import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from officehours.database import SessionLocal

logger = logging.getLogger(__name__)

SideEffect = Callable[..., Any]


class Outbox:
    """Collects side effects of a committed operation and runs them afterwards.

    Every effect is called as ``effect(db, *args, **kwargs)``. A failing effect
    is logged and skipped; it never reaches the caller of the primary operation.
    Effects should take identifiers, not ORM instances, because they may run in
    a different session than the one that queued them.
    """

    def __init__(self) -> None:
        self._pending: list[tuple[SideEffect, tuple, dict]] = []

    def add(self, effect: SideEffect, *args: Any, **kwargs: Any) -> None:
        self._pending.append((effect, args, kwargs))

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> list[str]:
        return [effect.__name__ for effect, _args, _kwargs in self._pending]

    def flush(self, db: Session) -> int:
        pending, self._pending = self._pending, []
        completed = 0
        for effect, args, kwargs in pending:
            try:
                effect(db, *args, **kwargs)
                completed += 1
            except Exception:
                db.rollback()
                logger.exception('Side effect %s failed', effect.__name__)
        return completed

    def dispatch(self) -> None:
        """Run the queued effects in a fresh session, for FastAPI background tasks."""
        if not self._pending:
            return
        db = SessionLocal()
        try:
            self.flush(db)
        finally:
            db.close()
