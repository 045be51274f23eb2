import asyncio
import logging

from officehours.core import config
from officehours.database import SessionLocal
from officehours.services.reminders import ReminderSweepResult, run_reminder_sweep

logger = logging.getLogger(__name__)


def run_scheduled_sweep() -> ReminderSweepResult:
    db = SessionLocal()
    try:
        return run_reminder_sweep(db)
    finally:
        db.close()


class ReminderScheduler:
    """Runs the reminder sweep shortly after start-up and then on a fixed interval.

    The sweep itself is synchronous database work, so each tick runs it in a
    worker thread to keep the event loop free for requests.
    """

    def __init__(
        self,
        interval_minutes: int = config.REMINDER_SCAN_INTERVAL_MINUTES,
        startup_delay_seconds: int = config.REMINDER_STARTUP_DELAY_SECONDS,
        sweep=run_scheduled_sweep,
    ) -> None:
        self.interval_seconds = interval_minutes * 60
        self.startup_delay_seconds = startup_delay_seconds
        self.sweep = sweep
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> ReminderSweepResult | None:
        try:
            return await asyncio.to_thread(self.sweep)
        except Exception:
            logger.exception('Reminder sweep failed')
            return None

    async def _run(self) -> None:
        await asyncio.sleep(self.startup_delay_seconds)
        while True:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info('Reminder scheduler started (every %s minutes)', self.interval_seconds // 60)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info('Reminder scheduler stopped')
        self._task = None
