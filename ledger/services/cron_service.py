"""
APScheduler-based CronService for materializing recurring expenses.

Runs the generator once at startup and then daily (03:15 by default).
Generation is idempotent per (template, date), so overlapping or repeated
invocations won't duplicate data.
"""

import logging
from datetime import date, datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..recurrence import RecurringGenerator

logger = logging.getLogger(__name__)


class CronService:
    """Background scheduler for the recurring generation job."""

    def __init__(
        self,
        generator: RecurringGenerator,
        hour: int = 3,
        minute: int = 15,
        include_overdue: bool = True,
    ) -> None:
        self._generator = generator
        self._hour = hour
        self._minute = minute
        self._include_overdue = include_overdue
        self._scheduler: BackgroundScheduler | None = None
        self._daily_job_id = "generate_recurring_daily"
        self._startup_job_id = "generate_recurring_startup"

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        if self._scheduler is not None:
            logger.info("CronService already started; ignoring duplicate start.")
            return

        scheduler = BackgroundScheduler()

        # Immediate run on startup
        scheduler.add_job(
            self.run_once,
            id=self._startup_job_id,
            next_run_time=datetime.now(),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        scheduler.add_job(
            self.run_once,
            id=self._daily_job_id,
            trigger=CronTrigger(hour=self._hour, minute=self._minute),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=3600,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "CronService started: startup and daily (%02d:%02d) recurring jobs scheduled.",
            self._hour, self._minute,
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.shutdown(wait=False)
            logger.info("CronService stopped.")
        finally:
            self._scheduler = None

    def run_once(self) -> None:
        try:
            result = self._generator.run_generation(date.today(), include_overdue=self._include_overdue)
            logger.info(
                "Recurring generation executed: generated=%s errors=%s",
                result.generated_count, len(result.errors),
            )
        except Exception:
            logger.exception("Recurring generation failed")
