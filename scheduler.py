import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from periods import local_today
from recurrence import GenerationResult, RecurringGenerator


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def generate_current_month(
    source: str = "manual", today: Optional[date] = None
) -> GenerationResult:
    today = today or local_today()
    with session_scope() as session:
        result = RecurringGenerator(session).generate(today.year, today.month)
    logger.info(
        f"scheduler_run: source={source} year={today.year} month={today.month} "
        f"inserted={result.inserted} regenerated={result.regenerated} "
        f"unchanged={result.unchanged}"
    )
    return result


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        try:
            generate_current_month(source)
        except Exception:
            logger.exception(f"scheduler_run: source={source} failed")

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
