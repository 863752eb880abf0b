import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from adjustment import run_scheduled_adjustments
from config import get_settings
from notifications import NotificationQueue, build_dispatcher
from sweep import BudgetSweep
from principal import Principal


settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self.queue = NotificationQueue(build_dispatcher(settings))

    def sweep(self, source: str = "manual"):
        logger.info(f"scheduler_run: job=sweep source={source}")
        return BudgetSweep(queue=self.queue).run(Principal.system(), source=source)

    def _run_sweep(self, source: str) -> None:
        try:
            self.sweep(source)
        except Exception:
            logger.exception(f"scheduler_job_failed: job=sweep source={source}")

    def _run_adjustments(self, source: str) -> None:
        logger.info(f"scheduler_run: job=auto_adjust source={source}")
        try:
            run_scheduled_adjustments()
        except Exception:
            logger.exception(f"scheduler_job_failed: job=auto_adjust source={source}")

    def start(self) -> None:
        trigger = CronTrigger(hour=6, minute=0)
        self.scheduler.add_job(
            self._run_sweep,
            trigger,
            args=["daily_06:00"],
            id="budget_sweep_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_sweep,
            trigger,
            args=["hourly_safety_net"],
            id="budget_sweep_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
            max_instances=1,
        )

        trigger = CronTrigger(hour=3, minute=30)
        self.scheduler.add_job(
            self._run_adjustments,
            trigger,
            args=["daily_03:30"],
            id="budget_auto_adjust_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        self.scheduler.start()
        logger.info(
            "Scheduler started with daily 06:00 sweep, hourly safety net "
            "and daily 03:30 auto-adjust"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.queue.shutdown()
