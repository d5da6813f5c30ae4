import logging
from typing import Any, Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler

from config import get_settings


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Runs one-off background jobs off the request path.

    A submitted job is never awaited by its submitter; if it raises, the
    failure is logged here and goes no further.
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None) -> None:
        settings = get_settings()
        self.scheduler = scheduler or BackgroundScheduler(timezone=settings.timezone)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.warning(
            f"background_job_failed: job_id={event.job_id} error={event.exception!r}"
        )

    def submit(self, func: Callable[..., Any], *args: Any) -> None:
        name = getattr(func, "__qualname__", repr(func))
        self.scheduler.add_job(func, args=list(args), name=name, misfire_grace_time=None)
        logger.info(f"background_job_submitted: job={name}")

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
