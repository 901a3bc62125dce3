"""
Background task scheduler for retention and monitoring jobs.

Uses APScheduler for reliable scheduled task execution. Each concern
(policy execution, session cleanup, alert monitors, report generation)
is registered as its own named task so it can be paused, resumed or
removed independently, and runs in the scheduler's thread pool so a
slow task never delays the others.
"""

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from core.correlation import correlation_scope

log = logger.bind(component="scheduler")


class PeriodicTaskScheduler:
    """
    Named periodic tasks on top of an APScheduler ``BackgroundScheduler``.

    A task never overlaps with itself (``max_instances=1``) and missed runs
    are coalesced into one. Different tasks run concurrently.
    """

    def __init__(self, max_workers: int = 4, timezone_name: str = "UTC"):
        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers)},
            job_defaults={"coalesce": True, "max_instances": 1},
            timezone=timezone_name,
        )
        self._descriptions: dict[str, str] = {}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @staticmethod
    def _wrap(name: str, func: Callable[..., Any]) -> Callable[..., Any]:
        """Run a task under its own correlation ID and log its failures."""

        def runner(*args: Any, **kwargs: Any) -> Any:
            with correlation_scope("job"):
                log.debug(f"Task {name} starting")
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    # Failures stay in this run; the next tick starts clean
                    log.exception(f"Task {name} failed: {e!r}")
                    return None

        return runner

    def _add(
        self,
        name: str,
        func: Callable[..., Any],
        trigger: Any,
        description: str,
        misfire_grace_time: int | None,
        args: tuple = (),
    ) -> Job:
        job = self._scheduler.add_job(
            self._wrap(name, func),
            trigger,
            args=args,
            id=name,
            name=description or name,
            replace_existing=True,
            misfire_grace_time=misfire_grace_time,
        )
        self._descriptions[name] = description or name
        return job

    def add_interval_task(
        self,
        name: str,
        func: Callable[[], Any],
        seconds: int,
        description: str = "",
    ) -> Job:
        """Register ``func`` to run every ``seconds`` seconds."""
        return self._add(
            name,
            func,
            IntervalTrigger(seconds=seconds),
            description,
            misfire_grace_time=seconds,
        )

    def add_cron_task(
        self,
        name: str,
        func: Callable[[], Any],
        cron_expression: str,
        description: str = "",
    ) -> Job:
        """Register ``func`` on a standard five-field crontab expression."""
        return self._add(
            name,
            func,
            CronTrigger.from_crontab(cron_expression, timezone=timezone.utc),
            description,
            misfire_grace_time=3600,  # 1 hour grace for missed jobs
        )

    def run_once(
        self,
        name: str,
        func: Callable[..., Any],
        *args: Any,
        delay_seconds: int = 0,
    ) -> Job:
        """Schedule a one-off task ``delay_seconds`` from now."""
        run_at = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        return self._add(
            name,
            func,
            DateTrigger(run_date=run_at),
            f"One-off: {name}",
            misfire_grace_time=None,
            args=args,
        )

    def start(self) -> None:
        if self._scheduler.running:
            log.warning("Scheduler already running")
            return
        self._scheduler.start()
        log.info(f"Background scheduler started with {len(self._descriptions)} tasks")

    def pause_task(self, name: str) -> None:
        self._scheduler.pause_job(name)
        log.info(f"Task {name} paused")

    def resume_task(self, name: str) -> None:
        self._scheduler.resume_job(name)
        log.info(f"Task {name} resumed")

    def remove_task(self, name: str) -> bool:
        try:
            self._scheduler.remove_job(name)
        except JobLookupError:
            return False
        self._descriptions.pop(name, None)
        return True

    def has_task(self, name: str) -> bool:
        return self._scheduler.get_job(name) is not None

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop every timer.

        With ``wait=True`` this blocks until running tasks return, so callers
        can tear down shared resources afterwards.
        """
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            log.info("Background scheduler stopped")

    def status(self) -> dict:
        """Get current scheduler status for monitoring."""
        jobs = []
        for job in self._scheduler.get_jobs():
            # Jobs added before start() have no next_run_time yet
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )

        return {"running": self._scheduler.running, "jobs": jobs}
