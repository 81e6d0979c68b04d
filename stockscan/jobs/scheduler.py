"""
Job Scheduler - Named Cron Schedules
====================================

Registers the named cron schedules from settings.yaml on an APScheduler
``AsyncIOScheduler``. Every schedule is added paused and only fires
after ``start(name)`` / ``start_all()``. ``trigger(name)`` runs the
same action a cron tick would, immediately.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from stockscan.core.config import Config
from stockscan.core.errors import ConfigError, JobAlreadyRunningError
from stockscan.jobs.registry import JobRegistry, JobType
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

DAILY_SCRAPING = "daily_scraping"
MARKET_HOURS_CHARTS = "market_hours_charts"
JOB_CLEANUP = "job_cleanup"
WEEKEND_UPDATE = "weekend_update"

DEFAULT_JOBS = [
    {"name": DAILY_SCRAPING, "cron": "0 9 * * *",
     "description": "Daily stock screening from all active screeners, followed by chart download"},
    {"name": MARKET_HOURS_CHARTS, "cron": "0 10,14,18 * * 1-5",
     "description": "Refresh charts during market hours on weekdays"},
    {"name": JOB_CLEANUP, "cron": "0 0 * * *",
     "description": "Remove finished jobs older than the retention window"},
    {"name": WEEKEND_UPDATE, "cron": "0 8 * * 6",
     "description": "Full update of screeners and charts on Saturday"},
]

TriggerResult = Union[str, int, bool]


@dataclass
class ScheduledJob:
    name: str
    cron_expression: str
    description: str = ""
    is_active: bool = True

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "cron_expression": self.cron_expression,
            "description": self.description,
            "is_active": self.is_active,
        }


class JobScheduler:
    """
    Owns the APScheduler instance and the name -> action table.

    ``service`` is anything with ``start_scraping_job()`` and
    ``start_chart_download_job()`` (normally a ``JobService``).
    """

    def __init__(
        self,
        service,
        registry: JobRegistry,
        timezone: Optional[str] = None,
        jobs_config: Optional[List[Dict[str, Any]]] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        cleanup_max_age: Optional[timedelta] = None,
    ):
        self.service = service
        self.registry = registry
        self.timezone = timezone or Config.get("scheduler", "timezone", default="Asia/Kolkata")
        self.cleanup_max_age = cleanup_max_age or timedelta(
            hours=Config.get("jobs", "cleanup_max_age_hours", default=24)
        )
        self._scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)
        self._jobs: Dict[str, ScheduledJob] = {}
        self._actions: Dict[str, Callable[[], TriggerResult]] = {}
        self._running: Dict[str, bool] = {}

        actions = {
            DAILY_SCRAPING: self.start_full_update,
            MARKET_HOURS_CHARTS: self.start_chart_update,
            JOB_CLEANUP: self.cleanup_jobs,
            WEEKEND_UPDATE: self.start_full_update,
        }
        configured = jobs_config if jobs_config is not None else Config.get("scheduler", "jobs", default=DEFAULT_JOBS)
        for entry in configured:
            name = entry.get("name")
            if name not in actions:
                raise ConfigError(f"Unknown scheduled job: {name}", key="name", section="scheduler.jobs")
            job = ScheduledJob(
                name=name,
                cron_expression=entry.get("cron") or entry.get("cron_expression"),
                description=entry.get("description", ""),
                is_active=entry.get("is_active", True),
            )
            self.register(job, actions[name])

    def register(self, job: ScheduledJob, fn: Callable[[], TriggerResult]) -> None:
        """Add a named schedule. It stays paused until ``start(name)``."""
        try:
            trigger = CronTrigger.from_crontab(job.cron_expression, timezone=self.timezone)
        except ValueError as e:
            raise ConfigError(f"Invalid cron expression for {job.name}: {e}", key=job.name, section="scheduler.jobs") from e

        self._scheduler.add_job(
            self._tick,
            trigger,
            args=[job.name],
            id=job.name,
            name=job.name,
            next_run_time=None,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._jobs[job.name] = job
        self._actions[job.name] = fn
        self._running[job.name] = False
        log.info(f"Scheduled job registered: {job.name} ({job.cron_expression})")

    async def _tick(self, name: str) -> None:
        log.info(f"⏰ Running scheduled job: {name}")
        try:
            self.trigger(name)
        except Exception as e:
            log.exception(f"Scheduled job {name} failed: {e}")

    def run(self) -> None:
        """Start the underlying APScheduler. Must be called from inside the event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            log.info(f"🚀 Job scheduler started ({len(self._jobs)} schedules, timezone {self.timezone})")

    def start(self, name: str) -> bool:
        job = self._jobs.get(name)
        if job is None:
            log.warning(f"Scheduled job not found: {name}")
            return False
        if not job.is_active:
            log.warning(f"Scheduled job is inactive: {name}")
            return False

        self._scheduler.resume_job(name)
        self._running[name] = True
        log.info(f"▶️ Scheduled job started: {name}")
        return True

    def stop(self, name: str) -> bool:
        if name not in self._jobs:
            log.warning(f"Scheduled job not found: {name}")
            return False

        self._scheduler.pause_job(name)
        self._running[name] = False
        log.info(f"⏹ Scheduled job stopped: {name}")
        return True

    def start_all(self) -> None:
        for name in self._jobs:
            self.start(name)

    def stop_all(self) -> None:
        for name in self._jobs:
            self.stop(name)

    def status(self) -> Dict[str, Dict[str, Any]]:
        status = {}
        for name, job in self._jobs.items():
            aps_job = self._scheduler.get_job(name)
            next_run = getattr(aps_job, "next_run_time", None) if aps_job else None
            status[name] = {
                "running": self._running[name],
                "cron": job.cron_expression,
                "description": job.description,
                "next_run": next_run.isoformat() if next_run else None,
            }
        return status

    def list_jobs(self) -> List[ScheduledJob]:
        return list(self._jobs.values())

    def get_job(self, name: str) -> Optional[ScheduledJob]:
        return self._jobs.get(name)

    def trigger(self, name: str) -> TriggerResult:
        """
        Run a schedule's action now. Returns the started job id, the
        cleanup count, or False for unknown names and rejected starts.
        """
        action = self._actions.get(name)
        if action is None:
            log.warning(f"Cannot trigger unknown scheduled job: {name}")
            return False
        log.info(f"Manually triggering scheduled job: {name}")
        return action()

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            log.info("🛑 Job scheduler stopped")

    def start_full_update(self) -> TriggerResult:
        """
        Scrape, then download charts once a scraping job completes.

        The follow-up listens for the next completed scraping job of any id,
        so a manual scrape finishing first would also set off the charts.
        """
        try:
            job_id = self.service.start_scraping_job()
        except JobAlreadyRunningError as e:
            log.warning(f"Full update skipped: {e}")
            return False

        events = self.registry.events
        is_scraping = lambda payload: payload.get("type") == JobType.SCRAPING.value
        unsubscribes = []

        def drop_listeners():
            for unsubscribe in unsubscribes:
                unsubscribe()

        def on_completed(payload):
            drop_listeners()
            log.info(f"Scraping job {payload['job_id']} completed, starting chart download")
            self.start_chart_update()

        def on_stopped(payload):
            drop_listeners()
            log.info(f"Scraping job {payload['job_id']} did not complete, skipping chart download")

        unsubscribes.append(events.once("completed", on_completed, predicate=is_scraping))
        unsubscribes.append(events.once("error", on_stopped, predicate=is_scraping))
        unsubscribes.append(events.once("cancelled", on_stopped, predicate=is_scraping))
        return job_id

    def start_chart_update(self) -> TriggerResult:
        try:
            return self.service.start_chart_download_job()
        except JobAlreadyRunningError as e:
            log.warning(f"Chart update skipped: {e}")
            return False

    def cleanup_jobs(self) -> int:
        return self.registry.cleanup(self.cleanup_max_age)


async def run_forever(scheduler: JobScheduler) -> None:
    """Start every schedule and block until cancelled."""
    scheduler.run()
    scheduler.start_all()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        scheduler.shutdown()
