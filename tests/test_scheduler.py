import asyncio
from datetime import timedelta

import pytest

from stockscan.core.errors import ConfigError
from stockscan.jobs.registry import JobRegistry, JobType, utcnow
from stockscan.jobs.scheduler import DEFAULT_JOBS, JobScheduler


class StubService:
    """Registers jobs without running anything."""

    def __init__(self, registry):
        self.registry = registry
        self.chart_starts = 0

    def start_scraping_job(self, owner_id=None):
        return self.registry.start(JobType.SCRAPING, owner_id=owner_id)

    def start_chart_download_job(self, owner_id=None, max_concurrent=None):
        self.chart_starts += 1
        return self.registry.start(JobType.CHART_DOWNLOAD, owner_id=owner_id)


def _scheduler():
    registry = JobRegistry()
    service = StubService(registry)
    return JobScheduler(service, registry, timezone="Asia/Kolkata", jobs_config=DEFAULT_JOBS), service, registry


def test_weekend_update_chains_charts_after_scraping_completes():
    scheduler, service, registry = _scheduler()

    job_id = scheduler.trigger("weekend_update")
    assert job_id.startswith("scraping_")
    assert service.chart_starts == 0

    registry.complete(job_id, {"stock_count": 1})
    assert service.chart_starts == 1
    assert registry.status_by_type(JobType.CHART_DOWNLOAD)["is_running"]

    # The follow-up is a one-shot
    again = registry.start(JobType.SCRAPING)
    registry.complete(again, {})
    assert service.chart_starts == 1


def test_failed_scraping_does_not_chain():
    scheduler, service, registry = _scheduler()

    job_id = scheduler.trigger("daily_scraping")
    registry.fail(job_id, RuntimeError("site down"))
    assert service.chart_starts == 0

    # No listener left behind for a later, unrelated scrape
    later = registry.start(JobType.SCRAPING)
    registry.complete(later, {})
    assert service.chart_starts == 0
    assert registry.events.subscriber_count("completed") == 0


def test_trigger_results():
    scheduler, service, registry = _scheduler()

    first = scheduler.trigger("market_hours_charts")
    assert first.startswith("charts_")
    assert scheduler.trigger("market_hours_charts") is False
    assert scheduler.trigger("no_such_job") is False

    registry.complete(first, {})
    registry.get(first).end_time = utcnow() - timedelta(hours=30)
    assert scheduler.trigger("job_cleanup") == 1


def test_full_update_rejected_while_scraping():
    scheduler, service, registry = _scheduler()
    registry.start(JobType.SCRAPING)

    assert scheduler.trigger("daily_scraping") is False
    assert registry.events.subscriber_count("completed") == 0


def test_start_and_stop_named_schedules():
    async def scenario():
        scheduler, _, _ = _scheduler()
        scheduler.run()
        try:
            assert all(not s["running"] and s["next_run"] is None for s in scheduler.status().values())

            assert scheduler.start("daily_scraping") is True
            assert scheduler.start("missing") is False
            status = scheduler.status()
            assert status["daily_scraping"]["running"] is True
            assert status["daily_scraping"]["next_run"] is not None
            assert status["daily_scraping"]["cron"] == "0 9 * * *"

            assert scheduler.stop("daily_scraping") is True
            assert scheduler.stop("missing") is False
            assert scheduler.status()["daily_scraping"]["next_run"] is None

            scheduler.start_all()
            assert all(s["running"] for s in scheduler.status().values())
            scheduler.stop_all()
            assert not any(s["running"] for s in scheduler.status().values())
        finally:
            scheduler.shutdown()

    asyncio.run(scenario())


def test_list_jobs_from_config():
    scheduler, _, _ = _scheduler()
    names = [job.name for job in scheduler.list_jobs()]
    assert names == ["daily_scraping", "market_hours_charts", "job_cleanup", "weekend_update"]


def test_invalid_cron_is_a_config_error():
    registry = JobRegistry()
    with pytest.raises(ConfigError):
        JobScheduler(StubService(registry), registry, jobs_config=[{"name": "job_cleanup", "cron": "not a cron"}])
