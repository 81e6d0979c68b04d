from datetime import timedelta

import pytest

from stockscan.core.errors import JobAlreadyRunningError
from stockscan.jobs.registry import JobRegistry, JobStatus, JobType, utcnow


def test_start_rejects_second_job_of_same_type():
    registry = JobRegistry()
    first = registry.start(JobType.SCRAPING)

    with pytest.raises(JobAlreadyRunningError) as exc_info:
        registry.start(JobType.SCRAPING)

    assert exc_info.value.running_job_id == first
    assert len(registry.list_running()) == 1


def test_different_types_run_side_by_side():
    registry = JobRegistry()
    scraping = registry.start(JobType.SCRAPING)
    charts = registry.start("chart_download")

    assert scraping.startswith("scraping_")
    assert charts.startswith("charts_")
    assert {job["id"] for job in registry.list_running()} == {scraping, charts}


def test_new_job_allowed_once_previous_is_terminal():
    registry = JobRegistry()
    first = registry.start(JobType.SCRAPING)
    registry.complete(first, {"stock_count": 1})

    second = registry.start(JobType.SCRAPING)
    assert second != first


def test_progress_is_ordered_and_frozen_after_completion():
    registry = JobRegistry()
    job_id = registry.start(JobType.SCRAPING)
    for i in range(5):
        registry.progress(job_id, f"step {i}")
    registry.complete(job_id, {"stock_count": 3, "updated_count": 2})

    registry.progress(job_id, "late message")
    assert registry.fail(job_id, RuntimeError("too late")) is False
    assert registry.complete(job_id, {"stock_count": 99}) is False

    status = registry.status(job_id)
    assert [p["message"] for p in status["progress"]] == [f"step {i}" for i in range(5)]
    assert status["status"] == "completed"
    assert status["stocks_found"] == 3
    assert status["results_saved"] == 2
    assert status["end_time"] is not None


def test_cancel_semantics():
    registry = JobRegistry()
    job_id = registry.start(JobType.CHART_DOWNLOAD)

    assert registry.cancel(job_id) is True
    assert registry.is_cancelled(job_id)
    assert registry.cancel(job_id) is False
    assert registry.cancel("charts_404_0") is False
    assert registry.complete(job_id) is False
    assert registry.status(job_id)["status"] == JobStatus.CANCELLED.value


def test_fail_records_message_and_stack():
    registry = JobRegistry()
    job_id = registry.start(JobType.SCRAPING)

    registry.fail(job_id, ValueError("db down"), "Traceback: ...")

    job = registry.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error == {"message": "db down", "stack": "Traceback: ..."}
    assert registry.status(job_id)["error"] == "db down"


def test_events_emitted_for_every_transition():
    registry = JobRegistry()
    seen = []
    for topic in ("started", "progress", "completed", "error", "cancelled"):
        registry.events.subscribe(topic, lambda payload, topic=topic: seen.append((topic, payload["job_id"])))

    a = registry.start(JobType.SCRAPING)
    registry.progress(a, "hello")
    registry.complete(a, {})
    b = registry.start(JobType.SCRAPING)
    registry.fail(b, "boom")
    c = registry.start(JobType.SCRAPING)
    registry.cancel(c)

    assert seen == [
        ("started", a), ("progress", a), ("completed", a),
        ("started", b), ("error", b),
        ("started", c), ("cancelled", c),
    ]


def test_status_by_type():
    registry = JobRegistry()
    assert registry.status_by_type(JobType.SCRAPING)["is_running"] is False

    job_id = registry.start(JobType.SCRAPING)
    registry.progress(job_id, "working")
    status = registry.status_by_type("scraping")

    assert status["is_running"] is True
    assert status["job_id"] == job_id
    assert status["progress"][0]["message"] == "working"


def test_history_newest_first_and_stats():
    registry = JobRegistry()
    ids = []
    for _ in range(3):
        job_id = registry.start(JobType.SCRAPING)
        registry.complete(job_id, {})
        ids.append(job_id)
    failed = registry.start(JobType.CHART_DOWNLOAD)
    registry.fail(failed, "nope")
    registry.start(JobType.SCRAPING)

    history = registry.history(limit=3)
    assert [job["id"] for job in history] == [failed, ids[2], ids[1]]
    assert registry.stats() == {"total": 5, "running": 1, "completed": 3, "failed": 1, "cancelled": 0}


def test_cleanup_removes_only_old_terminal_jobs():
    registry = JobRegistry()
    old = registry.start(JobType.SCRAPING)
    registry.complete(old, {})
    registry.get(old).end_time = utcnow() - timedelta(hours=25)

    recent = registry.start(JobType.SCRAPING)
    registry.complete(recent, {})
    running = registry.start(JobType.CHART_DOWNLOAD)

    assert registry.cleanup(timedelta(hours=24)) == 1
    assert registry.status(old) is None
    assert registry.status(recent) is not None
    assert registry.status(running) is not None
