"""
Job Registry - In-memory Job Lifecycle Tracking
===============================================

Single owner of every job record. Enforces one running job per type,
keeps an ordered progress log per job, and re-emits every transition
on an ``EventBus`` so SSE streams and the scheduler can react.

Terminal jobs (completed / failed / cancelled) are immutable and are
only removed by ``cleanup``.
"""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from stockscan.core.errors import JobAlreadyRunningError
from stockscan.jobs.events import EventBus
from stockscan.utils.logger import get_logger

log = get_logger(__name__)


class JobType(str, Enum):
    SCRAPING = "scraping"
    CHART_DOWNLOAD = "chart_download"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ID_PREFIXES = {
    JobType.SCRAPING: "scraping",
    JobType.CHART_DOWNLOAD: "charts",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProgressEntry:
    timestamp: datetime
    message: str

    def as_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "message": self.message}


@dataclass
class Job:
    id: str
    type: JobType
    status: JobStatus = JobStatus.RUNNING
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    progress: List[ProgressEntry] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    owner_id: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobStatus.RUNNING

    @property
    def duration_ms(self) -> int:
        end = self.end_time or utcnow()
        return int((end - self.start_time).total_seconds() * 1000)

    def snapshot(self) -> Dict[str, Any]:
        result = self.result or {}
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "owner_id": self.owner_id,
            "progress": [entry.as_dict() for entry in self.progress],
            "result": copy.deepcopy(self.result),
            "error": self.error["message"] if self.error else None,
            "stocks_found": result.get("stock_count", 0),
            "results_saved": result.get("updated_count", 0),
            "charts_downloaded": result.get("chart_count", 0),
            "charts_saved": result.get("updated_chart_count", 0),
        }


class JobRegistry:
    """
    Thread-safe registry of background jobs.

    All state changes go through the methods below; the event bus is
    notified after the lock is released so subscribers may call back in.
    """

    def __init__(self, events: Optional[EventBus] = None):
        self.events = events or EventBus()
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.RLock()
        self._counter = 0

    def _coerce_type(self, job_type: Union[JobType, str]) -> JobType:
        return job_type if isinstance(job_type, JobType) else JobType(job_type)

    def _running_of_type(self, job_type: JobType) -> Optional[Job]:
        for job in self._jobs.values():
            if job.type is job_type and job.status is JobStatus.RUNNING:
                return job
        return None

    def start(self, job_type: Union[JobType, str], owner_id: Optional[int] = None) -> str:
        """
        Register a new running job and return its id.

        Raises:
            JobAlreadyRunningError: a job of the same type is still running
        """
        job_type = self._coerce_type(job_type)
        with self._lock:
            running = self._running_of_type(job_type)
            if running is not None:
                raise JobAlreadyRunningError(job_type.value, running.id)

            self._counter += 1
            job_id = f"{ID_PREFIXES[job_type]}_{self._counter}_{int(time.time() * 1000)}"
            job = Job(id=job_id, type=job_type, owner_id=owner_id)
            self._jobs[job_id] = job

        log.info(f"[{job_id}] Started {job_type.value} job")
        self.events.emit("started", {"job_id": job_id, "type": job_type.value})
        return job_id

    def progress(self, job_id: str, message: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                log.debug(f"[{job_id}] Ignoring progress for unknown or finished job: {message}")
                return
            entry = ProgressEntry(timestamp=utcnow(), message=message)
            job.progress.append(entry)

        log.info(f"[{job_id}] {message}")
        self.events.emit("progress", {
            "job_id": job_id,
            "message": message,
            "timestamp": entry.timestamp.isoformat(),
        })

    def _finish(self, job_id: str, status: JobStatus, **fields) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return None
            job.status = status
            job.end_time = utcnow()
            for name, value in fields.items():
                setattr(job, name, value)
            return job

    def complete(self, job_id: str, result: Optional[Dict[str, Any]] = None) -> bool:
        job = self._finish(job_id, JobStatus.COMPLETED, result=dict(result or {}))
        if job is None:
            log.warning(f"[{job_id}] complete() ignored: job unknown or already finished")
            return False

        log.info(f"[{job_id}] Job completed in {job.duration_ms}ms")
        self.events.emit("completed", {
            "job_id": job_id,
            "type": job.type.value,
            "result": copy.deepcopy(job.result),
        })
        return True

    def fail(self, job_id: str, error: Union[BaseException, str], stack: Optional[str] = None) -> bool:
        message = str(error)
        job = self._finish(job_id, JobStatus.FAILED, error={"message": message, "stack": stack})
        if job is None:
            log.warning(f"[{job_id}] fail() ignored: job unknown or already finished")
            return False

        log.error(f"[{job_id}] Job failed: {message}")
        self.events.emit("error", {
            "job_id": job_id,
            "type": job.type.value,
            "error": message,
            "stack": stack,
        })
        return True

    def cancel(self, job_id: str) -> bool:
        """
        Mark a running job cancelled. Work already in flight is not interrupted;
        coordinators poll ``is_cancelled`` and stop starting new work.
        """
        job = self._finish(job_id, JobStatus.CANCELLED)
        if job is None:
            return False

        log.info(f"[{job_id}] Job cancelled")
        self.events.emit("cancelled", {"job_id": job_id, "type": job.type.value})
        return True

    def is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            return job is not None and job.status is JobStatus.CANCELLED

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def status(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job else None

    def status_by_type(self, job_type: Union[JobType, str]) -> Dict[str, Any]:
        job_type = self._coerce_type(job_type)
        with self._lock:
            job = self._running_of_type(job_type)
            if job is None:
                return {"is_running": False, "job_id": None, "duration_s": 0, "progress": []}
            return {
                "is_running": True,
                "job_id": job.id,
                "duration_s": job.duration_ms // 1000,
                "progress": [entry.as_dict() for entry in job.progress],
            }

    def list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [job.snapshot() for job in self._jobs.values()]

    def list_running(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [job.snapshot() for job in self._jobs.values() if not job.is_terminal]

    def history(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Terminal jobs, newest first."""
        with self._lock:
            # Insertion order is start order
            finished = [job for job in reversed(self._jobs.values()) if job.is_terminal]
            return [job.snapshot() for job in finished[:max(0, limit)]]

    def stats(self) -> Dict[str, int]:
        with self._lock:
            jobs = list(self._jobs.values())
        return {
            "total": len(jobs),
            "running": sum(1 for job in jobs if job.status is JobStatus.RUNNING),
            "completed": sum(1 for job in jobs if job.status is JobStatus.COMPLETED),
            "failed": sum(1 for job in jobs if job.status is JobStatus.FAILED),
            "cancelled": sum(1 for job in jobs if job.status is JobStatus.CANCELLED),
        }

    def cleanup(self, max_age: timedelta = timedelta(hours=24)) -> int:
        """Drop terminal jobs that ended more than ``max_age`` ago. Returns the count removed."""
        cutoff = utcnow() - max_age
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.is_terminal and job.end_time is not None and job.end_time < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]

        if expired:
            log.info(f"🧹 Cleaned up {len(expired)} old jobs")
        return len(expired)
