"""Background job lifecycle, execution and scheduling."""

from .registry import Job, JobRegistry, JobStatus, JobType
from .scheduler import JobScheduler, ScheduledJob
from .service import JobService

__all__ = [
    "Job",
    "JobRegistry",
    "JobStatus",
    "JobType",
    "JobScheduler",
    "ScheduledJob",
    "JobService",
]
