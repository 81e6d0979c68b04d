from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ProgressEntryRead(BaseModel):
    timestamp: datetime
    message: str


class JobRead(BaseModel):
    id: str
    type: str
    status: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_ms: int
    owner_id: Optional[int] = None
    progress: List[ProgressEntryRead] = []
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    # Summary counters pulled out of ``result``
    stocks_found: int = 0
    results_saved: int = 0
    charts_downloaded: int = 0
    charts_saved: int = 0


class JobTypeStatus(BaseModel):
    is_running: bool
    job_id: Optional[str] = None
    duration_s: int = 0
    progress: List[ProgressEntryRead] = []


class JobStats(BaseModel):
    total: int
    running: int
    completed: int
    failed: int
    cancelled: int


class ChartDownloadRequest(BaseModel):
    max_concurrent: Optional[int] = Field(default=None, ge=1, le=16)


class JobStartResponse(BaseModel):
    success: bool
    job_id: str
    message: str


class MessageResponse(BaseModel):
    success: bool
    message: str


class TriggerResponse(MessageResponse):
    result: Union[str, int, None] = None


class ScheduledJobRead(BaseModel):
    name: str
    cron_expression: str
    description: Optional[str] = None
    is_active: bool
    running: bool = False
    next_run: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
