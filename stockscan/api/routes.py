"""
Job API Routes
==============

Start, inspect and cancel background jobs, and stream their progress
as Server-Sent Events.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from stockscan.api.schemas import (
    ChartDownloadRequest,
    JobRead,
    JobStartResponse,
    JobStats,
    JobTypeStatus,
    MessageResponse,
)
from stockscan.core.config import Config
from stockscan.core.errors import JobAlreadyRunningError
from stockscan.jobs.registry import JobRegistry, JobStatus, JobType
from stockscan.jobs.service import JobService
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

TERMINAL_TOPICS = ("completed", "error", "cancelled")
STATUS_TOPICS = {
    JobStatus.COMPLETED.value: "completed",
    JobStatus.FAILED.value: "error",
    JobStatus.CANCELLED.value: "cancelled",
}


def get_service(request: Request) -> JobService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Job service not initialized")
    return service


def get_registry(service: JobService = Depends(get_service)) -> JobRegistry:
    return service.registry


def _already_running(e: JobAlreadyRunningError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"success": False, "error": e.message, "job_id": e.running_job_id},
    )


@router.get("", response_model=List[JobRead])
async def list_jobs(registry: JobRegistry = Depends(get_registry)):
    return registry.list()


@router.post("/start-scraping", response_model=JobStartResponse)
async def start_scraping(service: JobService = Depends(get_service)):
    try:
        job_id = service.start_scraping_job()
    except JobAlreadyRunningError as e:
        return _already_running(e)
    return {"success": True, "job_id": job_id, "message": "Scraping job started successfully"}


@router.post("/start-chart-download", response_model=JobStartResponse)
async def start_chart_download(
    payload: Optional[ChartDownloadRequest] = Body(default=None),
    service: JobService = Depends(get_service),
):
    max_concurrent = payload.max_concurrent if payload else None
    try:
        job_id = service.start_chart_download_job(max_concurrent=max_concurrent)
    except JobAlreadyRunningError as e:
        return _already_running(e)
    return {"success": True, "job_id": job_id, "message": "Chart download job started successfully"}


@router.get("/running", response_model=List[JobRead])
async def running_jobs(registry: JobRegistry = Depends(get_registry)):
    return registry.list_running()


@router.get("/history", response_model=List[JobRead])
async def job_history(
    limit: int = Query(20, ge=1, le=500),
    registry: JobRegistry = Depends(get_registry),
):
    return registry.history(limit)


@router.get("/stats", response_model=JobStats)
async def job_stats(registry: JobRegistry = Depends(get_registry)):
    return registry.stats()


@router.get("/type/{job_type}", response_model=JobTypeStatus)
async def job_status_by_type(job_type: JobType, registry: JobRegistry = Depends(get_registry)):
    return registry.status_by_type(job_type)


@router.get("/{job_id}", response_model=JobRead)
async def get_job(job_id: str, registry: JobRegistry = Depends(get_registry)):
    status = registry.status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return status


@router.delete("/{job_id}", response_model=MessageResponse)
async def cancel_job(job_id: str, registry: JobRegistry = Depends(get_registry)):
    if not registry.cancel(job_id):
        raise HTTPException(status_code=404, detail="Job not found or already completed")
    return {"success": True, "message": "Job cancelled successfully"}


def sse_frame(event_type: str, **data: Any) -> str:
    payload = {"type": event_type, **data}
    return f"data: {json.dumps(payload, default=str)}\n\n"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def job_event_stream(registry: JobRegistry, job_id: str, ping_interval: float):
    """
    Yields SSE frames for one job until it reaches a terminal state.
    Bus subscriptions are removed however the stream ends.
    """
    snapshot = registry.status(job_id)
    if snapshot is None:
        yield sse_frame("error", job_id=job_id, error="Job not found")
        return

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def forward(topic: str):
        def handler(payload: Dict[str, Any]):
            if payload.get("job_id") == job_id:
                loop.call_soon_threadsafe(queue.put_nowait, (topic, payload))
        return handler

    unsubscribes = [
        registry.events.subscribe(topic, forward(topic))
        for topic in ("progress",) + TERMINAL_TOPICS
    ]

    try:
        yield sse_frame("initial", job=snapshot)

        # A job that finished before the client connected gets its outcome right away
        finished = STATUS_TOPICS.get(snapshot["status"])
        if finished:
            job = registry.get(job_id)
            queue.put_nowait((finished, {
                "job_id": job_id,
                "result": job.result if job else None,
                "error": snapshot["error"],
            }))

        while True:
            try:
                topic, payload = await asyncio.wait_for(queue.get(), timeout=ping_interval)
            except asyncio.TimeoutError:
                yield sse_frame("ping", timestamp=_now())
                continue

            if topic == "progress":
                yield sse_frame("progress", job_id=job_id, message=payload["message"], timestamp=payload["timestamp"])
            elif topic == "completed":
                yield sse_frame("completed", job_id=job_id, result=payload.get("result"))
                break
            elif topic == "error":
                yield sse_frame("error", job_id=job_id, error=payload.get("error"))
                break
            elif topic == "cancelled":
                yield sse_frame("cancelled", job_id=job_id)
                break
    finally:
        for unsubscribe in unsubscribes:
            unsubscribe()
        log.debug(f"[{job_id}] SSE stream closed")


@router.get("/{job_id}/stream")
async def stream_job(job_id: str, registry: JobRegistry = Depends(get_registry)):
    ping_interval = Config.get("sse", "ping_interval_seconds", default=30)
    return StreamingResponse(
        job_event_stream(registry, job_id, ping_interval),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
