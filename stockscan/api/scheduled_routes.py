from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request

from stockscan.api.schemas import MessageResponse, ScheduledJobRead, TriggerResponse
from stockscan.jobs.scheduler import JobScheduler

router = APIRouter(prefix="/scheduled-jobs", tags=["scheduled-jobs"])


def get_scheduler(request: Request) -> JobScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return scheduler


@router.get("", response_model=List[ScheduledJobRead])
async def list_scheduled_jobs(scheduler: JobScheduler = Depends(get_scheduler)):
    status = scheduler.status()
    return [
        {
            **job.as_dict(),
            "running": status[job.name]["running"],
            "next_run": status[job.name]["next_run"],
        }
        for job in scheduler.list_jobs()
    ]


@router.post("/start-all", response_model=MessageResponse)
async def start_all(scheduler: JobScheduler = Depends(get_scheduler)):
    scheduler.start_all()
    return {"success": True, "message": "All scheduled jobs started"}


@router.post("/stop-all", response_model=MessageResponse)
async def stop_all(scheduler: JobScheduler = Depends(get_scheduler)):
    scheduler.stop_all()
    return {"success": True, "message": "All scheduled jobs stopped"}


@router.post("/{name}/start", response_model=MessageResponse)
async def start_scheduled_job(name: str, scheduler: JobScheduler = Depends(get_scheduler)):
    job = scheduler.get_job(name)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Scheduled job not found: {name}")
    if not job.is_active:
        raise HTTPException(status_code=400, detail=f"Scheduled job is inactive: {name}")
    scheduler.start(name)
    return {"success": True, "message": f"Scheduled job {name} started"}


@router.post("/{name}/stop", response_model=MessageResponse)
async def stop_scheduled_job(name: str, scheduler: JobScheduler = Depends(get_scheduler)):
    if not scheduler.stop(name):
        raise HTTPException(status_code=404, detail=f"Scheduled job not found: {name}")
    return {"success": True, "message": f"Scheduled job {name} stopped"}


@router.post("/{name}/trigger", response_model=TriggerResponse)
async def trigger_scheduled_job(name: str, scheduler: JobScheduler = Depends(get_scheduler)):
    result = scheduler.trigger(name)
    if result is False:
        raise HTTPException(status_code=400, detail=f"Scheduled job {name} could not be triggered")
    return {"success": True, "message": f"Scheduled job {name} triggered", "result": result}
