"""Scheduler job endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from dealflow.core.exceptions import NotFoundError
from dealflow.dependencies import get_scheduler
from dealflow.scheduler import Scheduler
from dealflow.schemas import ApiResponse, JobResponse, JobTriggerResponse, ListMeta

router = APIRouter()


@router.get("", response_model=ApiResponse[List[JobResponse]])
async def list_jobs(scheduler: Scheduler = Depends(get_scheduler)):
    """List every registered job with its run statistics."""
    jobs = scheduler.all_jobs_status()
    return ApiResponse(
        status="success",
        data=[JobResponse.model_validate(job) for job in jobs],
        meta=ListMeta(total=len(jobs)),
    )


@router.get("/{name}", response_model=ApiResponse[JobResponse])
async def get_job(name: str, scheduler: Scheduler = Depends(get_scheduler)):
    status = scheduler.job_status(name)
    if status is None:
        raise NotFoundError("Job", name)
    return ApiResponse(status="success", data=JobResponse.model_validate(status))


@router.post("/{name}/trigger", response_model=ApiResponse[JobTriggerResponse])
async def trigger_job(name: str, scheduler: Scheduler = Depends(get_scheduler)):
    """Make a job due now. Ignored while the job is running."""
    triggered = scheduler.trigger(name)
    return ApiResponse(
        status="success",
        data=JobTriggerResponse(name=name, triggered=triggered),
    )
