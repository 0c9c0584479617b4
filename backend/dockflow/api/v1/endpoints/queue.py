"""
API endpoints for the build queue.
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from dockflow.core.container import get_scheduler
from dockflow.schemas.queue import OperationResponse, QueueStatusResponse, RecentJobResponse
from dockflow.services.deployment.scheduler import BuildScheduler

router = APIRouter()


@router.get("", response_model=QueueStatusResponse)
async def get_queue_status(
    scheduler: BuildScheduler = Depends(get_scheduler),
) -> QueueStatusResponse:
    return scheduler.queue_status()


@router.get("/recent", response_model=List[RecentJobResponse])
async def get_recent_jobs(
    limit: int = Query(10, ge=1, le=50),
    scheduler: BuildScheduler = Depends(get_scheduler),
) -> List[RecentJobResponse]:
    """Finished jobs, newest first."""
    return [
        RecentJobResponse(
            id=job.id,
            application_id=job.application_id,
            status=job.status.value,
            force=job.force,
            created_at=job.created_at,
            started_at=job.started_at,
            finished_at=job.finished_at,
            duration_seconds=job.duration_seconds,
            error=job.error,
        )
        for job in scheduler.recent_jobs(limit)
    ]


@router.delete("/{application_id}", response_model=OperationResponse)
async def cancel_queued_job(
    application_id: str,
    scheduler: BuildScheduler = Depends(get_scheduler),
) -> OperationResponse:
    """Cancel the earliest queued job for an application. Running jobs are not affected."""
    if scheduler.cancel_queued(application_id):
        return OperationResponse(success=True, message=f"Cancelled queued job for {application_id}")
    return OperationResponse(success=False, message=f"No queued job for {application_id}")
