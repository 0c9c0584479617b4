"""
Pydantic schemas for the build queue API.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class DeployRequest(BaseModel):
    """Schema for requesting a deployment."""
    force: bool = False


class OperationResponse(BaseModel):
    """Generic success/message result."""
    success: bool
    message: str


class QueuedJobInfo(BaseModel):
    id: str
    application_id: str
    created_at: datetime
    wait_seconds: float


class RunningJobInfo(BaseModel):
    id: str
    application_id: str
    started_at: datetime
    run_seconds: float


class QueueStatusResponse(BaseModel):
    """Snapshot of the build scheduler."""
    max_concurrent: int
    running: int
    queued: int
    queued_jobs: List[QueuedJobInfo] = Field(default_factory=list)
    running_jobs: List[RunningJobInfo] = Field(default_factory=list)


class RecentJobResponse(BaseModel):
    """A job from the scheduler's bounded history."""
    id: str
    application_id: str
    status: str
    force: bool = False
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
