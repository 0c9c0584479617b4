"""
Bounded-concurrency, single-flight deployment scheduler.

All queue, running and history state is private to one BuildScheduler
instance. An application id is in at most one of {queued, running} at any
time; the concurrency limit is re-read on every dispatch pass so operators
can change it without a restart, and lowering it never preempts running jobs.
"""
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from dockflow.core.events import DeploymentStartedEvent, EventDispatcher, event_dispatcher
from dockflow.core.exceptions import DomainException
from dockflow.schemas.application import utcnow
from dockflow.schemas.queue import QueuedJobInfo, QueueStatusResponse, RunningJobInfo
from dockflow.services.deployment.orchestrator import DeploymentResult, HandoffCallback

logger = logging.getLogger(__name__)

HISTORY_SIZE = 50
CANCELLED_MESSAGE = "Build cancelled by user"

Runner = Callable[[str, bool, HandoffCallback], Awaitable[DeploymentResult]]


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class DeploymentJob:
    """A deployment request from admission to its terminal state."""
    id: str
    application_id: str
    force: bool
    future: asyncio.Future
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None


class BuildScheduler:
    """
    FIFO job queue driving the deployment orchestrator.

    Each job holds its slot for its whole run, including the install and
    the verification delay.
    """

    def __init__(
        self,
        runner: Runner,
        limit_provider: Callable[[], int],
        dispatcher: Optional[EventDispatcher] = None,
        history_size: int = HISTORY_SIZE,
    ):
        """
        Initialize the scheduler.

        Args:
            runner: Coroutine function (application_id, force, on_handoff) -> DeploymentResult
            limit_provider: Returns the current concurrency limit
            dispatcher: Event dispatcher for DeploymentStartedEvent
            history_size: Number of finished jobs retained
        """
        self._runner = runner
        self._limit_provider = limit_provider
        self._dispatcher = dispatcher or event_dispatcher
        self._waiting: Deque[DeploymentJob] = deque()
        self._running: Dict[str, DeploymentJob] = {}
        self._history: Deque[DeploymentJob] = deque(maxlen=history_size)
        self._tasks: set = set()
        self._last_limit = 1
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def enqueue(self, application_id: str, force: bool = False) -> asyncio.Future:
        """
        Admit a deployment request.

        Returns:
            Future resolving to a DeploymentResult. Duplicate requests get an
            already-resolved failure and nothing is enqueued.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        if self.is_queued(application_id) or self.is_building(application_id):
            message = f"Application {application_id} is already queued or building"
            logger.info(message)
            future.set_result(DeploymentResult(success=False, message=message))
            return future

        job = DeploymentJob(
            id=f"{application_id}-{int(time.time() * 1000)}",
            application_id=application_id,
            force=force,
            future=future,
        )
        self._waiting.append(job)
        self._idle.clear()
        logger.info(f"Queued deployment {job.id} (queue length {len(self._waiting)})")
        self._dispatch()
        return future

    async def submit(self, application_id: str, force: bool = False) -> DeploymentResult:
        """Enqueue and wait for the caller's result."""
        return await self.enqueue(application_id, force)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def current_limit(self) -> int:
        try:
            limit = int(self._limit_provider())
        except (DomainException, OSError, TypeError, ValueError) as e:
            logger.error(f"Could not read concurrency limit, keeping {self._last_limit}: {e}")
            return self._last_limit
        self._last_limit = max(1, limit)
        return self._last_limit

    def _dispatch(self) -> None:
        limit = self.current_limit()
        while self._waiting and len(self._running) < limit:
            job = self._waiting.popleft()
            job.status = JobStatus.RUNNING
            job.started_at = utcnow()
            self._running[job.application_id] = job
            logger.info(f"Dispatching {job.id} ({len(self._running)}/{limit} slots in use)")
            task = asyncio.get_running_loop().create_task(self._run(job))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _resolve(job: DeploymentJob, result: DeploymentResult) -> None:
        if not job.future.done():
            job.future.set_result(result)

    async def _run(self, job: DeploymentJob) -> None:
        self._dispatcher.dispatch(DeploymentStartedEvent(
            application_id=job.application_id,
            job_id=job.id,
            force=job.force,
        ))
        try:
            result = await self._runner(
                job.application_id,
                job.force,
                lambda provisional: self._resolve(job, provisional),
            )
            if result.success:
                job.status = JobStatus.COMPLETED
            else:
                job.status = JobStatus.FAILED
                job.error = result.message
            self._resolve(job, result)
        except Exception as e:
            message = e.message if isinstance(e, DomainException) else str(e)
            logger.error(f"Deployment {job.id} failed: {message}")
            job.status = JobStatus.FAILED
            job.error = message
            self._resolve(job, DeploymentResult(success=False, message=message))
        finally:
            if job.status == JobStatus.RUNNING:
                job.status = JobStatus.FAILED
                job.error = "Deployment interrupted"
                self._resolve(job, DeploymentResult(success=False, message=job.error))
            job.finished_at = utcnow()
            self._running.pop(job.application_id, None)
            self._history.append(job)
            if not self._waiting and not self._running:
                self._idle.set()
            self._dispatch()

    # ------------------------------------------------------------------
    # Inspection and cancellation
    # ------------------------------------------------------------------

    def is_building(self, application_id: str) -> bool:
        return application_id in self._running

    def is_queued(self, application_id: str) -> bool:
        return any(job.application_id == application_id for job in self._waiting)

    def cancel_queued(self, application_id: str) -> bool:
        """
        Remove the earliest queued job for an application.

        Returns:
            False if no such job is waiting (running jobs cannot be cancelled)
        """
        for job in self._waiting:
            if job.application_id == application_id:
                self._waiting.remove(job)
                job.status = JobStatus.FAILED
                job.error = CANCELLED_MESSAGE
                job.finished_at = utcnow()
                self._history.append(job)
                self._resolve(job, DeploymentResult(success=False, message=CANCELLED_MESSAGE))
                if not self._waiting and not self._running:
                    self._idle.set()
                logger.info(f"Cancelled queued deployment {job.id}")
                return True
        return False

    def queue_status(self) -> QueueStatusResponse:
        now = utcnow()
        return QueueStatusResponse(
            max_concurrent=self.current_limit(),
            running=len(self._running),
            queued=len(self._waiting),
            queued_jobs=[
                QueuedJobInfo(
                    id=job.id,
                    application_id=job.application_id,
                    created_at=job.created_at,
                    wait_seconds=(now - job.created_at).total_seconds(),
                )
                for job in self._waiting
            ],
            running_jobs=[
                RunningJobInfo(
                    id=job.id,
                    application_id=job.application_id,
                    started_at=job.started_at,
                    run_seconds=(now - job.started_at).total_seconds(),
                )
                for job in self._running.values()
            ],
        )

    def recent_jobs(self, limit: int = 10) -> List[DeploymentJob]:
        """Finished jobs, newest first."""
        return list(reversed(self._history))[:limit]

    async def join(self) -> None:
        """Wait until nothing is queued or running."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        for job in list(self._waiting):
            self.cancel_queued(job.application_id)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
