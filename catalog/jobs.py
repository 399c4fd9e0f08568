"""
Tracked background propagation jobs.

A job runs as an ``asyncio.Task`` and mirrors its progress into a persisted
job record (queued -> running -> completed | failed) so that callers can poll
it, and so a failure is recorded instead of being lost with the task.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog
from pydantic import Field

from catalog.models import Document
from catalog.store import encode

logger = structlog.get_logger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PropagationJob(Document):
    job_type: str
    params: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.QUEUED
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobHandle:
    """Reference to a submitted job: its id and the task running it."""

    def __init__(self, job_id: str, task: "asyncio.Task", tracker: "JobTracker"):
        self.job_id = job_id
        self.task = task
        self.tracker = tracker

    @property
    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> PropagationJob:
        """Wait for the job to finish and return its final record."""
        await asyncio.shield(self.task)
        return await self.tracker.get(self.job_id)


JobBody = Callable[[], Awaitable[Dict[str, Any]]]


class JobTracker:
    """Runs propagation jobs in the background and persists their state."""

    def __init__(self, collection, on_failure: Optional[Callable[[PropagationJob], Any]] = None):
        self.collection = collection
        self.on_failure = on_failure
        self._tasks: Set[asyncio.Task] = set()
        self.logger = logger.bind(component="job_tracker")

    async def submit(self, job_type: str, body: JobBody, **params) -> JobHandle:
        """
        Persist a queued job record and schedule ``body`` on the running loop.

        ``body`` returns the job's result dict; an exception marks the job failed.
        """
        job = PropagationJob(job_type=job_type, params=encode(params))
        await self.collection.insert_one(job.to_document())

        task = asyncio.create_task(self._run(job, body), name=f"{job_type}:{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self.logger.info("Job submitted", job_id=job.id, job_type=job_type, **params)
        return JobHandle(job.id, task, self)

    async def get(self, job_id: str) -> Optional[PropagationJob]:
        document = await self.collection.find_one({"_id": job_id})
        return PropagationJob.from_document(document) if document else None

    async def drain(self) -> None:
        """Wait for every job still running."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def _run(self, job: PropagationJob, body: JobBody) -> None:
        await self._update(job.id, status=JobStatus.RUNNING, startedAt=datetime.utcnow())
        try:
            result = await body()
        except Exception as e:
            await self._update(job.id, status=JobStatus.FAILED, error=str(e), finishedAt=datetime.utcnow())
            self.logger.error("Job failed", job_id=job.id, job_type=job.job_type, error=str(e))
            if self.on_failure:
                failed = await self.get(job.id)
                self.on_failure(failed)
            return

        await self._update(job.id, status=JobStatus.COMPLETED, result=result, finishedAt=datetime.utcnow())
        self.logger.info("Job completed", job_id=job.id, job_type=job.job_type, result=result)

    async def _update(self, job_id: str, **fields) -> None:
        await self.collection.update_one(
            {"_id": job_id},
            {"$set": {name: encode(value) for name, value in fields.items()}}
        )
