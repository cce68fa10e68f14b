"""In-memory job table with forward-only state transitions."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from ..errors import JobNotFoundError, JobStateError
from ..workflow.schema import OrchestrationPlan, WorkflowArtifact
from .schema import Job, JobStatus, JobSubmission

logger = logging.getLogger(__name__)


class JobStore:
    """Holds jobs for the lifetime of the process.

    ``transition`` is the only mutation path. Re-applying the current status
    with the same progress is a no-op, so retried status updates are safe.
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, submission: JobSubmission) -> Job:
        with self._lock:
            if submission.id in self._jobs:
                return self._jobs[submission.id].model_copy(deep=True)
            job = Job(id=submission.id, submission=submission)
            self._jobs[job.id] = job
            return job.model_copy(deep=True)

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.model_copy(deep=True)

    def list_jobs(self) -> list[Job]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]

    def transition(
        self,
        job_id: str,
        status: JobStatus,
        progress: Optional[int] = None,
        *,
        result: Optional[WorkflowArtifact] = None,
        error: Optional[str] = None,
        errors: Optional[list[str]] = None,
        plan: Optional[OrchestrationPlan] = None,
    ) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            if job.status.is_terminal and status != job.status:
                raise JobStateError(f"job {job_id} is already {job.status.value}; cannot move to {status.value}")
            if status.rank < job.status.rank:
                raise JobStateError(f"job {job_id} cannot move back from {job.status.value} to {status.value}")

            new_progress = job.progress if progress is None else max(job.progress, min(progress, 100))
            if status == job.status and new_progress == job.progress and result is None and error is None:
                return job.model_copy(deep=True)

            if status != job.status:
                logger.info("Job %s: %s -> %s (%d%%)", job_id, job.status.value, status.value, new_progress)
            job.status = status
            job.progress = new_progress
            if plan is not None:
                job.plan = plan
            if result is not None:
                job.result = result
            if error is not None:
                job.error = error
            if errors is not None:
                job.errors = list(errors)
            job.updated_at = datetime.now(timezone.utc)
            return job.model_copy(deep=True)
