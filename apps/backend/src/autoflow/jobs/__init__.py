"""Job lifecycle: records, store and the processing state machine."""

from .schema import Job, JobStatus, JobStatusView, JobSubmission
from .store import JobStore

__all__ = ["Job", "JobStatus", "JobStatusView", "JobStore", "JobSubmission"]
