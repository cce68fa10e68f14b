"""Exception hierarchy for the generation pipeline."""

from __future__ import annotations


class AutoflowError(Exception):
    """Base class for all pipeline errors."""


class AssemblyError(AutoflowError):
    """Raised when a plan cannot be represented as a workflow graph."""


class DiscoveryError(AutoflowError):
    """Raised when the capability discovery service fails or answers malformed data."""


class CompletionError(AutoflowError):
    """Raised when the AI completion service fails or returns unusable output."""


class JobStateError(AutoflowError):
    """Raised when a job transition would move backwards or leave a terminal state."""


class JobNotFoundError(AutoflowError):
    """Raised when a job id is not known to the job store."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job '{job_id}' not found")
