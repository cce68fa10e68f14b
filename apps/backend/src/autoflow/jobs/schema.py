"""Job records and the submission/status shapes exchanged with the API layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..workflow.schema import AutomationOpportunity, BusinessContext, OrchestrationPlan, WorkflowArtifact


class JobStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    GENERATING = "generating"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_RANKS = {
    JobStatus.PENDING: 0,
    JobStatus.PLANNING: 1,
    JobStatus.GENERATING: 2,
    JobStatus.VALIDATING: 3,
    JobStatus.COMPLETED: 4,
    JobStatus.FAILED: 4,
}

# Progress reported on entering each state
STAGE_PROGRESS = {
    JobStatus.PENDING: 0,
    JobStatus.PLANNING: 10,
    JobStatus.GENERATING: 40,
    JobStatus.VALIDATING: 70,
    JobStatus.COMPLETED: 100,
}


class JobSubmission(BaseModel):
    """What the API layer hands the pipeline."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    automation_opportunities: list[AutomationOpportunity] = Field([], alias="automationOpportunities")
    process_description: str = Field("", alias="processDescription")
    business_context: BusinessContext = Field(default_factory=BusinessContext, alias="businessContext")
    plan: Optional[OrchestrationPlan] = None


class Job(BaseModel):
    id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    submission: JobSubmission
    plan: Optional[OrchestrationPlan] = None
    result: Optional[WorkflowArtifact] = None
    error: Optional[str] = None
    errors: list[str] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def view(self) -> JobStatusView:
        return JobStatusView(
            job_id=self.id,
            status=self.status,
            progress=self.progress,
            result=self.result.model_dump(mode="json", by_alias=True) if self.result else None,
            error=self.error,
            errors=list(self.errors),
        )


class JobStatusView(BaseModel):
    job_id: str
    status: JobStatus
    progress: int
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    errors: list[str] = []
