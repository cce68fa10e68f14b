"""API models for autoflow."""

from typing import Any

from pydantic import BaseModel, Field

from .jobs.schema import JobStatus


class JobAccepted(BaseModel):
    """Response to a job submission."""

    job_id: str = Field(..., description="Identifier to poll for status")
    status: JobStatus = Field(..., description="Status at acceptance time")


class CostReport(BaseModel):
    """Cost summary plus optimization hints for the current window."""

    summary: dict[str, Any]
    recommendations: list[dict[str, Any]]
    potential_savings: float


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str = "autoflow"
    discovery_configured: bool = False
    ai_assist_enabled: bool = True
