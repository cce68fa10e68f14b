"""Job processing pipeline: plan -> analyze -> generate -> validate -> persist."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from ..analysis.complexity import ModelTiers, analyze_complexity
from ..analysis.context import optimize_context
from ..errors import AutoflowError
from ..jobs.schema import STAGE_PROGRESS, Job, JobStatus, JobSubmission
from ..jobs.store import JobStore
from ..planning import Planner
from .generator import HybridGenerator
from .instructions import generate_instructions
from .registry import DEFAULT_REGISTRY, NodeTemplateRegistry
from .schema import GenerationMetadata, WorkflowArtifact
from .store import ArtifactStore
from .validator import validate_workflow

logger = logging.getLogger(__name__)


class JobProcessor:
    """Drives one job at a time through the state machine.

    ``pending -> planning -> generating -> validating -> completed | failed``

    Construction errors and validation failures end the job as ``failed``;
    discovery and completion trouble is absorbed by the planner and generator.
    """

    def __init__(
        self,
        jobs: JobStore,
        planner: Planner,
        generator: HybridGenerator,
        artifacts: Optional[ArtifactStore] = None,
        *,
        registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
        tiers: ModelTiers = ModelTiers(),
    ):
        self.jobs = jobs
        self.planner = planner
        self.generator = generator
        self.artifacts = artifacts
        self.registry = registry
        self.tiers = tiers

    def submit(self, submission: JobSubmission) -> Job:
        return self.jobs.create(submission)

    async def process(self, job_id: str) -> Job:
        job = self.jobs.get(job_id)
        if job.status.is_terminal:
            return job
        try:
            return await self._run(job)
        except AutoflowError as e:
            return self._fail(job_id, str(e))
        except Exception as e:
            logger.exception("Job %s: unexpected error", job_id)
            return self._fail(job_id, f"{type(e).__name__}: {e}")

    async def _run(self, job: Job) -> Job:
        job_id = job.id
        submission = job.submission
        started = time.monotonic()

        self._advance(job_id, JobStatus.PLANNING)
        planned = await self.planner.plan(submission)
        plan = planned.plan
        if planned.reason:
            logger.warning("Job %s: planned %s (%s)", job_id, planned.source, planned.reason)
        analysis = analyze_complexity(
            plan,
            submission.business_context,
            process_description=submission.process_description,
            opportunities=submission.automation_opportunities,
            registry=self.registry,
            tiers=self.tiers,
        )
        descriptor = optimize_context(
            plan,
            analysis,
            process_description=submission.process_description,
            opportunities=submission.automation_opportunities,
            registry=self.registry,
        )
        logger.info(
            "Job %s: %s plan scored %d (%s), archetype %s",
            job_id,
            planned.source,
            analysis.score,
            analysis.complexity,
            descriptor.workflow_archetype.value,
        )

        self._advance(job_id, JobStatus.GENERATING, plan=plan)
        outcome = await self.generator.generate(
            plan, analysis, descriptor, job_id=job_id, context=submission.business_context
        )

        self._advance(job_id, JobStatus.VALIDATING)
        graph = outcome.graph
        result = validate_workflow(graph, self.registry)
        if not result.valid:
            return self._fail(
                job_id,
                f"workflow validation failed: {'; '.join(result.errors)}",
                errors=result.errors,
            )

        artifact = WorkflowArtifact(
            job_id=job_id,
            workflow=graph,
            metadata=GenerationMetadata(
                strategy_used=outcome.strategy,
                complexity_tier=analysis.complexity,
                validation_passed=True,
                archetype=descriptor.workflow_archetype.value,
                node_count=len(graph.nodes),
                fallback_reason=getattr(outcome, "reason", None),
                generation_seconds=round(time.monotonic() - started, 3),
            ),
            instructions=generate_instructions(graph, self.registry),
        )
        if self.artifacts is not None:
            try:
                path = await asyncio.to_thread(self.artifacts.save, artifact)
            except OSError as e:
                return self._fail(job_id, f"could not persist artifact: {e}")
            logger.info("Job %s: artifact written to %s", job_id, path)

        job = self.jobs.transition(
            job_id, JobStatus.COMPLETED, STAGE_PROGRESS[JobStatus.COMPLETED], result=artifact
        )
        logger.info("Job %s completed via %s strategy", job_id, outcome.strategy)
        return job

    def _advance(self, job_id: str, status: JobStatus, **changes) -> Job:
        return self.jobs.transition(job_id, status, STAGE_PROGRESS[status], **changes)

    def _fail(self, job_id: str, message: str, errors: Optional[list[str]] = None) -> Job:
        logger.error("Job %s failed: %s", job_id, message)
        return self.jobs.transition(job_id, JobStatus.FAILED, error=message, errors=errors or [message])
