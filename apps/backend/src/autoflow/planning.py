"""Planning stage: derive the orchestration plan for a job.

A plan supplied with the submission is used as-is. Otherwise the planner model
is asked for one; any failure there degrades to a deterministic plan built from
the automation opportunities, so planning never fails a job.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Literal, Optional

from pydantic import ValidationError

from .agents.base import CompletionClient, extract_json
from .agents.prompts import PLAN_PROMPT, PLAN_SCHEMA_DESCRIPTION, PLANNER_SYSTEM_PROMPT
from .analysis.complexity import analyze_complexity, get_documentation_params
from .analysis.context import (
    ContextDescriptor,
    build_focus_prompt,
    optimize_context,
    render_node_docs,
    select_node_docs,
)
from .errors import AssemblyError, CompletionError
from .monitoring.cost import CostMonitor
from .workflow.blueprints import BlueprintAssembler
from .workflow.registry import DEFAULT_REGISTRY, DEFAULT_TRIGGER_KIND, GENERIC_FALLBACK_KIND, NodeTemplateRegistry
from .workflow.schema import AutomationOpportunity, OrchestrationPlan, PlanEdge, StepSpec, TriggerSpec

logger = logging.getLogger(__name__)

PlanSource = Literal["submitted", "ai", "deterministic"]

# First match wins; checked against the opportunity's solution and description
_KIND_HINTS: list[tuple[tuple[str, ...], str]] = [
    (("slack", "notif", "alert"), "slack-message"),
    (("email", "mail"), "email-send"),
    (("sheet", "spreadsheet"), "google-sheets"),
    (("airtable",), "airtable"),
    (("ai_", "classif", "categoriz", "summar", "analy"), "openai"),
    (("approv", "condition", "rout", "decision"), "if"),
    (("transform", "format", "map", "record"), "set"),
]


@dataclass
class PlanResult:
    plan: OrchestrationPlan
    source: PlanSource
    reason: Optional[str] = None


def infer_step_kind(opportunity: AutomationOpportunity) -> str:
    text = f"{opportunity.automation_solution} {opportunity.name} {opportunity.description}".lower()
    for fragments, kind in _KIND_HINTS:
        if any(f in text for f in fragments):
            return kind
    return GENERIC_FALLBACK_KIND


def _slug(text: str, fallback: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:40] or fallback


def deterministic_plan(
    opportunities: list[AutomationOpportunity],
    process_description: str = "",
    *,
    workflow_name: str = "",
) -> OrchestrationPlan:
    """Webhook trigger, one step per opportunity, wired in order."""
    steps: list[StepSpec] = []
    used: set[str] = set()
    for idx, op in enumerate(opportunities, start=1):
        step_id = _slug(op.name, f"step-{idx}")
        if step_id in used:
            step_id = f"{step_id}-{idx}"
        used.add(step_id)
        steps.append(
            StepSpec(
                id=step_id,
                name=op.name.strip() or f"Step {idx}",
                type=infer_step_kind(op),
                description=op.description,
            )
        )
    if not steps:
        steps.append(
            StepSpec(id="process-request", name="Process Request", type=GENERIC_FALLBACK_KIND,
                     description=process_description)
        )

    trigger = TriggerSpec(id="trigger-1", name="Webhook Trigger", type=DEFAULT_TRIGGER_KIND)
    ids = [trigger.id, *(s.id for s in steps)]
    return OrchestrationPlan(
        workflow_name=workflow_name or (f"{opportunities[0].name} Automation" if opportunities else "Generated Workflow"),
        description=process_description,
        triggers=[trigger],
        steps=steps,
        connections=[PlanEdge(source=a, target=b) for a, b in zip(ids, ids[1:])],
    )


class Planner:
    def __init__(
        self,
        client: Optional[CompletionClient],
        model: str,
        *,
        registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
        cost_monitor: Optional[CostMonitor] = None,
    ):
        self.client = client
        self.model = model
        self.registry = registry
        self.cost_monitor = cost_monitor

    async def plan(self, submission) -> PlanResult:
        if submission.plan is not None and submission.plan.steps:
            return PlanResult(plan=submission.plan, source="submitted")

        if self.client is None:
            return self._fallback(submission, "no completion client configured")

        try:
            plan = await self._ai_plan(submission)
        except CompletionError as e:
            logger.warning("Job %s: AI planning failed (%s); using deterministic plan", submission.id, e)
            return self._fallback(submission, str(e))
        return PlanResult(plan=plan, source="ai")

    @staticmethod
    def _fallback(submission, reason: str) -> PlanResult:
        plan = deterministic_plan(submission.automation_opportunities, submission.process_description)
        return PlanResult(plan=plan, source="deterministic", reason=reason)

    def _provisional_focus(self, submission) -> ContextDescriptor:
        """Context focus derived from the deterministic plan, before the model has planned."""
        draft = deterministic_plan(submission.automation_opportunities, submission.process_description)
        kwargs = dict(
            process_description=submission.process_description,
            opportunities=submission.automation_opportunities,
            registry=self.registry,
        )
        analysis = analyze_complexity(draft, submission.business_context, **kwargs)
        return optimize_context(draft, analysis, **kwargs)

    async def _ai_plan(self, submission) -> OrchestrationPlan:
        context = submission.business_context
        focus = self._provisional_focus(submission)
        system_prompt = build_focus_prompt(
            PLANNER_SYSTEM_PROMPT.format(
                schema_description=PLAN_SCHEMA_DESCRIPTION,
                node_kinds="\n".join(f"- {t.kind}: {t.description}" for t in self.registry),
            ),
            focus,
            context,
        )
        doc_params = get_documentation_params(focus.complexity)
        docs = select_node_docs(
            focus.model_copy(
                update={"node_doc_count": doc_params["node_count"], "chars_per_doc": doc_params["chars_per_doc"]}
            ),
            self.registry,
        )
        prompt = PLAN_PROMPT.format(
            docs=render_node_docs(docs),
            process_description=submission.process_description or "(none)",
            industry=context.industry or "General",
            department=context.department or "Operations",
            volume=context.volume or "unknown",
            opportunities=json.dumps(
                [op.model_dump(by_alias=True) for op in submission.automation_opportunities], indent=2
            ),
        )
        completion = await self.client.complete(prompt, system_prompt, self.model)
        if self.cost_monitor is not None:
            self.cost_monitor.record(
                self.cost_monitor.calculate_cost(
                    completion.model,
                    completion.input_tokens,
                    completion.output_tokens,
                    job_id=submission.id,
                )
            )

        data = extract_json(completion.text)
        try:
            plan = OrchestrationPlan.model_validate(data)
        except ValidationError as e:
            raise CompletionError(f"plan does not match the schema: {e.error_count()} error(s)") from e
        if not plan.steps:
            raise CompletionError("plan has no steps")
        # A model-written plan must be one the assembler accepts
        try:
            BlueprintAssembler(self.registry).assemble(plan)
        except AssemblyError as e:
            raise CompletionError(f"plan cannot be assembled: {e}") from e
        return plan
