"""Hybrid generation: discovery-assisted assembly with a deterministic fallback.

The intelligent attempt returns ``Intelligent`` or ``Declined``; it never raises
for discovery or completion trouble. A declined attempt is followed by plain
blueprint assembly, whose construction errors are the only ones that escape.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from ..agents.base import CompletionClient, extract_json
from ..agents.prompts import PARAMETER_PROMPT, PARAMETER_SYSTEM_PROMPT
from ..analysis.complexity import ComplexityAnalysis, get_context_budget
from ..analysis.context import (
    CHARS_PER_TOKEN,
    ContextDescriptor,
    build_focus_prompt,
    disqualifies_ai,
    estimate_cost,
    render_node_docs,
    select_node_docs,
)
from ..analysis.patterns import render_patterns, select_patterns
from ..connectors.discovery import DiscoveryClient
from ..errors import AssemblyError, CompletionError, DiscoveryError
from ..monitoring.cost import CostMonitor
from .blueprints import BlueprintAssembler
from .registry import DEFAULT_REGISTRY, NodeTemplate, NodeTemplateRegistry, enrich_template
from .schema import BusinessContext, OrchestrationPlan, StepSpec, StrategyName, TriggerSpec, WorkflowGraph
from .validator import is_blank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Intelligent:
    graph: WorkflowGraph
    strategy: StrategyName = "intelligent"


@dataclass(frozen=True)
class Fallback:
    graph: WorkflowGraph
    reason: str
    strategy: StrategyName = "fallback"


@dataclass(frozen=True)
class Declined:
    reason: str


GenerationOutcome = Union[Intelligent, Fallback]


class HybridGenerator:
    """Chooses between discovery-assisted and deterministic generation."""

    def __init__(
        self,
        registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
        *,
        discovery_factory: Optional[Callable[[], DiscoveryClient]] = None,
        completion: Optional[CompletionClient] = None,
        cost_monitor: Optional[CostMonitor] = None,
        connect_timeout: float = 10.0,
        ai_enabled: bool = True,
    ):
        self.registry = registry
        self.assembler = BlueprintAssembler(registry)
        self.discovery_factory = discovery_factory
        self.completion = completion
        self.cost_monitor = cost_monitor
        self.connect_timeout = connect_timeout
        self.ai_enabled = ai_enabled

    async def generate(
        self,
        plan: OrchestrationPlan,
        analysis: ComplexityAnalysis,
        descriptor: ContextDescriptor,
        *,
        job_id: Optional[str] = None,
        context: Optional[BusinessContext] = None,
    ) -> GenerationOutcome:
        attempt = await self.try_intelligent(plan, analysis, descriptor, job_id=job_id, context=context)
        if isinstance(attempt, Intelligent):
            return attempt

        logger.warning("Job %s: intelligent generation declined (%s); assembling blueprint", job_id, attempt.reason)
        graph = self.assembler.assemble(plan)
        _stamp(graph, "fallback", descriptor, reason=attempt.reason)
        return Fallback(graph=graph, reason=attempt.reason)

    def eligibility(self, plan: OrchestrationPlan, descriptor: ContextDescriptor) -> Optional[str]:
        """Why the intelligent path is off-limits, or None when it may run."""
        if not self.ai_enabled:
            return "AI assistance disabled"
        if self.discovery_factory is None:
            return "discovery service not configured"
        return disqualifies_ai(descriptor, plan)

    async def try_intelligent(
        self,
        plan: OrchestrationPlan,
        analysis: ComplexityAnalysis,
        descriptor: ContextDescriptor,
        *,
        job_id: Optional[str] = None,
        context: Optional[BusinessContext] = None,
    ) -> Union[Intelligent, Declined]:
        reason = self.eligibility(plan, descriptor)
        if reason is not None:
            return Declined(reason)

        client = self.discovery_factory()
        try:
            try:
                await asyncio.wait_for(client.connect(), timeout=self.connect_timeout)
            except asyncio.TimeoutError:
                return Declined(f"discovery service unreachable within {self.connect_timeout}s")

            templates = await self._discover_templates(client, plan)
            drafted = await self._draft_parameters(plan, templates, analysis, descriptor, job_id, context)
            problem = await self._check_configurations(client, plan, templates, drafted)
            if problem is not None:
                return Declined(problem)

            graph = self.assembler.assemble(plan, templates=templates, parameters=drafted)
        except asyncio.TimeoutError:
            return Declined("discovery call timed out")
        except (DiscoveryError, CompletionError, AssemblyError) as e:
            return Declined(f"{type(e).__name__}: {e}")
        finally:
            await client.aclose()

        _stamp(graph, "intelligent", descriptor)
        logger.info("Job %s: intelligent generation produced %d nodes", job_id, len(graph.nodes))
        return Intelligent(graph=graph)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _discover_templates(
        self, client: DiscoveryClient, plan: OrchestrationPlan
    ) -> dict[str, NodeTemplate]:
        templates: dict[str, NodeTemplate] = {}
        elements: list[Union[TriggerSpec, StepSpec]] = [*plan.triggers, *plan.steps]
        for element in elements:
            is_trigger = isinstance(element, TriggerSpec)
            template = self.registry.resolve(element.type, trigger=is_trigger)
            if template is None:
                template = await self._search_template(client, element, is_trigger)
            essentials = await client.get_node_essentials(template.node_type)
            templates[element.id] = enrich_template(template, essentials)
        return templates

    async def _search_template(
        self, client: DiscoveryClient, element: Union[TriggerSpec, StepSpec], is_trigger: bool
    ) -> NodeTemplate:
        """Map an unknown kind through discovery search onto a registry template."""
        for node_type in await client.search_node_kinds(f"{element.type} {element.description}".strip()):
            template = self.registry.by_node_type(node_type)
            if template is not None and template.is_trigger == is_trigger:
                return template
        raise DiscoveryError(f"no registry template matches discovered kinds for '{element.id}' ({element.type})")

    async def _check_configurations(
        self,
        client: DiscoveryClient,
        plan: OrchestrationPlan,
        templates: dict[str, NodeTemplate],
        drafted: dict[str, dict[str, Any]],
    ) -> Optional[str]:
        for element in [*plan.triggers, *plan.steps]:
            template = templates[element.id]
            params = BlueprintAssembler.merge_parameters(template, element.configuration, drafted.get(element.id))
            missing = [p for p in template.required_params if is_blank(params.get(p))]
            if missing:
                return f"'{element.id}' ({template.kind}) lacks required parameter(s): {', '.join(missing)}"
            verdict = await client.validate_node_configuration(template.node_type, params)
            if not verdict.valid:
                return f"discovery rejected '{element.id}' configuration: {'; '.join(verdict.errors) or 'invalid'}"
        return None

    # ------------------------------------------------------------------
    # Parameter drafting
    # ------------------------------------------------------------------

    async def _draft_parameters(
        self,
        plan: OrchestrationPlan,
        templates: dict[str, NodeTemplate],
        analysis: ComplexityAnalysis,
        descriptor: ContextDescriptor,
        job_id: Optional[str],
        context: Optional[BusinessContext] = None,
    ) -> dict[str, dict[str, Any]]:
        if self.completion is None:
            return {}

        steps = [
            {
                "id": step.id,
                "name": step.name,
                "kind": templates[step.id].kind,
                "description": step.description,
                "required": list(templates[step.id].required_params),
                "configuration": step.configuration,
            }
            for step in plan.steps
        ]
        docs = select_node_docs(descriptor, self.registry, extra_kinds=[t.kind for t in templates.values()])
        text = " ".join([plan.workflow_name, plan.description, *(s.description for s in plan.steps)])
        patterns = render_patterns(select_patterns(descriptor, text))
        budget = get_context_budget(analysis.complexity, "agent")["input_tokens"]
        prompt = _parameter_prompt(plan, steps, docs, patterns)
        while docs and len(prompt) // CHARS_PER_TOKEN > budget:
            docs = docs[:-1]
            prompt = _parameter_prompt(plan, steps, docs, patterns)
        system_prompt = build_focus_prompt(PARAMETER_SYSTEM_PROMPT.format(), descriptor, context or BusinessContext())

        estimate = estimate_cost(descriptor, analysis.recommended_model)
        logger.info(
            "Job %s: drafting parameters with %d doc(s) on %s (estimated $%.4f)",
            job_id,
            len(docs),
            analysis.recommended_model,
            estimate["totalCost"],
        )
        completion = await self.completion.complete(prompt, system_prompt, analysis.recommended_model)
        if self.cost_monitor is not None:
            self.cost_monitor.record(
                self.cost_monitor.calculate_cost(
                    completion.model,
                    completion.input_tokens,
                    completion.output_tokens,
                    complexity=analysis.complexity,
                    job_id=job_id,
                    archetype=descriptor.workflow_archetype.value,
                    node_count=descriptor.node_doc_count,
                )
            )

        data = extract_json(completion.text)
        parameters = data.get("parameters") if isinstance(data, dict) else None
        if not isinstance(parameters, dict) or not all(isinstance(v, dict) for v in parameters.values()):
            raise CompletionError("parameter draft is not an object of per-step objects")
        for step_id, params in parameters.items():
            if "options" in params and not isinstance(params["options"], dict):
                raise CompletionError(f"drafted 'options' for '{step_id}' is not an object")
        known = {step.id for step in plan.steps}
        return {step_id: params for step_id, params in parameters.items() if step_id in known}


def _parameter_prompt(
    plan: OrchestrationPlan, steps: list[dict[str, Any]], docs: list[dict[str, str]], patterns: str
) -> str:
    return PARAMETER_PROMPT.format(
        workflow_name=plan.workflow_name,
        description=plan.description or "(none)",
        steps=json.dumps(steps, indent=2),
        docs=render_node_docs(docs),
        patterns=patterns,
    )


def _stamp(
    graph: WorkflowGraph,
    strategy: StrategyName,
    descriptor: ContextDescriptor,
    *,
    reason: Optional[str] = None,
) -> None:
    graph.meta["strategyUsed"] = strategy
    graph.meta["archetype"] = descriptor.workflow_archetype.value
    if reason is not None:
        graph.meta["fallbackReason"] = reason
