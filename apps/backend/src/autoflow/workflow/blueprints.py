"""Deterministic blueprint assembly: orchestration plan -> workflow graph.

No AI is involved. Every trigger and step is mapped onto a registry template,
instantiated with the template defaults overlaid by the plan's configuration,
and wired with one of two connection patterns:

  sequential           A -> B -> C
  parallel-with-merge  A -> {B1, B2} -> Merge -> C

The hybrid generator reuses :class:`BlueprintAssembler` with discovery-enriched
templates, so both strategies share one connection algorithm.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from ..errors import AssemblyError
from .registry import (
    COMPLETION_KIND,
    DEFAULT_REGISTRY,
    DEFAULT_TRIGGER_KIND,
    GENERIC_FALLBACK_KIND,
    MERGE_KIND,
    NodeTemplate,
    NodeTemplateRegistry,
)
from .schema import Node, OrchestrationPlan, StepSpec, TriggerSpec, WorkflowGraph
from .validator import find_inline_secrets, is_blank

logger = logging.getLogger(__name__)

PlanElement = Union[TriggerSpec, StepSpec]

X_ORIGIN = 250
X_SPACING = 220
Y_ORIGIN = 300
Y_SPACING = 160


@dataclass
class Stage:
    """One column of the layout: a single step, or parallel branches to merge."""

    steps: list[StepSpec] = field(default_factory=list)

    @property
    def is_parallel(self) -> bool:
        return len(self.steps) > 1


def plan_stages(plan: OrchestrationPlan) -> list[Stage]:
    """Group plan steps into layout stages.

    Without step-to-step edges, steps run sequentially in declared order.
    Otherwise each step sits at its longest-path depth; steps sharing a depth
    become parallel branches. Steps that no edge mentions are appended afterwards
    in declared order.
    """
    step_ids = [step.id for step in plan.steps]
    by_id = {step.id: step for step in plan.steps}
    if len(by_id) != len(step_ids):
        raise AssemblyError("plan steps must have unique ids")

    edges = [
        (edge.source, edge.target)
        for edge in plan.connections
        if edge.source in by_id and edge.target in by_id and edge.source != edge.target
    ]
    if not edges:
        return [Stage(steps=[step]) for step in plan.steps]

    dependents: dict[str, list[str]] = defaultdict(list)
    in_degree = {sid: 0 for sid in step_ids}
    for source, target in dict.fromkeys(edges):
        dependents[source].append(target)
        in_degree[target] += 1

    mentioned = {sid for edge in edges for sid in edge}
    depth = {sid: 0 for sid in step_ids}
    queue = [sid for sid in step_ids if in_degree[sid] == 0]
    ordered: list[str] = []
    while queue:
        sid = queue.pop(0)
        ordered.append(sid)
        for target in dependents[sid]:
            depth[target] = max(depth[target], depth[sid] + 1)
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(target)

    if len(ordered) != len(step_ids):
        cyclic = sorted(sid for sid, degree in in_degree.items() if degree > 0)
        raise AssemblyError(f"plan connections contain a cycle involving steps: {', '.join(cyclic)}")

    layers: dict[int, list[StepSpec]] = defaultdict(list)
    for sid in step_ids:
        if sid in mentioned:
            layers[depth[sid]].append(by_id[sid])
    stages = [Stage(steps=layers[d]) for d in sorted(layers)]
    stages += [Stage(steps=[by_id[sid]]) for sid in step_ids if sid not in mentioned]
    return stages


class BlueprintAssembler:
    """Builds a complete, valid :class:`WorkflowGraph` from a plan."""

    def __init__(self, registry: NodeTemplateRegistry = DEFAULT_REGISTRY):
        self.registry = registry

    def assemble(
        self,
        plan: OrchestrationPlan,
        *,
        templates: Mapping[str, NodeTemplate] | None = None,
        parameters: Mapping[str, dict[str, Any]] | None = None,
    ) -> WorkflowGraph:
        """Assemble ``plan`` into a graph.

        ``templates`` and ``parameters`` are keyed by plan trigger/step id and take
        precedence over registry resolution and plan configuration respectively.
        """
        templates = templates or {}
        parameters = parameters or {}

        if not plan.steps:
            raise AssemblyError("plan has no steps to assemble")
        self._reject_inline_secrets(plan, parameters)

        stages = plan_stages(plan)
        graph = WorkflowGraph(
            name=plan.workflow_name.strip() or "Generated Workflow",
            settings={"executionOrder": "v1", "saveManualExecutions": True},
            tags=["automated", "autoflow"],
            meta={
                "description": plan.description,
                "pattern": "parallel-with-merge" if any(s.is_parallel for s in stages) else "sequential",
            },
        )
        names: set[str] = set()

        triggers = plan.triggers or [TriggerSpec(id="trigger-1", name="Webhook Trigger", type=DEFAULT_TRIGGER_KIND)]
        if not plan.triggers:
            logger.info("Plan '%s' declares no trigger; adding a webhook trigger", plan.workflow_name)

        exits: list[Node] = []
        for row, trigger in enumerate(triggers):
            template = templates.get(trigger.id) or self._resolve(trigger, is_trigger=True)
            node = self._instantiate(trigger, template, parameters.get(trigger.id), names, column=0, row=row)
            graph.nodes.append(node)
            exits.append(node)

        last_step: StepSpec | None = None
        last_template: NodeTemplate | None = None
        for column, stage in enumerate(stages, start=1):
            built: list[tuple[StepSpec, NodeTemplate, Node]] = []
            for row, step in enumerate(stage.steps):
                template = templates.get(step.id) or self._resolve(step, is_trigger=False)
                offset = row - (len(stage.steps) - 1) / 2
                node = self._instantiate(step, template, parameters.get(step.id), names, column=column, row=offset)
                graph.nodes.append(node)
                built.append((step, template, node))

            if not stage.is_parallel:
                step, template, node = built[0]
                self._connect_sequential(graph, exits, node)
                exits = [node]
                last_step, last_template = step, template
                continue

            merge = self._merge_node(names, column=column)
            graph.nodes.append(merge)
            self._connect_parallel(graph, exits, [node for _, _, node in built], merge)
            exits = [merge]
            last_step, last_template = None, self.registry.get(MERGE_KIND)

        # Keep risky outbound actions from dangling at the end of the graph
        if last_template is not None and last_template.is_risky_terminal:
            tail = exits[0]
            if last_step is not None and last_step.is_terminal:
                tail.parameters["terminal"] = True
            else:
                completion = self._completion_node(names, column=len(stages) + 1)
                graph.nodes.append(completion)
                self._connect_sequential(graph, exits, completion)

        for node in graph.nodes:
            if node.parameters.get("terminal") is False:
                node.parameters.pop("terminal")
        logger.debug("Assembled '%s' with %d nodes", graph.name, len(graph.nodes))
        return graph

    # --- template resolution ---

    def _resolve(self, element: PlanElement, *, is_trigger: bool) -> NodeTemplate:
        template = self.registry.resolve(element.type, trigger=is_trigger)
        if template is not None:
            return template

        if is_trigger:
            fallback = self.registry.get(DEFAULT_TRIGGER_KIND)
            label = "webhook trigger"
        else:
            fallback = self.registry.generic_fallback()
            label = "generic HTTP call"
        if fallback is None:
            raise AssemblyError(
                f"cannot map {'trigger' if is_trigger else 'step'} '{element.id}' of kind "
                f"'{element.type}' to any node template and no {label} fallback is registered"
            )
        logger.info("Kind '%s' of '%s' is not in the registry; using %s", element.type, element.id, label)
        return fallback

    def _reject_inline_secrets(self, plan: OrchestrationPlan, parameters: Mapping[str, dict]) -> None:
        for element in [*plan.triggers, *plan.steps]:
            leaks = find_inline_secrets(element.configuration, "configuration")
            leaks += find_inline_secrets(parameters.get(element.id, {}), "parameters")
            if leaks:
                raise AssemblyError(
                    f"'{element.id}' embeds literal credentials at {', '.join(leaks)}; "
                    "plans must reference credentials through placeholders"
                )

    # --- node construction ---

    @staticmethod
    def _unique_name(base: str, names: set[str]) -> str:
        name = base.strip() or "Step"
        candidate, counter = name, 2
        while candidate in names:
            candidate = f"{name} {counter}"
            counter += 1
        names.add(candidate)
        return candidate

    @staticmethod
    def merge_parameters(
        template: NodeTemplate, *overlays: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        params = dict(template.default_params)
        for overlay in overlays:
            for key, value in (overlay or {}).items():
                # A blank override never replaces a required default
                if key in template.required_params and is_blank(value):
                    continue
                if isinstance(value, dict) and isinstance(params.get(key), dict):
                    value = {**params[key], **value}
                params[key] = value
        if template.kind == GENERIC_FALLBACK_KIND:
            options = params.get("options") or {}
            if not isinstance(options, dict):
                raise AssemblyError(
                    f"'{template.kind}' options must be an object, got {type(options).__name__}"
                )
            options = dict(options)
            options["retryOnFail"] = True
            if not isinstance(options.get("maxRetries"), int) or options["maxRetries"] < 1:
                options["maxRetries"] = 3
            params["options"] = options
        return params

    def _instantiate(
        self,
        element: PlanElement,
        template: NodeTemplate,
        overrides: Mapping[str, Any] | None,
        names: set[str],
        *,
        column: int,
        row: float,
    ) -> Node:
        params = self.merge_parameters(template, element.configuration, overrides)
        if isinstance(element, StepSpec) and element.is_terminal:
            params["terminal"] = True
        return Node(
            id=f"node-{template.kind}-{uuid.uuid4().hex[:6]}",
            name=self._unique_name(element.name or template.description, names),
            type=template.node_type,
            type_version=template.type_version,
            position=[X_ORIGIN + column * X_SPACING, int(Y_ORIGIN + row * Y_SPACING)],
            parameters=params,
            credentials=template.credential_block(),
        )

    def _utility_node(self, kind: str, name: str, names: set[str], *, column: int) -> Node:
        template = self.registry.get(kind)
        if template is None:
            raise AssemblyError(f"registry has no '{kind}' template required for assembly")
        return Node(
            id=f"node-{kind}-{uuid.uuid4().hex[:6]}",
            name=self._unique_name(name, names),
            type=template.node_type,
            type_version=template.type_version,
            position=[X_ORIGIN + column * X_SPACING, Y_ORIGIN],
            parameters=dict(template.default_params),
            credentials=template.credential_block(),
        )

    def _merge_node(self, names: set[str], *, column: int) -> Node:
        return self._utility_node(MERGE_KIND, "Merge Branches", names, column=column)

    def _completion_node(self, names: set[str], *, column: int) -> Node:
        return self._utility_node(COMPLETION_KIND, "Record Result", names, column=column)

    # --- connection patterns ---

    @staticmethod
    def _connect_sequential(graph: WorkflowGraph, exits: list[Node], node: Node) -> None:
        for source in exits:
            graph.connect(source.name, node.name)

    @staticmethod
    def _connect_parallel(
        graph: WorkflowGraph, exits: list[Node], branches: list[Node], merge: Node
    ) -> None:
        for source in exits:
            for branch in branches:
                graph.connect(source.name, branch.name)
        for input_index, branch in enumerate(branches):
            graph.connect(branch.name, merge.name, input_index=input_index)
