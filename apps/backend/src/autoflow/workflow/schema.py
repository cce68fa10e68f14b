"""Pydantic models for orchestration plans and the workflow graphs built from them.

Wire format follows the workflow engine's camelCase JSON (``typeVersion``,
``workflowName``...). Models accept either field names or aliases and are dumped
with ``by_alias=True`` when persisted.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

MAIN_PORT = "main"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# --- Orchestration plan (input) ---


class TriggerSpec(_WireModel):
    """A plan trigger: what starts the workflow."""

    id: str = ""
    name: str = ""
    type: str  # "webhook" | "schedule" | "email" | "form" | ...
    description: str = ""
    configuration: dict[str, Any] = {}


class StepSpec(_WireModel):
    """A single plan step, still abstract (kind + free-text intent)."""

    id: str
    name: str
    type: str  # "http" | "email" | "transform" | "condition" | ...
    description: str = ""
    configuration: dict[str, Any] = {}
    terminal: bool = False

    @property
    def is_terminal(self) -> bool:
        """A step is intentionally terminal when flagged or configured as such."""
        return self.terminal or self.configuration.get("terminal") is True


class PlanEdge(_WireModel):
    """A ``{from, to}`` reference between plan steps/triggers."""

    source: str = Field(alias="from")
    target: str = Field(alias="to")


class OrchestrationPlan(_WireModel):
    """Structured automation plan produced upstream of generation."""

    workflow_name: str = Field("Generated Workflow", alias="workflowName")
    description: str = ""
    triggers: list[TriggerSpec] = []
    steps: list[StepSpec] = []
    connections: list[PlanEdge] = []
    integrations: list[str] = []
    volume_expected: Optional[str] = Field(None, alias="volumeExpected")

    @model_validator(mode="after")
    def _assign_trigger_ids(self) -> OrchestrationPlan:
        for idx, trigger in enumerate(self.triggers):
            if not trigger.id:
                trigger.id = f"trigger-{idx + 1}"
            if not trigger.name:
                trigger.name = f"{trigger.type.replace('-', ' ').title()} Trigger"
        return self

    def kinds(self) -> list[str]:
        """All trigger and step kinds in declaration order."""
        return [t.type for t in self.triggers] + [s.type for s in self.steps]


# --- Job input context ---


class BusinessContext(_WireModel):
    industry: str = ""
    department: str = ""
    volume: str = ""
    complexity_hints: str = Field("", alias="complexityHints")


class AutomationOpportunity(_WireModel):
    """An opportunity surfaced by process analysis; free-form beyond these fields."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = ""
    description: str = ""
    automation_solution: str = Field("", alias="automationSolution")


# --- Workflow graph (output) ---


class Connection(_WireModel):
    """One edge target: ``{node, type, index}`` in engine terms."""

    node: str
    type: str = MAIN_PORT
    index: int = 0


# source display name -> port -> output index -> targets
ConnectionMap = dict[str, dict[str, list[list[Connection]]]]


class Node(_WireModel):
    """A concrete, engine-executable workflow node."""

    id: str
    name: str
    type: str
    type_version: int = Field(1, alias="typeVersion")
    position: list[int] = [0, 0]
    parameters: dict[str, Any] = {}
    credentials: dict[str, Any] = {}


class WorkflowGraph(_WireModel):
    """A complete workflow graph ready for import into the engine."""

    name: str
    nodes: list[Node] = []
    connections: ConnectionMap = {}
    active: bool = False
    settings: dict[str, Any] = {}
    version_id: str = Field("1", alias="versionId")
    meta: dict[str, Any] = {}
    tags: list[str] = []

    def node_by_name(self, name: str) -> Node | None:
        return next((n for n in self.nodes if n.name == name), None)

    def outgoing(self, name: str) -> list[Connection]:
        """Every target reachable in one hop from ``name`` on the main port."""
        outputs = self.connections.get(name, {}).get(MAIN_PORT, [])
        return [conn for branch in outputs for conn in branch]

    def connect(self, source: str, target: str, *, input_index: int = 0) -> None:
        """Append ``source -> target`` on output 0 of the main port."""
        outputs = self.connections.setdefault(source, {}).setdefault(MAIN_PORT, [])
        if not outputs:
            outputs.append([])
        outputs[0].append(Connection(node=target, index=input_index))

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- Persisted artifact ---


StrategyName = Literal["intelligent", "fallback"]


class GenerationMetadata(_WireModel):
    strategy_used: StrategyName = Field(alias="strategyUsed")
    complexity_tier: str = Field(alias="complexityTier")
    validation_passed: bool = Field(alias="validationPassed")
    archetype: str = ""
    node_count: int = Field(0, alias="nodeCount")
    fallback_reason: Optional[str] = Field(None, alias="fallbackReason")
    generation_seconds: float = Field(0.0, alias="generationSeconds")
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), alias="generatedAt"
    )


class WorkflowArtifact(_WireModel):
    """The job result handed to persistence."""

    job_id: str = Field(alias="jobId")
    workflow: WorkflowGraph
    metadata: GenerationMetadata
    instructions: str = ""
