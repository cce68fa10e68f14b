"""Documentation-context budgeting for AI-assisted generation.

Plans are classified into a closed set of archetypes by evaluating an ordered
list of rules; the first matching rule wins and ``GENERAL_AUTOMATION`` catches
everything else. Each archetype carries the node kinds and topics worth showing
the model, and the documentation budget scales with the complexity tier.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from pydantic import BaseModel

from ..monitoring.cost import rates_for
from ..workflow.registry import DEFAULT_REGISTRY, NodeTemplateRegistry
from ..workflow.schema import AutomationOpportunity, BusinessContext, OrchestrationPlan
from .complexity import ComplexityAnalysis, ComplexityTier, plan_integrations

MAX_NODE_DOCS = 10
MAX_CHARS_PER_DOC = 1600
BASE_PROMPT_TOKENS = 2000
CHARS_PER_TOKEN = 4


class Archetype(str, Enum):
    EMAIL_AUTOMATION = "email-automation"
    DATA_SYNC = "data-sync"
    AI_CLASSIFICATION = "ai-classification"
    DOCUMENT_PROCESSING = "document-processing"
    API_INTEGRATION = "api-integration"
    GENERAL_AUTOMATION = "general-automation"


@dataclass(frozen=True)
class PlanSignals:
    """Lower-cased evidence the archetype rules look at."""

    description: str
    integrations: frozenset[str]
    kinds: frozenset[str]
    solutions: tuple[str, ...]

    def words(self) -> list[str]:
        return re.findall(r"[a-z0-9]+", self.description)

    def mentions(self, *fragments: str) -> bool:
        """True when a whole word of the description starts with one of ``fragments``."""
        return any(word.startswith(fragment) for word in self.words() for fragment in fragments)

    def solution_mentions(self, fragment: str) -> bool:
        return any(fragment in solution for solution in self.solutions)


def extract_signals(
    plan: OrchestrationPlan,
    *,
    process_description: str = "",
    opportunities: Iterable[AutomationOpportunity] = (),
    registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
) -> PlanSignals:
    text = " ".join([process_description, plan.description, *(s.description for s in plan.steps)])
    return PlanSignals(
        description=re.sub(r"\s+", " ", text.lower()),
        integrations=frozenset(plan_integrations(plan, registry)),
        kinds=frozenset(k.strip().lower() for k in plan.kinds()),
        solutions=tuple(op.automation_solution.lower() for op in opportunities),
    )


Rule = tuple[Archetype, Callable[[PlanSignals], bool]]

ARCHETYPE_RULES: list[Rule] = [
    (
        Archetype.EMAIL_AUTOMATION,
        lambda s: s.mentions("email") or "gmail" in s.integrations or s.solution_mentions("email"),
    ),
    (
        Archetype.DATA_SYNC,
        lambda s: s.mentions("sync", "sheets", "airtable")
        or bool({"googlesheets", "google-sheets", "airtable"} & s.integrations),
    ),
    (
        Archetype.AI_CLASSIFICATION,
        lambda s: s.mentions("classif", "categoriz", "analysis") or s.solution_mentions("ai_"),
    ),
    (
        Archetype.DOCUMENT_PROCESSING,
        lambda s: s.mentions("document", "pdf", "file"),
    ),
    (
        Archetype.API_INTEGRATION,
        lambda s: s.mentions("api", "webhook")
        or bool({"httprequest", "webhook", "http"} & (s.integrations | s.kinds)),
    ),
]


def classify_archetype(signals: PlanSignals, rules: list[Rule] = ARCHETYPE_RULES) -> Archetype:
    for archetype, predicate in rules:
        if predicate(signals):
            return archetype
    return Archetype.GENERAL_AUTOMATION


@dataclass(frozen=True)
class ArchetypeProfile:
    focus_node_kinds: tuple[str, ...]
    focus_areas: tuple[str, ...]
    base_node_count: int
    base_chars_per_doc: int
    priority: str


PROFILES: dict[Archetype, ArchetypeProfile] = {
    Archetype.EMAIL_AUTOMATION: ArchetypeProfile(
        focus_node_kinds=("gmail-trigger", "gmail-send", "email-send", "function", "openai", "switch", "merge"),
        focus_areas=("email handling", "AI responses", "conditional logic"),
        base_node_count=6,
        base_chars_per_doc=1000,
        priority="email processing and AI integration",
    ),
    Archetype.DATA_SYNC: ArchetypeProfile(
        focus_node_kinds=("google-sheets", "airtable", "webhook", "function", "merge", "set"),
        focus_areas=("data transformation", "parallel processing", "error handling"),
        base_node_count=6,
        base_chars_per_doc=800,
        priority="data reliability and sync accuracy",
    ),
    Archetype.AI_CLASSIFICATION: ArchetypeProfile(
        focus_node_kinds=("openai", "function", "switch", "webhook", "http", "merge"),
        focus_areas=("AI processing", "conditional routing", "decision logic"),
        base_node_count=8,
        base_chars_per_doc=1200,
        priority="intelligent decision making and routing",
    ),
    Archetype.DOCUMENT_PROCESSING: ArchetypeProfile(
        focus_node_kinds=("http", "function", "openai", "google-sheets", "switch"),
        focus_areas=("file handling", "content extraction", "document analysis"),
        base_node_count=6,
        base_chars_per_doc=900,
        priority="document parsing and processing",
    ),
    Archetype.API_INTEGRATION: ArchetypeProfile(
        focus_node_kinds=("webhook", "http", "function", "set", "switch", "merge"),
        focus_areas=("API authentication", "error handling", "data transformation"),
        base_node_count=5,
        base_chars_per_doc=700,
        priority="reliable API connectivity and error handling",
    ),
    Archetype.GENERAL_AUTOMATION: ArchetypeProfile(
        focus_node_kinds=("webhook", "function", "http", "switch", "merge"),
        focus_areas=("workflow orchestration", "error handling", "general integration"),
        base_node_count=4,
        base_chars_per_doc=600,
        priority="flexible automation patterns",
    ),
}

# (node count factor, chars per doc factor)
SCALING: dict[str, tuple[float, float]] = {
    "simple": (1.0, 0.8),
    "complex": (1.5, 1.3),
}


class ContextDescriptor(BaseModel):
    workflow_archetype: Archetype
    focus_node_kinds: list[str]
    focus_areas: list[str]
    node_doc_count: int
    chars_per_doc: int
    complexity: ComplexityTier
    priority: str = ""
    reasoning: str = ""

    def to_wire(self) -> dict:
        return {
            "workflowArchetype": self.workflow_archetype.value,
            "focusNodeKinds": self.focus_node_kinds,
            "focusAreas": self.focus_areas,
            "nodeDocCount": self.node_doc_count,
            "charsPerDoc": self.chars_per_doc,
        }


def scale_budget(profile: ArchetypeProfile, complexity: ComplexityTier) -> tuple[int, int]:
    """Scale an archetype's base budget by tier, clamped to the hard ceilings."""
    node_factor, chars_factor = SCALING.get(complexity, SCALING["simple"])
    node_count = min(MAX_NODE_DOCS, round(profile.base_node_count * node_factor))
    chars = min(MAX_CHARS_PER_DOC, round(profile.base_chars_per_doc * chars_factor))
    return node_count, chars


def optimize_context(
    plan: OrchestrationPlan,
    analysis: ComplexityAnalysis,
    *,
    process_description: str = "",
    opportunities: Iterable[AutomationOpportunity] = (),
    registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
) -> ContextDescriptor:
    signals = extract_signals(
        plan, process_description=process_description, opportunities=opportunities, registry=registry
    )
    archetype = classify_archetype(signals)
    profile = PROFILES[archetype]
    node_count, chars = scale_budget(profile, analysis.complexity)
    return ContextDescriptor(
        workflow_archetype=archetype,
        focus_node_kinds=list(profile.focus_node_kinds),
        focus_areas=list(profile.focus_areas),
        node_doc_count=node_count,
        chars_per_doc=chars,
        complexity=analysis.complexity,
        priority=profile.priority,
        reasoning=f"Detected {archetype.value} workflow ({analysis.complexity} complexity)",
    )


def disqualifies_ai(descriptor: ContextDescriptor, plan: OrchestrationPlan) -> str | None:
    """Return why AI assistance is not worth it for this plan, or None."""
    if descriptor.complexity != "simple":
        return None
    if descriptor.workflow_archetype is Archetype.GENERAL_AUTOMATION:
        return "simple general-automation plan; deterministic assembly suffices"
    if len(plan.steps) <= 2 and descriptor.workflow_archetype is not Archetype.AI_CLASSIFICATION:
        return f"simple plan with {len(plan.steps)} step(s) and no AI processing"
    return None


def select_node_docs(
    descriptor: ContextDescriptor,
    registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
    *,
    extra_kinds: Iterable[str] = (),
) -> list[dict[str, str]]:
    """Documentation slice for the model: focus kinds first, then plan kinds."""
    selected: list[dict[str, str]] = []
    seen: set[str] = set()
    for kind in [*descriptor.focus_node_kinds, *extra_kinds]:
        if len(selected) >= descriptor.node_doc_count:
            break
        template = registry.resolve(kind)
        if template is None or template.kind in seen:
            continue
        seen.add(template.kind)
        docs = template.docs or template.description
        selected.append(
            {
                "kind": template.kind,
                "nodeType": template.node_type,
                "docs": docs[: descriptor.chars_per_doc],
            }
        )
    return selected


def render_node_docs(docs: list[dict[str, str]]) -> str:
    if not docs:
        return "(none)"
    return "\n\n".join(f"### {d['kind']} ({d['nodeType']})\n{d['docs']}" for d in docs)


def build_focus_prompt(base_prompt: str, descriptor: ContextDescriptor, context: BusinessContext) -> str:
    focus = [
        "",
        "## Workflow focus",
        f"Primary focus: {descriptor.priority}",
        f"Key areas: {', '.join(descriptor.focus_areas)}",
        f"Target node kinds: {', '.join(descriptor.focus_node_kinds)}",
        f"Business context: {context.industry or 'General'} | {context.department or 'Operations'}",
        f"Complexity: {descriptor.complexity} workflow requiring {descriptor.focus_areas[0]}",
    ]
    return base_prompt + "\n".join(focus)


def estimate_cost(descriptor: ContextDescriptor, model: str) -> dict:
    """Rough token and USD estimate for one generation call with this context."""
    input_tokens = descriptor.node_doc_count * descriptor.chars_per_doc // CHARS_PER_TOKEN + BASE_PROMPT_TOKENS
    output_tokens = 5000 if descriptor.complexity == "complex" else 3000
    input_rate, output_rate = rates_for(model)
    input_cost = input_tokens / 1_000_000 * input_rate
    output_cost = output_tokens / 1_000_000 * output_rate
    return {
        "model": model,
        "estimatedInputTokens": input_tokens,
        "estimatedOutputTokens": output_tokens,
        "inputCost": round(input_cost, 6),
        "outputCost": round(output_cost, 6),
        "totalCost": round(input_cost + output_cost, 6),
    }
