"""Plan complexity scoring used to pick a generation tier and context budget."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Literal

from pydantic import BaseModel

from ..workflow.registry import DEFAULT_REGISTRY, NodeTemplateRegistry
from ..workflow.schema import AutomationOpportunity, BusinessContext, OrchestrationPlan

ComplexityTier = Literal["simple", "complex"]
Role = Literal["orchestrator", "agent"]

COMPLEX_THRESHOLD = 4

AI_KEYWORDS = ("ai", "analysis", "analyze", "classify", "classification", "categorize", "summarize", "intelligent", "llm")
CONDITIONAL_KINDS = {"condition", "conditional", "if", "switch", "branch", "route", "router", "decision"}
HIGH_COMPLIANCE_INDUSTRIES = ("finance", "insurance", "healthcare", "banking")
HIGH_VOLUME_MARKERS = ("100+", "200+", "high", "thousands")
PARALLEL_MARKERS = ("parallel", "simultaneous", "sync", "synchronize", "mirror")
HINT_MARKERS = ("complex", "multi-step", "enterprise", "multi-department", "compliance")


@dataclass(frozen=True)
class ModelTiers:
    simple: str = "claude-3-5-sonnet"
    complex: str = "claude-3-7-sonnet"


class ComplexityAnalysis(BaseModel):
    score: int
    complexity: ComplexityTier
    recommended_model: str
    reasoning: list[str] = []

    @property
    def cost_impact(self) -> str:
        return "high" if self.complexity == "complex" else "low"


def recommend_generation_tier(complexity: ComplexityTier, tiers: ModelTiers = ModelTiers()) -> str:
    """Map a complexity tier onto the model used to generate for it."""
    return tiers.complex if complexity == "complex" else tiers.simple


def get_context_budget(complexity: ComplexityTier, role: Role) -> dict[str, int]:
    """Token budgets for one model call."""
    budgets = {
        "simple": {
            "orchestrator": {"input_tokens": 8000, "output_tokens": 3000},
            "agent": {"input_tokens": 6000, "output_tokens": 2000},
        },
        "complex": {
            "orchestrator": {"input_tokens": 15000, "output_tokens": 5000},
            "agent": {"input_tokens": 10000, "output_tokens": 3000},
        },
    }
    return dict(budgets.get(complexity, budgets["simple"])[role])


def get_documentation_params(complexity: ComplexityTier) -> dict[str, int]:
    if complexity == "complex":
        return {"node_count": 8, "chars_per_doc": 1200}
    return {"node_count": 4, "chars_per_doc": 600}


def _has_keyword(text: str, keywords: Iterable[str]) -> bool:
    tokens = set(re.findall(r"[a-z0-9+\-]+", text.lower()))
    return any(k in tokens for k in keywords)


def plan_integrations(plan: OrchestrationPlan, registry: NodeTemplateRegistry = DEFAULT_REGISTRY) -> list[str]:
    """External systems the plan touches: declared ones plus those implied by step kinds."""
    found = {i.strip().lower() for i in plan.integrations if i.strip()}
    for trigger in plan.triggers:
        template = registry.resolve(trigger.type, trigger=True)
        if template is not None and template.service:
            found.add(template.service.lower())
    for step in plan.steps:
        template = registry.resolve(step.type, trigger=False)
        if template is not None and template.service:
            found.add(template.service.lower())
    return sorted(found)


def analyze_complexity(
    plan: OrchestrationPlan,
    context: BusinessContext,
    *,
    process_description: str = "",
    opportunities: Iterable[AutomationOpportunity] = (),
    registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
    tiers: ModelTiers = ModelTiers(),
) -> ComplexityAnalysis:
    """Score a plan; the result is a pure function of the inputs."""
    score = 0
    reasoning: list[str] = []

    step_count = len(plan.steps)
    if step_count >= 5:
        score += 3
        reasoning.append(f"High step count: {step_count} steps")
    elif step_count >= 3:
        score += 1
        reasoning.append(f"Medium step count: {step_count} steps")

    kinds = sorted({k.strip().lower() for k in plan.kinds()})
    if len(kinds) >= 5:
        score += 2
        reasoning.append(f"Many distinct node kinds: {', '.join(kinds)}")
    elif len(kinds) >= 3:
        score += 1
        reasoning.append(f"Several distinct node kinds: {', '.join(kinds)}")

    integrations = plan_integrations(plan, registry)
    if len(integrations) >= 2:
        score += 2
        reasoning.append(f"Multi-platform integration: {', '.join(integrations)}")

    opportunities = list(opportunities)
    texts = [plan.description, process_description, *(s.description for s in plan.steps)]
    has_ai = any(_has_keyword(t, AI_KEYWORDS) for t in texts) or any(
        "ai_" in op.automation_solution.lower() or "intelligent" in op.automation_solution.lower()
        for op in opportunities
    )
    if has_ai:
        score += 2
        reasoning.append("AI processing required")

    if any(s.type.strip().lower() in CONDITIONAL_KINDS for s in plan.steps):
        score += 1
        reasoning.append("Conditional logic required")

    industry = context.industry.lower()
    if any(marker in industry for marker in HIGH_COMPLIANCE_INDUSTRIES):
        score += 1
        reasoning.append(f"High-compliance industry: {context.industry}")

    volume = context.volume or plan.volume_expected or ""
    if any(marker in volume.lower() for marker in HIGH_VOLUME_MARKERS):
        score += 1
        reasoning.append(f"High volume requirements: {volume}")

    description = f"{plan.description} {process_description}"
    if len(integrations) > 2 or _has_keyword(description, PARALLEL_MARKERS):
        score += 2
        reasoning.append("Multi-platform synchronization or parallel processing required")

    if _has_keyword(context.complexity_hints, HINT_MARKERS):
        score += 1
        reasoning.append(f"Complexity hints: {context.complexity_hints.strip()}")

    complexity: ComplexityTier = "complex" if score >= COMPLEX_THRESHOLD else "simple"
    return ComplexityAnalysis(
        score=score,
        complexity=complexity,
        recommended_model=recommend_generation_tier(complexity, tiers),
        reasoning=reasoning,
    )
