"""Plan analysis: complexity scoring and documentation-context budgeting."""

from .complexity import ComplexityAnalysis, ModelTiers, analyze_complexity, recommend_generation_tier
from .context import Archetype, ContextDescriptor, classify_archetype, optimize_context

__all__ = [
    "Archetype",
    "ComplexityAnalysis",
    "ContextDescriptor",
    "ModelTiers",
    "analyze_complexity",
    "classify_archetype",
    "optimize_context",
    "recommend_generation_tier",
]
