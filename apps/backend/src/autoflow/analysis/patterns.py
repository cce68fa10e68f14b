"""Curated workflow patterns offered to the model as worked examples."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .context import Archetype, ContextDescriptor


@dataclass(frozen=True)
class WorkflowPattern:
    name: str
    description: str
    archetypes: tuple[Archetype, ...]
    tags: tuple[str, ...]
    node_kinds: tuple[str, ...]
    practices: tuple[str, ...] = ()


PATTERNS: list[WorkflowPattern] = [
    WorkflowPattern(
        name="Customer Support Email Processing",
        description="Classify incoming support emails by urgency and route them to the right team",
        archetypes=(Archetype.EMAIL_AUTOMATION, Archetype.AI_CLASSIFICATION),
        tags=("email", "support", "classification", "routing", "urgency"),
        node_kinds=("gmail-trigger", "openai", "switch", "slack-message", "gmail-send"),
        practices=(
            "Poll the mailbox no more often than once a minute",
            "Mark processed emails as seen",
            "Route on the classifier output, not on raw text",
        ),
    ),
    WorkflowPattern(
        name="Lead Nurturing Email Sequence",
        description="Send segmented follow-up emails based on user actions",
        archetypes=(Archetype.EMAIL_AUTOMATION,),
        tags=("email", "marketing", "nurturing", "segmentation", "lead", "leads"),
        node_kinds=("webhook", "function", "switch", "email-send"),
        practices=("Segment users before choosing a template", "Throttle bulk sends"),
    ),
    WorkflowPattern(
        name="CSV Import and Validation",
        description="Import tabular files, validate each row and store the valid ones",
        archetypes=(Archetype.DATA_SYNC, Archetype.DOCUMENT_PROCESSING),
        tags=("csv", "import", "validation", "data", "rows", "spreadsheet"),
        node_kinds=("webhook", "function", "if", "google-sheets"),
        practices=("Validate before writing", "Collect rejected rows for review"),
    ),
    WorkflowPattern(
        name="Bi-directional CRM Synchronization",
        description="Keep customer records consistent between two systems",
        archetypes=(Archetype.DATA_SYNC, Archetype.API_INTEGRATION),
        tags=("crm", "sync", "synchronization", "customer", "records", "integration"),
        node_kinds=("schedule", "http", "merge", "set", "airtable"),
        practices=("Compare modification times before overwriting", "Batch API calls"),
    ),
    WorkflowPattern(
        name="Resilient Webhook Relay",
        description="Accept external events, validate the payload and call a downstream API with retries",
        archetypes=(Archetype.API_INTEGRATION, Archetype.GENERAL_AUTOMATION),
        tags=("webhook", "api", "relay", "payload", "events", "retry"),
        node_kinds=("webhook", "if", "http", "set"),
        practices=(
            "Validate the payload before any outbound call",
            "Retry HTTP calls up to three times",
            "Reference credentials through placeholders",
        ),
    ),
]


def select_patterns(
    descriptor: ContextDescriptor,
    text: str,
    *,
    limit: int = 2,
    patterns: list[WorkflowPattern] = PATTERNS,
) -> list[WorkflowPattern]:
    """Patterns ranked by archetype match and tag overlap with ``text``."""
    words = set(re.findall(r"[a-z0-9]+", text.lower()))
    scored = []
    for idx, pattern in enumerate(patterns):
        score = len(words.intersection(pattern.tags))
        if descriptor.workflow_archetype in pattern.archetypes:
            score += 2
        if score > 0:
            scored.append((-score, idx, pattern))
    scored.sort()
    return [pattern for _, _, pattern in scored[:limit]]


def render_patterns(patterns: list[WorkflowPattern]) -> str:
    if not patterns:
        return "(none)"
    blocks = []
    for pattern in patterns:
        lines = [f"### {pattern.name}", pattern.description, f"Node kinds: {' -> '.join(pattern.node_kinds)}"]
        lines += [f"- {practice}" for practice in pattern.practices]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
