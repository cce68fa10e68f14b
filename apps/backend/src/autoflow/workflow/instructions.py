"""Human-readable import and setup notes shipped with each artifact."""

from __future__ import annotations

from .registry import DEFAULT_REGISTRY, NodeTemplateRegistry
from .schema import WorkflowGraph


def generate_instructions(graph: WorkflowGraph, registry: NodeTemplateRegistry = DEFAULT_REGISTRY) -> str:
    lines = [
        f"# {graph.name}",
        "",
        "## Importing",
        "",
        "1. Open your workflow engine instance",
        '2. Choose "Import from File" and select the downloaded JSON',
        "3. Review every node, then activate the workflow",
        "",
    ]

    setup: list[str] = []
    credentials: dict[str, list[str]] = {}
    for node in graph.nodes:
        template = registry.by_node_type(node.type)
        if template is None:
            continue
        for cred in template.credentials:
            credentials.setdefault(cred, []).append(node.name)
        if template.kind == "webhook":
            setup.append(f"- Copy the production webhook URL of '{node.name}' into the calling system")
        if template.kind == "http":
            setup.append(f"- Set the endpoint and authentication of '{node.name}' (replace {{{{API_URL}}}})")
    for cred, names in credentials.items():
        setup.append(f"- Create a '{cred}' credential and assign it to: {', '.join(names)}")

    if setup:
        lines += ["## Configuration", "", *setup, ""]

    lines += [
        "## Testing",
        "",
        "1. Run the workflow manually once with sample data",
        "2. Check the execution log for failed nodes",
        "3. Adjust node parameters as needed before activating",
    ]
    return "\n".join(lines)
