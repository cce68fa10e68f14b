"""Structural and policy validation for generated workflow graphs.

Every pass runs regardless of earlier failures and appends to one error list,
so a single call reports every defect in the graph:

  1. structure   : name, nodes and connections present and well-shaped
  2. parameters  : required parameters of each node's kind are non-empty
  3. references  : ids/names unique, connection endpoints name real nodes
  4. terminals   : risky-terminal nodes have an outgoing edge or ``terminal: true``
  5. topology    : main edges acyclic, every non-trigger node has an input
  6. secrets     : no literal credentials in parameters or credentials
"""

from __future__ import annotations

import re
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from .registry import DEFAULT_REGISTRY, GENERIC_FALLBACK_KIND, NodeTemplateRegistry
from .schema import MAIN_PORT, WorkflowGraph

_SECRET_VALUE = re.compile(
    r"(sk-[A-Za-z0-9]{10,}"
    r"|(api[_-]?key|secret|password)\s*[:=]\s*(?!\{\{)\S{6,}"
    r"|Bearer\s+(?!\{\{)[A-Za-z0-9_\-.]{20,})",
    re.IGNORECASE,
)
_SECRET_KEY = re.compile(r"^(api[_-]?key|apikey|secret|client[_-]?secret|password|access[_-]?token)$", re.IGNORECASE)


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = []


@dataclass(frozen=True)
class _Edge:
    source: str
    target: str
    input_index: int


def is_blank(value: Any) -> bool:
    """True for values that cannot satisfy a required parameter."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def _is_placeholder(value: str) -> bool:
    return "{{" in value or value.startswith("=")


def find_inline_secrets(value: Any, path: str = "") -> list[str]:
    """Return dotted paths of literal credentials found in ``value``."""
    found: list[str] = []
    if isinstance(value, dict):
        for key, inner in value.items():
            inner_path = f"{path}.{key}" if path else str(key)
            if (
                _SECRET_KEY.match(str(key))
                and isinstance(inner, str)
                and inner.strip()
                and not _is_placeholder(inner)
            ):
                found.append(inner_path)
                continue
            found.extend(find_inline_secrets(inner, inner_path))
    elif isinstance(value, (list, tuple)):
        for idx, inner in enumerate(value):
            found.extend(find_inline_secrets(inner, f"{path}[{idx}]"))
    elif isinstance(value, str) and _SECRET_VALUE.search(value):
        found.append(path or "<value>")
    return found


def validate_workflow(
    workflow: WorkflowGraph | dict[str, Any],
    registry: NodeTemplateRegistry = DEFAULT_REGISTRY,
) -> ValidationResult:
    """Validate a graph (model or raw engine JSON) and collect every error."""
    raw = workflow.to_wire() if isinstance(workflow, WorkflowGraph) else workflow
    if not isinstance(raw, dict):
        return ValidationResult(valid=False, errors=["workflow is not an object"])

    errors: list[str] = []
    nodes = _check_structure(raw, errors)
    edges = _collect_edges(raw.get("connections"), errors)

    _check_parameters(nodes, registry, errors)
    _check_references(nodes, edges, errors)
    _check_terminals(nodes, edges, registry, errors)
    _check_topology(nodes, edges, registry, errors)
    _check_secrets(nodes, errors)

    return ValidationResult(valid=not errors, errors=errors)


def _node_label(node: Any, idx: int) -> str:
    if isinstance(node, dict):
        return str(node.get("name") or node.get("id") or f"#{idx}")
    return f"#{idx}"


def _check_structure(raw: dict[str, Any], errors: list[str]) -> list[dict[str, Any]]:
    """Check top-level shape; return the nodes that are well-formed enough to inspect."""
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("workflow name is required")

    nodes = raw.get("nodes")
    if not isinstance(nodes, list) or not nodes:
        errors.append("nodes must be a non-empty list")
        nodes = []

    if not isinstance(raw.get("connections"), dict):
        errors.append("connections must be an object keyed by source node name")

    usable: list[dict[str, Any]] = []
    for idx, node in enumerate(nodes):
        if not isinstance(node, dict):
            errors.append(f"node {idx} is not an object")
            continue
        label = _node_label(node, idx)
        missing = [f for f in ("id", "name", "type") if not isinstance(node.get(f), str) or not node[f]]
        for f in missing:
            errors.append(f"node {label} is missing required field '{f}'")
        if not isinstance(node.get("typeVersion", 1), (int, float)):
            errors.append(f"node {label} has a non-numeric typeVersion")
        position = node.get("position")
        if not (
            isinstance(position, (list, tuple))
            and len(position) == 2
            and all(isinstance(p, (int, float)) for p in position)
        ):
            errors.append(f"node {label} has an invalid position (expected [x, y])")
        if not isinstance(node.get("parameters", {}), dict):
            errors.append(f"node {label} parameters must be an object")
            continue
        if not missing:
            usable.append(node)
    return usable


def _collect_edges(connections: Any, errors: list[str]) -> list[_Edge]:
    if not isinstance(connections, dict):
        return []

    edges: list[_Edge] = []
    for source, ports in connections.items():
        if not isinstance(ports, dict):
            errors.append(f"connections of '{source}' must be an object keyed by port")
            continue
        for port, outputs in ports.items():
            if not isinstance(outputs, list) or not all(isinstance(o, list) for o in outputs):
                errors.append(f"connections of '{source}' on port '{port}' must be a list of lists")
                continue
            for branch in outputs:
                for conn in branch:
                    if not isinstance(conn, dict) or not isinstance(conn.get("node"), str):
                        errors.append(f"connection from '{source}' is missing a target node name")
                        continue
                    index = conn.get("index", 0)
                    if not isinstance(index, int) or isinstance(index, bool):
                        errors.append(f"connection from '{source}' has a non-integer index")
                        continue
                    if port != MAIN_PORT:
                        continue
                    edges.append(_Edge(source=source, target=conn["node"], input_index=index))
    return edges


def _check_parameters(
    nodes: list[dict[str, Any]], registry: NodeTemplateRegistry, errors: list[str]
) -> None:
    for node in nodes:
        template = registry.by_node_type(node["type"])
        if template is None:
            errors.append(f"node '{node['name']}' has unknown kind '{node['type']}'")
            continue
        params = node.get("parameters") or {}
        for required in template.required_params:
            if is_blank(params.get(required)):
                errors.append(
                    f"node '{node['name']}' ({template.kind}) is missing required parameter '{required}'"
                )
        if template.kind == GENERIC_FALLBACK_KIND and isinstance(params.get("options"), dict):
            options = params["options"]
            retries = options.get("maxRetries")
            if options.get("retryOnFail") is not True or not (isinstance(retries, int) and retries >= 1):
                errors.append(
                    f"node '{node['name']}' ({template.kind}) needs a retry policy "
                    "(options.retryOnFail=true and options.maxRetries>=1)"
                )


def _check_references(nodes: list[dict[str, Any]], edges: list[_Edge], errors: list[str]) -> None:
    seen_ids: dict[str, str] = {}
    seen_names: dict[str, str] = {}
    for node in nodes:
        if node["id"] in seen_ids:
            errors.append(f"duplicate node id '{node['id']}' ('{seen_ids[node['id']]}' and '{node['name']}')")
        seen_ids.setdefault(node["id"], node["name"])
        if node["name"] in seen_names:
            errors.append(
                f"duplicate node name '{node['name']}' (ids '{seen_names[node['name']]}' and "
                f"'{node['id']}'); connection keys would be ambiguous"
            )
        seen_names.setdefault(node["name"], node["id"])

    names = set(seen_names)
    reported: set[tuple[str, str]] = set()
    for edge in edges:
        for role, ref in (("source", edge.source), ("target", edge.target)):
            if ref in names or (role, ref) in reported:
                continue
            reported.add((role, ref))
            hint = " (connections must use display names, not ids)" if ref in seen_ids else ""
            errors.append(f"connection {role} '{ref}' does not match any node name{hint}")


def _check_terminals(
    nodes: list[dict[str, Any]],
    edges: list[_Edge],
    registry: NodeTemplateRegistry,
    errors: list[str],
) -> None:
    sources = {edge.source for edge in edges}
    for node in nodes:
        template = registry.by_node_type(node["type"])
        if template is None or not template.is_risky_terminal:
            continue
        if node["name"] in sources:
            continue
        if (node.get("parameters") or {}).get("terminal") is True:
            continue
        errors.append(
            f"node '{node['name']}' ({template.kind}) is terminal without an outgoing connection; "
            "connect it onward or set parameters.terminal=true"
        )


def _check_topology(
    nodes: list[dict[str, Any]],
    edges: list[_Edge],
    registry: NodeTemplateRegistry,
    errors: list[str],
) -> None:
    names = [node["name"] for node in nodes]
    known = set(names)
    live = [e for e in edges if e.source in known and e.target in known]

    targets = {edge.target for edge in live}
    for node in nodes:
        template = registry.by_node_type(node["type"])
        if template is None or template.is_trigger:
            continue
        if node["name"] not in targets:
            errors.append(f"node '{node['name']}' has no incoming connection")

    in_degree: dict[str, int] = {name: 0 for name in known}
    dependents: dict[str, list[str]] = defaultdict(list)
    for edge in live:
        dependents[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    queue: deque[str] = deque(name for name in dict.fromkeys(names) if in_degree[name] == 0)
    visited = 0
    while queue:
        name = queue.popleft()
        visited += 1
        for dependent in dependents[name]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    if visited != len(known):
        cyclic = sorted(name for name, degree in in_degree.items() if degree > 0)
        errors.append(f"cycle detected along main connections involving nodes: {', '.join(cyclic)}")


def _check_secrets(nodes: list[dict[str, Any]], errors: list[str]) -> None:
    for node in nodes:
        paths = find_inline_secrets(node.get("parameters") or {}, "parameters")
        paths += find_inline_secrets(node.get("credentials") or {}, "credentials")
        for path in paths:
            errors.append(
                f"node '{node['name']}' embeds a literal secret at {path}; use a {{{{PLACEHOLDER}}}} instead"
            )
