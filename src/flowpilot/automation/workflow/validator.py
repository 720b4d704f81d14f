"""Structural validation of a flow graph.

Findings are returned as data, never raised. The check order is fixed so that
validating the same flow twice yields identical results.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from .models import (
    Flow,
    NodeType,
    Severity,
    ValidationCode,
    ValidationFinding,
    ValidationResult,
)
from .node_config import validate_node_config

_BRANCH_PATHS = ("true", "false")
# Node types allowed to end a branch without an outgoing edge.
_SINK_TYPES = (NodeType.END, NodeType.ACTION, NodeType.DELAY)


def _duplicates(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for value in values:
        if value in seen and value not in dupes:
            dupes.append(value)
        seen.add(value)
    return dupes


def _schema_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        location = ".".join(str(p) for p in err["loc"])
        parts.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(parts)


def _reachable_from(starts: Iterable[str], adjacency: Mapping[str, list[str]]) -> set[str]:
    visited: set[str] = set()
    queue = deque(starts)
    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)
        queue.extend(t for t in adjacency.get(node_id, []) if t not in visited)
    return visited


def _cycle_edges(flow: Flow, starts: Iterable[str], reachable: set[str]) -> list[str]:
    """Ids of edges that close a cycle among reachable nodes (iterative DFS)."""

    edges_by_source: dict[str, list[tuple[str, str]]] = {}
    for edge in flow.edges:
        if edge.source != edge.target and edge.source in reachable:
            edges_by_source.setdefault(edge.source, []).append((edge.id, edge.target))

    on_stack: set[str] = set()
    done: set[str] = set()
    closing: list[str] = []

    for start in starts:
        if start in done:
            continue
        stack: list[tuple[str, int]] = [(start, 0)]
        on_stack.add(start)
        while stack:
            node_id, index = stack[-1]
            out = edges_by_source.get(node_id, [])
            if index >= len(out):
                stack.pop()
                on_stack.discard(node_id)
                done.add(node_id)
                continue
            stack[-1] = (node_id, index + 1)
            edge_id, target = out[index]
            if target in on_stack:
                if edge_id not in closing:
                    closing.append(edge_id)
            elif target not in done:
                on_stack.add(target)
                stack.append((target, 0))
    return closing


def validate_flow(flow: Flow | Mapping[str, Any]) -> ValidationResult:
    if not isinstance(flow, Flow):
        try:
            flow = Flow.model_validate(flow)
        except ValidationError as e:
            return ValidationResult(
                valid=False,
                errors=[
                    ValidationFinding(
                        code=ValidationCode.SCHEMA_INVALID,
                        message=f"Schema validation failed: {_schema_message(e)}",
                    )
                ],
            )

    findings: list[ValidationFinding] = []

    def add(
        code: ValidationCode,
        message: str,
        *,
        node_id: str | None = None,
        edge_id: str | None = None,
        severity: Severity = Severity.ERROR,
    ) -> None:
        findings.append(
            ValidationFinding(
                code=code, message=message, node_id=node_id, edge_id=edge_id, severity=severity
            )
        )

    for node in flow.nodes:
        if not node.label.strip():
            add(
                ValidationCode.EMPTY_NODE_LABEL,
                f"Node with ID '{node.id}' has an empty or missing label",
                node_id=node.id,
            )

    for edge in flow.edges:
        if not edge.id.strip():
            add(ValidationCode.EMPTY_EDGE_ID, "An edge has an empty or missing ID")

    triggers = flow.trigger_nodes()
    if not triggers:
        add(ValidationCode.NO_TRIGGER, "Flow must have at least one TRIGGER node")

    node_ids = {n.id for n in flow.nodes}
    for edge in flow.edges:
        if edge.source not in node_ids:
            add(
                ValidationCode.INVALID_EDGE_REFERENCE,
                f"Edge '{edge.id}' has invalid source node '{edge.source}'",
                edge_id=edge.id,
            )
        if edge.target not in node_ids:
            add(
                ValidationCode.INVALID_EDGE_REFERENCE,
                f"Edge '{edge.id}' has invalid target node '{edge.target}'",
                edge_id=edge.id,
            )

    for edge in flow.edges:
        if edge.source == edge.target:
            add(
                ValidationCode.SELF_LOOP,
                f"Edge '{edge.id}' is a self-loop (source === target)",
                edge_id=edge.id,
            )

    duplicate_nodes = _duplicates(n.id for n in flow.nodes)
    if duplicate_nodes:
        add(
            ValidationCode.DUPLICATE_NODE_IDS,
            f"Duplicate node IDs found: {', '.join(duplicate_nodes)}",
        )
    duplicate_edges = _duplicates(e.id for e in flow.edges)
    if duplicate_edges:
        add(
            ValidationCode.DUPLICATE_EDGE_IDS,
            f"Duplicate edge IDs found: {', '.join(duplicate_edges)}",
        )

    for node in flow.nodes:
        error = validate_node_config(node)
        if error is not None:
            add(ValidationCode.INVALID_NODE_CONFIG, error, node_id=node.id)

    if not flow.nodes:
        add(ValidationCode.EMPTY_FLOW, "Flow contains no nodes")

    if len(flow.nodes) == 1 and len(triggers) == 1:
        add(
            ValidationCode.NO_ACTIONS,
            "Flow only contains a trigger node with no subsequent actions",
            severity=Severity.WARNING,
        )

    # Adjacency is built once and shared by every graph check below.
    adjacency: dict[str, list[str]] = {}
    has_incoming: set[str] = set()
    has_outgoing: set[str] = set()
    for edge in flow.edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
        has_outgoing.add(edge.source)
        has_incoming.add(edge.target)

    for node in flow.nodes:
        if (
            node.type is not NodeType.TRIGGER
            and node.id not in has_incoming
            and node.id not in has_outgoing
        ):
            add(
                ValidationCode.DISCONNECTED_NODE,
                f"Node '{node.label}' is not connected to any other nodes and will never execute",
                node_id=node.id,
            )

    trigger_ids = [t.id for t in triggers]
    reachable = _reachable_from(trigger_ids, adjacency)

    for node in flow.nodes:
        if node.type is not NodeType.TRIGGER and node.id not in reachable:
            add(
                ValidationCode.UNREACHABLE_NODE,
                f"Node '{node.label}' cannot be reached from any trigger and will never execute",
                node_id=node.id,
            )

    for edge_id in _cycle_edges(flow, trigger_ids, reachable):
        add(
            ValidationCode.CYCLE_DETECTED,
            f"Edge '{edge_id}' closes a cycle; cyclic flows cannot be executed",
            edge_id=edge_id,
        )

    for node in flow.nodes:
        if node.type is not NodeType.TRIGGER and node.id not in has_incoming:
            add(
                ValidationCode.NO_INCOMING_EDGE,
                f"Node '{node.label}' has no incoming connections",
                node_id=node.id,
            )
        if node.type not in _SINK_TYPES and node.id not in has_outgoing:
            add(
                ValidationCode.NO_OUTGOING_EDGE,
                f"Node '{node.label}' has no outgoing connections and flow will end prematurely",
                node_id=node.id,
            )

    for node in flow.nodes:
        if node.type is not NodeType.CONDITION:
            continue
        outgoing = flow.outgoing_edges(node.id)
        paths = {e.condition_path for e in outgoing}
        if len(outgoing) < 2:
            add(
                ValidationCode.INCOMPLETE_CONDITION,
                f"Condition node '{node.label}' must have at least 2 outgoing paths "
                "(true/false branches)",
                node_id=node.id,
            )
        for path, code in zip(
            _BRANCH_PATHS,
            (ValidationCode.MISSING_TRUE_PATH, ValidationCode.MISSING_FALSE_PATH),
            strict=True,
        ):
            if path not in paths:
                add(
                    code,
                    f"Condition node '{node.label}' is missing the '{path}' branch",
                    node_id=node.id,
                )

    actions = [n for n in flow.nodes if n.type is NodeType.ACTION]
    if actions and not any(n.id in reachable for n in actions):
        add(
            ValidationCode.NO_REACHABLE_ACTIONS,
            "Flow has action nodes but none can be reached from triggers",
        )

    if triggers and not actions:
        add(
            ValidationCode.NO_ACTION_NODES,
            "Flow has no action nodes - add at least one action to perform",
        )

    valid = all(f.severity is not Severity.ERROR for f in findings)
    return ValidationResult(valid=valid, errors=findings)
