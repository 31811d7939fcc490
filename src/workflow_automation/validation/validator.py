"""
Workflow validator - static checks run before a workflow may be activated.

Errors block save/activation; warnings are surfaced to the author but do
not block anything.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from workflow_automation.graph import (
    ActionNode,
    BRANCH_FALSE,
    BRANCH_TRUE,
    ConditionNode,
    ConfigDecodeError,
    TriggerNode,
    WorkflowGraph,
    decode_action_config,
    decode_condition_config,
)
from workflow_automation.graph.graph import GraphNode


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class Issue(BaseModel):
    """One validation finding."""

    severity: Severity
    node_id: Optional[str] = None
    message: str


class ValidationReport(BaseModel):
    """Validation outcome for a workflow."""

    issues: List[Issue] = Field(default_factory=list)

    @property
    def errors(self) -> List[Issue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Issue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _label(node: GraphNode) -> str:
    if isinstance(node, ActionNode):
        return f"{node.action_type or 'action'} node {node.id!r}"
    return f"{node.kind} node {node.id!r}"


def validate(graph: WorkflowGraph) -> List[Issue]:
    """
    Validate a workflow graph.

    Checks:
    - Exactly one trigger, with no incoming edges, a matching trigger type
      and exactly one outgoing edge
    - Every node reachable from the trigger (warning otherwise)
    - No cycle reachable from the trigger
    - Condition nodes have exactly one ``true`` and one ``false`` edge
      and a decodable configuration
    - Action nodes have at most one outgoing edge and a configuration that
      decodes into their action type's record

    Args:
        graph: Graph to validate

    Returns:
        Issues found, in check order
    """
    issues: List[Issue] = []

    def error(message: str, node_id: Optional[str] = None) -> None:
        issues.append(Issue(severity=Severity.ERROR, node_id=node_id, message=message))

    def warning(message: str, node_id: Optional[str] = None) -> None:
        issues.append(Issue(severity=Severity.WARNING, node_id=node_id, message=message))

    # 1. Trigger node
    triggers = graph.trigger_nodes()
    if not triggers:
        error("Workflow must have a trigger node")
    elif len(triggers) > 1:
        for extra in triggers[1:]:
            error("Workflow can only have one trigger node", extra.id)

    for trigger in triggers:
        if graph.incoming(trigger.id):
            error("Trigger node cannot have incoming connections", trigger.id)

    trigger: Optional[TriggerNode] = triggers[0] if len(triggers) == 1 else None
    if trigger is not None:
        expected = graph.workflow.trigger_type
        if trigger.trigger_type != expected:
            error(
                f"Trigger type {trigger.trigger_type!r} does not match workflow "
                f"trigger type {expected!r}",
                trigger.id,
            )
        outgoing = graph.outgoing(trigger.id)
        if not outgoing:
            error("Trigger node must be connected to an action or condition", trigger.id)
        elif len(outgoing) > 1:
            error("Trigger node can only have one outgoing connection", trigger.id)

        # 2. Reachability
        reachable = set(graph.reachable_from(trigger.id))
        for node in graph.nodes:
            if node.id != trigger.id and node.id not in reachable:
                warning(f"Unused node: {_label(node)} is not connected to the trigger", node.id)

        # 3. Cycles
        for node_id in _find_cycle_entries(graph, trigger.id):
            error(f"Connection from {_label(graph.node(node_id))} creates a cycle", node_id)

    # 4. Per-node rules
    for node in graph.nodes:
        if isinstance(node, ConditionNode):
            _check_condition(graph, node, error, warning)
        elif isinstance(node, ActionNode):
            _check_action(graph, node, error, warning)

    return issues


def validate_workflow(graph: WorkflowGraph) -> ValidationReport:
    """Validate and wrap the issues in a report."""
    return ValidationReport(issues=validate(graph))


def _find_cycle_entries(graph: WorkflowGraph, start: str) -> List[str]:
    """
    Depth-first search from ``start``.

    Returns the ids of nodes owning a back edge, each once, in discovery order.
    """
    state: Dict[str, int] = {}  # 1 = on stack, 2 = done
    offenders: List[str] = []
    seen_offenders: Set[str] = set()

    stack = [(start, iter(graph.outgoing(start)))]
    state[start] = 1
    while stack:
        node_id, edges = stack[-1]
        conn = next(edges, None)
        if conn is None:
            state[node_id] = 2
            stack.pop()
            continue
        target = conn.target_node_id
        if state.get(target) == 1:
            if node_id not in seen_offenders:
                seen_offenders.add(node_id)
                offenders.append(node_id)
        elif target not in state:
            state[target] = 1
            stack.append((target, iter(graph.outgoing(target))))
    return offenders


def _check_condition(graph: WorkflowGraph, node: ConditionNode, error, warning) -> None:
    outgoing = graph.outgoing(node.id)
    branches = [conn.branch for conn in outgoing]

    missing = [b for b in (BRANCH_TRUE, BRANCH_FALSE) if b not in branches]
    if missing:
        error(
            f"Condition {node.id!r} must have both true and false branches "
            f"(missing: {', '.join(missing)})",
            node.id,
        )
    for branch in (BRANCH_TRUE, BRANCH_FALSE):
        if branches.count(branch) > 1:
            error(f"Condition {node.id!r} has more than one {branch} branch", node.id)
    unexpected = [b for b in branches if b not in (BRANCH_TRUE, BRANCH_FALSE)]
    if unexpected:
        error(
            f"Condition {node.id!r} has connections without a true/false label: "
            f"{', '.join(repr(b) for b in unexpected)}",
            node.id,
        )

    try:
        config = decode_condition_config(node.config)
    except ConfigDecodeError as e:
        error(f"Condition {node.id!r} has invalid configuration: {e}", node.id)
        return
    for recommendation in config.recommendations():
        warning(f"Condition {node.id!r}: {recommendation}", node.id)


def _check_action(graph: WorkflowGraph, node: ActionNode, error, warning) -> None:
    if len(graph.outgoing(node.id)) > 1:
        error(f"Action {node.id!r} can only have one outgoing connection", node.id)

    try:
        config = decode_action_config(node.action_type, node.config)
    except ConfigDecodeError as e:
        error(f"Action {node.id!r} has invalid configuration: {e}", node.id)
        return
    for recommendation in config.recommendations():
        warning(f"Action {node.id!r}: {recommendation}", node.id)


__all__ = [
    "Issue",
    "Severity",
    "ValidationReport",
    "validate",
    "validate_workflow",
]
