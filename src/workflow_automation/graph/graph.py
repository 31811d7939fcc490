"""
Workflow Graph - immutable, structurally sound snapshot of a workflow.

Nodes and edges are addressed by their stable string ids. The graph checks
structural integrity only; business rules belong to the validator.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .models import (
    ActionNode,
    ConditionNode,
    Connection,
    ConnectionRow,
    NodeRow,
    TriggerNode,
    WorkflowRow,
    node_from_row,
)


logger = logging.getLogger(__name__)

GraphNode = Union[TriggerNode, ConditionNode, ActionNode]


class MalformedGraph(Exception):
    """Structural defect in persisted workflow rows."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class WorkflowGraph:
    """
    Immutable graph of a single workflow.

    Contains:
    - Nodes keyed by id, in persisted order
    - Connections in persisted order
    - Adjacency maps for outgoing/incoming queries
    """

    def __init__(
        self,
        workflow: WorkflowRow,
        nodes: Iterable[GraphNode],
        connections: Iterable[Connection],
    ):
        self.workflow = workflow
        self._nodes: Dict[str, GraphNode] = {}
        self._outgoing: Dict[str, List[Connection]] = {}
        self._incoming: Dict[str, List[Connection]] = {}

        for node in nodes:
            if node.id in self._nodes:
                raise MalformedGraph(f"Duplicate node id: {node.id}", node_id=node.id)
            self._nodes[node.id] = node
            self._outgoing[node.id] = []
            self._incoming[node.id] = []

        edges = []
        for conn in connections:
            for endpoint in (conn.source_node_id, conn.target_node_id):
                if endpoint not in self._nodes:
                    raise MalformedGraph(
                        f"Connection {conn.source_node_id} -> {conn.target_node_id} "
                        f"references unknown node {endpoint}",
                        node_id=endpoint,
                    )
            self._outgoing[conn.source_node_id].append(conn)
            self._incoming[conn.target_node_id].append(conn)
            edges.append(conn)
        self._connections: Tuple[Connection, ...] = tuple(edges)

    @classmethod
    def from_rows(
        cls,
        workflow: WorkflowRow,
        nodes: Iterable[NodeRow],
        connections: Iterable[ConnectionRow],
    ) -> "WorkflowGraph":
        """
        Build a graph from persisted rows.

        Raises:
            MalformedGraph: On duplicate node ids, dangling edges, rows of
                another workflow or unknown node types
        """
        graph_nodes: List[GraphNode] = []
        for row in nodes:
            if row.workflow_id != workflow.id:
                raise MalformedGraph(
                    f"Node {row.node_id} belongs to workflow {row.workflow_id}",
                    node_id=row.node_id,
                )
            try:
                graph_nodes.append(node_from_row(row))
            except ValueError as e:
                raise MalformedGraph(str(e), node_id=row.node_id) from e

        edges: List[Connection] = []
        for row in connections:
            if row.workflow_id != workflow.id:
                raise MalformedGraph(
                    f"Connection {row.source_node_id} -> {row.target_node_id} "
                    f"belongs to workflow {row.workflow_id}"
                )
            edges.append(
                Connection(
                    source_node_id=row.source_node_id,
                    target_node_id=row.target_node_id,
                    source_handle=row.source_handle,
                    target_handle=row.target_handle,
                    label=row.label,
                )
            )

        graph = cls(workflow, graph_nodes, edges)
        logger.debug(
            "Graph built for workflow %s: %d nodes, %d connections",
            workflow.id, len(graph_nodes), len(edges),
        )
        return graph

    @property
    def workflow_id(self) -> str:
        return self.workflow.id

    @property
    def nodes(self) -> List[GraphNode]:
        return list(self._nodes.values())

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def node(self, node_id: str) -> GraphNode:
        """Get node by id. Raises MalformedGraph for unknown ids."""
        try:
            return self._nodes[node_id]
        except KeyError:
            raise MalformedGraph(f"Unknown node: {node_id}", node_id=node_id) from None

    def outgoing(self, node_id: str) -> List[Connection]:
        """Outgoing connections of a node, in persisted order."""
        self.node(node_id)
        return list(self._outgoing[node_id])

    def incoming(self, node_id: str) -> List[Connection]:
        self.node(node_id)
        return list(self._incoming[node_id])

    def trigger_nodes(self) -> List[TriggerNode]:
        return [n for n in self._nodes.values() if isinstance(n, TriggerNode)]

    def reachable_from(self, node_id: str) -> List[str]:
        """Ids reachable from ``node_id`` (excluding itself), breadth first."""
        seen = {node_id}
        order: List[str] = []
        queue = [node_id]
        while queue:
            current = queue.pop(0)
            for conn in self._outgoing[current]:
                if conn.target_node_id not in seen:
                    seen.add(conn.target_node_id)
                    order.append(conn.target_node_id)
                    queue.append(conn.target_node_id)
        return order


__all__ = [
    "GraphNode",
    "MalformedGraph",
    "WorkflowGraph",
]
