"""
Graph model - workflow rows, the node tagged union and the immutable graph.

This package provides:
- Row models matching the persisted workflow tables
- WorkflowGraph: structurally checked snapshot with adjacency queries
- Typed configuration records decoded from node JSON
"""

from .configs import (
    ActionConfig,
    ConditionConfig,
    ConfigDecodeError,
    decode_action_config,
    decode_condition_config,
)
from .graph import GraphNode, MalformedGraph, WorkflowGraph
from .models import (
    ActionNode,
    ActionType,
    BRANCH_FALSE,
    BRANCH_TRUE,
    ComparisonOperator,
    ConditionNode,
    ConditionType,
    Connection,
    ConnectionRow,
    NodeKind,
    NodeRow,
    TriggerNode,
    TriggerType,
    WorkflowDefinition,
    WorkflowRow,
)

__all__ = [
    # Models
    "ActionNode",
    "ActionType",
    "BRANCH_FALSE",
    "BRANCH_TRUE",
    "ComparisonOperator",
    "ConditionNode",
    "ConditionType",
    "Connection",
    "ConnectionRow",
    "NodeKind",
    "NodeRow",
    "TriggerNode",
    "TriggerType",
    "WorkflowDefinition",
    "WorkflowRow",
    # Graph
    "GraphNode",
    "MalformedGraph",
    "WorkflowGraph",
    # Configs
    "ActionConfig",
    "ConditionConfig",
    "ConfigDecodeError",
    "decode_action_config",
    "decode_condition_config",
]
