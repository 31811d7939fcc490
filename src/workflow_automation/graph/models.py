"""
Workflow Models - persisted rows and the node tagged union.

Rows mirror the tables written by the workflow editor. Nodes are a
discriminated union on ``kind`` so every consumer switches on one field.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TriggerType(str, Enum):
    """Business events a workflow can be bound to."""
    QUOTE_CREATED = "quote_created"
    QUOTE_APPROVED = "quote_approved"
    QUOTE_SENT = "quote_sent"
    INVOICE_SENT = "invoice_sent"
    SERVICE_ORDER_COMPLETED = "service_order_completed"
    PROJECT_CREATED = "project_created"
    TICKET_CREATED = "ticket_created"
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_STATUS_CHANGED = "ticket_status_changed"
    TICKET_RESOLVED = "ticket_resolved"
    TICKET_REOPENED = "ticket_reopened"
    EMAIL_RECEIVED = "email_received"
    EMAIL_SENT = "email_sent"
    PURCHASE_ORDER_CREATED = "purchase_order_created"
    PURCHASE_ORDER_APPROVED = "purchase_order_approved"
    EXPENSE_SUBMITTED = "expense_submitted"
    EXPENSE_APPROVED = "expense_approved"


class NodeKind(str, Enum):
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"


class ConditionType(str, Enum):
    FIELD_COMPARISON = "field_comparison"
    IS_ASSIGNED_TO_CURRENT_USER = "is_assigned_to_current_user"
    IS_CREATED_BY_CURRENT_USER = "is_created_by_current_user"
    HAS_CUSTOMER = "has_customer"
    HAS_PROJECT = "has_project"


class ComparisonOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"


class ActionType(str, Enum):
    CREATE_PROJECT = "create_project"
    CREATE_SERVICE_ORDER = "create_service_order"
    CREATE_INVOICE = "create_invoice"
    CREATE_TASK = "create_task"
    CREATE_CHECKLIST = "create_checklist"
    CREATE_NOTE = "create_note"
    UPDATE_STATUS = "update_status"
    SEND_EMAIL = "send_email"
    SEND_HELPDESK_EMAIL = "send_helpdesk_email"
    ASSIGN_USER = "assign_user"
    ASSIGN_TICKET = "assign_ticket"
    UPDATE_TICKET_STATUS = "update_ticket_status"
    DELAY = "delay"


# Branch labels on the outgoing edges of a condition node
BRANCH_TRUE = "true"
BRANCH_FALSE = "false"


def _parse_json_object(value: Any) -> Dict[str, Any]:
    """Config columns arrive either decoded or as a JSON string."""
    if value is None:
        return {}
    if isinstance(value, str):
        value = json.loads(value) if value.strip() else {}
    if not isinstance(value, dict):
        raise ValueError("config must be a JSON object")
    return value


# =============================================================================
# Persisted rows
# =============================================================================

class WorkflowRow(BaseModel):
    """Row of the workflows table."""
    model_config = ConfigDict(extra="ignore")

    id: str
    tenant_id: str
    name: str = "Untitled workflow"
    description: str = ""
    trigger_type: str
    is_active: bool = False


class NodeRow(BaseModel):
    """Row of the workflow_nodes table."""
    model_config = ConfigDict(extra="ignore")

    workflow_id: str
    node_id: str
    node_type: str
    action_type: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    position_x: float = 0
    position_y: float = 0

    @field_validator("config", mode="before")
    @classmethod
    def parse_config(cls, v: Any) -> Dict[str, Any]:
        return _parse_json_object(v)


class ConnectionRow(BaseModel):
    """Row of the workflow_connections table."""
    model_config = ConfigDict(extra="ignore")

    workflow_id: str
    source_node_id: str
    target_node_id: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: Optional[str] = None


# =============================================================================
# Graph snapshot values
# =============================================================================

class Position(BaseModel):
    """Canvas position. Presentation only."""
    model_config = ConfigDict(frozen=True)

    x: float = 0
    y: float = 0


class TriggerNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["trigger"] = "trigger"
    id: str
    trigger_type: Optional[str] = None
    position: Position = Field(default_factory=Position)


class ConditionNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["condition"] = "condition"
    id: str
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Position = Field(default_factory=Position)


class ActionNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["action"] = "action"
    id: str
    action_type: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Position = Field(default_factory=Position)

    @property
    def is_delay(self) -> bool:
        return self.action_type == ActionType.DELAY.value


Node = Annotated[
    Union[TriggerNode, ConditionNode, ActionNode],
    Field(discriminator="kind"),
]


class Connection(BaseModel):
    """Directed edge between two nodes of the same workflow."""
    model_config = ConfigDict(frozen=True)

    source_node_id: str
    target_node_id: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: Optional[str] = None

    @property
    def branch(self) -> Optional[str]:
        """Branch selector for condition edges (``true``/``false``)."""
        return self.source_handle or self.label


def node_from_row(row: NodeRow) -> Union[TriggerNode, ConditionNode, ActionNode]:
    """
    Build a graph node from its persisted row.

    Raises:
        ValueError: If the row's node_type is not a known kind
    """
    position = Position(x=row.position_x, y=row.position_y)
    config = dict(row.config)

    if row.node_type == NodeKind.TRIGGER.value:
        trigger_type = config.get("trigger_type") or config.get("triggerType")
        return TriggerNode(id=row.node_id, trigger_type=trigger_type, position=position)
    if row.node_type == NodeKind.CONDITION.value:
        return ConditionNode(id=row.node_id, config=config, position=position)
    if row.node_type == NodeKind.ACTION.value:
        action_type = row.action_type or config.get("action_type") or config.get("actionType")
        return ActionNode(
            id=row.node_id,
            action_type=action_type,
            config=config,
            position=position,
        )
    raise ValueError(f"Unknown node type: {row.node_type!r}")


class WorkflowDefinition(BaseModel):
    """
    A workflow together with its graph rows.

    This is the unit the repository saves and the shape embedded in an
    execution as its graph snapshot.
    """
    model_config = ConfigDict(extra="ignore")

    workflow: WorkflowRow
    nodes: List[NodeRow] = Field(default_factory=list)
    connections: List[ConnectionRow] = Field(default_factory=list)

    @property
    def id(self) -> str:
        return self.workflow.id

    @property
    def tenant_id(self) -> str:
        return self.workflow.tenant_id

    def to_graph(self) -> "WorkflowGraph":
        """Build the immutable graph model. Raises MalformedGraph."""
        from .graph import WorkflowGraph

        return WorkflowGraph.from_rows(self.workflow, self.nodes, self.connections)


__all__ = [
    "ActionNode",
    "ActionType",
    "BRANCH_FALSE",
    "BRANCH_TRUE",
    "ComparisonOperator",
    "ConditionNode",
    "ConditionType",
    "Connection",
    "ConnectionRow",
    "Node",
    "NodeKind",
    "NodeRow",
    "Position",
    "TriggerNode",
    "TriggerType",
    "WorkflowDefinition",
    "WorkflowRow",
    "node_from_row",
]
