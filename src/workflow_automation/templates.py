"""
Built-in workflow templates.

A template is a ready-made graph an author copies into their tenant and
then customises. Instantiated workflows start inactive.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from workflow_automation.graph import (
    ActionType,
    BRANCH_FALSE,
    BRANCH_TRUE,
    ConnectionRow,
    NodeKind,
    NodeRow,
    TriggerType,
    WorkflowDefinition,
    WorkflowRow,
)


class TemplateNotFound(LookupError):
    """Raised for an unknown template key."""

    pass


class TemplateNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: NodeKind
    action_type: Optional[ActionType] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Tuple[float, float] = (0, 0)


class TemplateConnection(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    source_handle: Optional[str] = None


class WorkflowTemplate(BaseModel):
    """Read-only system template."""
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    description: str
    category: str
    trigger_type: TriggerType
    nodes: List[TemplateNode]
    connections: List[TemplateConnection]


def _trigger(trigger_type: TriggerType) -> TemplateNode:
    return TemplateNode(
        id="trigger",
        type=NodeKind.TRIGGER,
        config={"trigger_type": trigger_type.value},
        position=(250, 50),
    )


def _action(
    node_id: str,
    action_type: ActionType,
    position: Tuple[float, float],
    **config: Any,
) -> TemplateNode:
    return TemplateNode(
        id=node_id,
        type=NodeKind.ACTION,
        action_type=action_type,
        config=config,
        position=position,
    )


QUOTE_TO_PROJECT = WorkflowTemplate(
    key="quote_approved_to_project",
    name="Quote approved → project",
    description="Turn an approved quote into a project with a service order and a kick-off task.",
    category="sales",
    trigger_type=TriggerType.QUOTE_APPROVED,
    nodes=[
        _trigger(TriggerType.QUOTE_APPROVED),
        _action(
            "create_project", ActionType.CREATE_PROJECT, (250, 200),
            name="Project for approved quote", copy_line_items=True,
        ),
        _action(
            "create_service_order", ActionType.CREATE_SERVICE_ORDER, (250, 350),
            title="Service order for approved quote", copy_line_items=True,
        ),
        _action(
            "kickoff_task", ActionType.CREATE_TASK, (250, 500),
            title="Schedule kick-off meeting", priority="high",
        ),
    ],
    connections=[
        TemplateConnection(source="trigger", target="create_project"),
        TemplateConnection(source="create_project", target="create_service_order"),
        TemplateConnection(source="create_service_order", target="kickoff_task"),
    ],
)

TICKET_TRIAGE = WorkflowTemplate(
    key="ticket_triage",
    name="Ticket triage",
    description="Route new tickets round robin and acknowledge urgent ones straight away.",
    category="helpdesk",
    trigger_type=TriggerType.TICKET_CREATED,
    nodes=[
        _trigger(TriggerType.TICKET_CREATED),
        TemplateNode(
            id="is_urgent",
            type=NodeKind.CONDITION,
            config={
                "condition_type": "field_comparison",
                "field": "priority",
                "operator": "equals",
                "value": "urgent",
            },
            position=(250, 200),
        ),
        _action(
            "assign_urgent", ActionType.ASSIGN_TICKET, (100, 350),
            assignment_type="round_robin",
        ),
        _action(
            "acknowledge", ActionType.SEND_HELPDESK_EMAIL, (100, 500),
            subject="We are on it",
            body="Your ticket has been flagged as urgent and assigned to an agent.",
        ),
        _action(
            "assign_regular", ActionType.ASSIGN_TICKET, (400, 350),
            assignment_type="round_robin",
        ),
    ],
    connections=[
        TemplateConnection(source="trigger", target="is_urgent"),
        TemplateConnection(source="is_urgent", target="assign_urgent", source_handle=BRANCH_TRUE),
        TemplateConnection(source="is_urgent", target="assign_regular", source_handle=BRANCH_FALSE),
        TemplateConnection(source="assign_urgent", target="acknowledge"),
    ],
)

INVOICE_FOLLOW_UP = WorkflowTemplate(
    key="invoice_follow_up",
    name="Invoice follow-up",
    description="A week after an invoice is sent, open a follow-up task if it is still unpaid.",
    category="billing",
    trigger_type=TriggerType.INVOICE_SENT,
    nodes=[
        _trigger(TriggerType.INVOICE_SENT),
        _action("wait", ActionType.DELAY, (250, 200), duration=7, unit="days"),
        TemplateNode(
            id="is_unpaid",
            type=NodeKind.CONDITION,
            config={
                "condition_type": "field_comparison",
                "field": "status",
                "operator": "not_equals",
                "value": "paid",
            },
            position=(250, 350),
        ),
        _action(
            "follow_up_task", ActionType.CREATE_TASK, (100, 500),
            title="Follow up on unpaid invoice", priority="high",
        ),
        _action(
            "paid_note", ActionType.CREATE_NOTE, (400, 500),
            content="Invoice was paid before the follow-up date.",
        ),
    ],
    connections=[
        TemplateConnection(source="trigger", target="wait"),
        TemplateConnection(source="wait", target="is_unpaid"),
        TemplateConnection(source="is_unpaid", target="follow_up_task", source_handle=BRANCH_TRUE),
        TemplateConnection(source="is_unpaid", target="paid_note", source_handle=BRANCH_FALSE),
    ],
)

BUILTIN_TEMPLATES: Dict[str, WorkflowTemplate] = {
    t.key: t for t in (QUOTE_TO_PROJECT, TICKET_TRIAGE, INVOICE_FOLLOW_UP)
}


def list_templates(category: Optional[str] = None) -> List[WorkflowTemplate]:
    return [t for t in BUILTIN_TEMPLATES.values() if category is None or t.category == category]


def get_template(key: str) -> WorkflowTemplate:
    try:
        return BUILTIN_TEMPLATES[key]
    except KeyError:
        raise TemplateNotFound(f"Unknown workflow template: {key}") from None


def instantiate_template(
    key: str,
    tenant_id: str,
    workflow_id: Optional[str] = None,
    name: Optional[str] = None,
) -> WorkflowDefinition:
    """
    Copy a template into a tenant as an inactive workflow definition.

    Args:
        key: Template key
        tenant_id: Owning tenant
        workflow_id: Id of the new workflow (generated when omitted)
        name: Workflow name (template name when omitted)

    Raises:
        TemplateNotFound: If the key is unknown
    """
    template = get_template(key)
    workflow_id = workflow_id or str(uuid.uuid4())

    workflow = WorkflowRow(
        id=workflow_id,
        tenant_id=tenant_id,
        name=name or template.name,
        description=template.description,
        trigger_type=template.trigger_type.value,
        is_active=False,
    )
    nodes = [
        NodeRow(
            workflow_id=workflow_id,
            node_id=node.id,
            node_type=node.type.value,
            action_type=node.action_type.value if node.action_type else None,
            config=dict(node.config),
            position_x=node.position[0],
            position_y=node.position[1],
        )
        for node in template.nodes
    ]
    connections = [
        ConnectionRow(
            workflow_id=workflow_id,
            source_node_id=conn.source,
            target_node_id=conn.target,
            source_handle=conn.source_handle,
        )
        for conn in template.connections
    ]
    return WorkflowDefinition(workflow=workflow, nodes=nodes, connections=connections)


__all__ = [
    "BUILTIN_TEMPLATES",
    "TemplateNotFound",
    "WorkflowTemplate",
    "get_template",
    "instantiate_template",
    "list_templates",
]
