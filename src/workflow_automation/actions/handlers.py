"""
Action handlers, one per action type.

Each handler performs exactly one effect against a collaborator, keyed by
the step id so a retried or redelivered step never duplicates it. The
delay handler performs no effect: it tells the engine when to resume.
"""
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Generic, TypeVar

from workflow_automation.actions.collaborators import Mailer, RecordStore, UserDirectory
from workflow_automation.actions.contracts import (
    ActionContext,
    ActionPermanentFailure,
    ActionResult,
    CreatedRecord,
)
from workflow_automation.graph import ActionType
from workflow_automation.graph.configs import (
    ActionConfig,
    AssignmentConfig,
    AssignmentType,
    AssignTicketConfig,
    AssignUserConfig,
    CreateChecklistConfig,
    CreateInvoiceConfig,
    CreateNoteConfig,
    CreateProjectConfig,
    CreateServiceOrderConfig,
    CreateTaskConfig,
    DelayConfig,
    SendEmailConfig,
    SendHelpdeskEmailConfig,
    UpdateStatusConfig,
    UpdateTicketStatusConfig,
)

ConfigT = TypeVar("ConfigT", bound=ActionConfig)

TICKET_KEYS = ("ticket_id", "ticketId")


class ActionHandler(ABC, Generic[ConfigT]):
    """Base class for action handlers."""

    action_type: ActionType

    @abstractmethod
    def handle(self, config: ConfigT, context: ActionContext) -> ActionResult:
        """
        Perform the action.

        Args:
            config: Decoded node configuration
            context: Execution context of the step

        Returns:
            ActionResult describing the effect

        Raises:
            ActionTransientFailure: Target temporarily unavailable
            ActionPermanentFailure: Effect rejected or impossible
        """
        pass

    def __call__(self, config: ConfigT, context: ActionContext) -> ActionResult:
        return self.handle(config, context)


def _source_type(context: ActionContext) -> str:
    value = context.lookup("source_type", "sourceType")
    return value if isinstance(value, str) and value else "workflow"


def _source_label(context: ActionContext) -> str:
    value = context.lookup("source_type", "sourceType")
    if isinstance(value, str) and value:
        return value.replace("_", " ")
    return "workflow"


def _optional(context: ActionContext, *keys: str) -> Any:
    value = context.lookup(*keys)
    return None if not isinstance(value, (str, int, float)) else value


def _ticket_id(context: ActionContext) -> str:
    ticket_id = context.record_id("helpdesk_ticket", *TICKET_KEYS)
    if not ticket_id:
        raise ActionPermanentFailure("No ticket on the triggering document")
    return ticket_id


class _CreateRecordHandler(ActionHandler[ConfigT]):
    """Creates one record of ``kind`` from config and the triggering document."""

    kind: str

    def __init__(self, records: RecordStore):
        self._records = records

    @abstractmethod
    def build_fields(self, config: ConfigT, context: ActionContext) -> dict[str, Any]:
        pass

    def _base_fields(self, context: ActionContext) -> dict[str, Any]:
        return {
            "tenant_id": context.tenant_id,
            "created_by": context.actor_user_id,
            "workflow_execution_id": context.execution_id,
        }

    def handle(self, config: ConfigT, context: ActionContext) -> ActionResult:
        fields = {**self._base_fields(context), **self.build_fields(config, context)}
        record_id = self._records.create(self.kind, fields, idempotency_key=context.step_id)
        return ActionResult.ok(
            output={"record_kind": self.kind, "record_id": record_id},
            created=CreatedRecord(kind=self.kind, id=record_id, fields=fields),
        )


class CreateProjectHandler(_CreateRecordHandler[CreateProjectConfig]):
    action_type = ActionType.CREATE_PROJECT
    kind = "project"

    def build_fields(self, config: CreateProjectConfig, context: ActionContext) -> dict[str, Any]:
        return {
            "name": config.name or f"Project from {_source_label(context)}",
            "description": config.description,
            "status": config.status,
            "start_date": (config.start_date or context.now.date()).isoformat(),
            "customer_id": _optional(context, "customer_id", "customerId") or config.customer_id,
            "source_quote_id": _optional(context, "quote_id", "quoteId"),
            "copy_line_items": config.copy_line_items,
        }


class CreateServiceOrderHandler(_CreateRecordHandler[CreateServiceOrderConfig]):
    action_type = ActionType.CREATE_SERVICE_ORDER
    kind = "service_order"

    def build_fields(self, config: CreateServiceOrderConfig, context: ActionContext) -> dict[str, Any]:
        return {
            "title": config.title or f"Service Order from {_source_label(context)}",
            "description": config.description,
            "status": config.status,
            "customer_id": _optional(context, "customer_id", "customerId"),
            "project_id": context.record_id("project", "project_id", "projectId"),
            "copy_line_items": config.copy_line_items,
        }


class CreateInvoiceHandler(_CreateRecordHandler[CreateInvoiceConfig]):
    action_type = ActionType.CREATE_INVOICE
    kind = "invoice"

    def build_fields(self, config: CreateInvoiceConfig, context: ActionContext) -> dict[str, Any]:
        issue_date = context.now.date()
        return {
            "name": config.name or f"Invoice from {_source_label(context)}",
            "status": config.status,
            "customer_id": _optional(context, "customer_id", "customerId"),
            "project_id": context.record_id("project", "project_id", "projectId"),
            "service_order_id": context.record_id(
                "service_order", "service_order_id", "serviceOrderId"
            ),
            "issue_date": issue_date.isoformat(),
            "due_date": (issue_date + timedelta(days=config.due_in_days)).isoformat(),
            "copy_line_items": config.copy_line_items,
        }


class CreateTaskHandler(_CreateRecordHandler[CreateTaskConfig]):
    action_type = ActionType.CREATE_TASK
    kind = "task"

    def build_fields(self, config: CreateTaskConfig, context: ActionContext) -> dict[str, Any]:
        return {
            "title": config.title or f"Task from {_source_label(context)}",
            "description": config.description,
            "status": config.status,
            "priority": config.priority,
            "due_date": config.due_date.isoformat() if config.due_date else None,
            "assigned_to": config.assigned_to or context.actor_user_id,
            "project_id": context.record_id("project", "project_id", "projectId"),
            "service_order_id": context.record_id(
                "service_order", "service_order_id", "serviceOrderId"
            ),
        }


class CreateChecklistHandler(_CreateRecordHandler[CreateChecklistConfig]):
    """A task carrying checklist items, linked to the ticket when there is one."""

    action_type = ActionType.CREATE_CHECKLIST
    kind = "task"

    def build_fields(self, config: CreateChecklistConfig, context: ActionContext) -> dict[str, Any]:
        ticket_id = _optional(context, *TICKET_KEYS)
        return {
            "title": config.title or f"Checklist from {_source_label(context)}",
            "description": config.description,
            "status": "pending",
            "priority": config.priority,
            "assigned_to": config.assigned_to or context.actor_user_id,
            "linked_module": "helpdesk" if ticket_id else _source_type(context),
            "linked_record_id": ticket_id or _optional(context, "source_id", "sourceId", "id"),
        }

    def handle(self, config: CreateChecklistConfig, context: ActionContext) -> ActionResult:
        result = super().handle(config, context)
        task_id = result.created.id

        items = [item for item in config.items if item]
        for index, item in enumerate(items):
            self._records.create(
                "task_checklist_item",
                {"task_id": task_id, "title": item, "is_completed": False, "item_order": index},
                idempotency_key=f"{context.step_id}:item:{index}",
            )

        ticket_id = _optional(context, *TICKET_KEYS)
        if ticket_id and items:
            self._records.create(
                "helpdesk_message",
                {
                    "tenant_id": context.tenant_id,
                    "ticket_id": ticket_id,
                    "message_type": "checklist",
                    "body": "Checklist",
                    "task_id": task_id,
                    "created_by": context.actor_user_id,
                },
                idempotency_key=f"{context.step_id}:timeline",
            )

        result.output["item_count"] = len(items)
        return result


class CreateNoteHandler(_CreateRecordHandler[CreateNoteConfig]):
    """Internal note on the triggering helpdesk ticket."""

    action_type = ActionType.CREATE_NOTE
    kind = "helpdesk_message"

    def build_fields(self, config: CreateNoteConfig, context: ActionContext) -> dict[str, Any]:
        return {
            "ticket_id": _ticket_id(context),
            "message_type": "internal_note",
            "body": config.content or "Automated note from workflow",
        }


def _resolve_assignee(
    config: AssignmentConfig,
    context: ActionContext,
    directory: UserDirectory,
) -> str:
    if config.assignment_type == AssignmentType.SPECIFIC_USER:
        assignee = config.user_id
    elif config.assignment_type == AssignmentType.ROUND_ROBIN:
        assignee = directory.next_round_robin_user(
            context.tenant_id, list(config.pool), idempotency_key=context.step_id
        )
    else:
        assignee = context.actor_user_id
    if not assignee:
        raise ActionPermanentFailure(
            f"No user available for {config.assignment_type.value} assignment"
        )
    return assignee


def _target_document(
    document_type: str | None,
    document_id: str | None,
    context: ActionContext,
) -> tuple[str, str]:
    """Kind and id of the record an update applies to."""
    kind = document_type or _source_type(context)
    if document_id:
        return kind, document_id
    record_id = context.record_id(kind, f"{kind}_id")
    if not record_id and kind == _source_type(context):
        value = _optional(context, "source_id", "sourceId", "id")
        record_id = str(value) if value is not None else None
    if not record_id:
        raise ActionPermanentFailure(f"No {kind} record to update")
    return kind, record_id


class UpdateStatusHandler(ActionHandler[UpdateStatusConfig]):
    action_type = ActionType.UPDATE_STATUS

    def __init__(self, records: RecordStore):
        self._records = records

    def handle(self, config: UpdateStatusConfig, context: ActionContext) -> ActionResult:
        kind, record_id = _target_document(config.document_type, config.document_id, context)
        fields: dict[str, Any] = {"status": config.status}
        if config.notes:
            fields["status_notes"] = config.notes
        self._records.update(kind, record_id, fields)
        return ActionResult.ok(
            output={"record_kind": kind, "record_id": record_id, "status": config.status}
        )


class SendEmailHandler(ActionHandler[SendEmailConfig]):
    action_type = ActionType.SEND_EMAIL

    def __init__(self, mailer: Mailer):
        self._mailer = mailer

    def handle(self, config: SendEmailConfig, context: ActionContext) -> ActionResult:
        message_id = self._mailer.send(
            to=config.to,
            subject=config.subject,
            body=config.message,
            idempotency_key=context.step_id,
            metadata={"tenant_id": context.tenant_id, "execution_id": context.execution_id},
        )
        return ActionResult.ok(output={"message_id": message_id, "to": config.to})


class SendHelpdeskEmailHandler(ActionHandler[SendHelpdeskEmailConfig]):
    """Reply on the ticket's thread to the ticket contact."""

    action_type = ActionType.SEND_HELPDESK_EMAIL

    def __init__(self, mailer: Mailer):
        self._mailer = mailer

    def handle(self, config: SendHelpdeskEmailConfig, context: ActionContext) -> ActionResult:
        ticket_id = _ticket_id(context)
        recipient = config.to_email or _optional(
            context, "contact_email", "contactEmail", "from_email", "fromEmail"
        )
        if not recipient:
            raise ActionPermanentFailure("No recipient for helpdesk email")
        message_id = self._mailer.send(
            to=str(recipient),
            subject=config.subject,
            body=config.body,
            idempotency_key=context.step_id,
            metadata={
                "tenant_id": context.tenant_id,
                "execution_id": context.execution_id,
                "ticket_id": ticket_id,
            },
        )
        return ActionResult.ok(
            output={"message_id": message_id, "to": recipient, "ticket_id": ticket_id}
        )


class AssignUserHandler(ActionHandler[AssignUserConfig]):
    action_type = ActionType.ASSIGN_USER

    def __init__(self, records: RecordStore, directory: UserDirectory):
        self._records = records
        self._directory = directory

    def handle(self, config: AssignUserConfig, context: ActionContext) -> ActionResult:
        kind, record_id = _target_document(config.document_type, config.document_id, context)
        assignee = _resolve_assignee(config, context, self._directory)
        self._records.update(kind, record_id, {"assigned_to": assignee})
        return ActionResult.ok(
            output={"record_kind": kind, "record_id": record_id, "assigned_to": assignee}
        )


class AssignTicketHandler(ActionHandler[AssignTicketConfig]):
    action_type = ActionType.ASSIGN_TICKET

    def __init__(self, records: RecordStore, directory: UserDirectory):
        self._records = records
        self._directory = directory

    def handle(self, config: AssignTicketConfig, context: ActionContext) -> ActionResult:
        ticket_id = _ticket_id(context)
        assignee = _resolve_assignee(config, context, self._directory)
        self._records.update(
            "helpdesk_ticket",
            ticket_id,
            {"assigned_to": assignee, "updated_at": context.now.isoformat()},
        )
        return ActionResult.ok(output={"ticket_id": ticket_id, "assigned_to": assignee})


class UpdateTicketStatusHandler(ActionHandler[UpdateTicketStatusConfig]):
    action_type = ActionType.UPDATE_TICKET_STATUS

    def __init__(self, records: RecordStore):
        self._records = records

    def handle(self, config: UpdateTicketStatusConfig, context: ActionContext) -> ActionResult:
        ticket_id = _ticket_id(context)
        self._records.update(
            "helpdesk_ticket",
            ticket_id,
            {"status": config.new_status, "updated_at": context.now.isoformat()},
        )
        return ActionResult.ok(output={"ticket_id": ticket_id, "status": config.new_status})


class DelayHandler(ActionHandler[DelayConfig]):
    """Suspends the execution; the resumption sweep picks it up later."""

    action_type = ActionType.DELAY

    def handle(self, config: DelayConfig, context: ActionContext) -> ActionResult:
        resume_at = context.now + config.delta
        return ActionResult.ok(
            output={"resume_at": resume_at.isoformat()},
            suspend_until=resume_at,
        )
