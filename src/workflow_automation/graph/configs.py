"""
Typed node configuration records.

The editor stores node configuration as free-form JSON. Each action type
(and the condition node) gets its own record so the rest of the engine
never reads raw keys. Editor spellings (``newStatus``, ``assignedTo``, ...)
are accepted as aliases.
"""

from __future__ import annotations

from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from .models import ActionType, ComparisonOperator, ConditionType


class ConfigDecodeError(ValueError):
    """Persisted node configuration could not be decoded."""

    def __init__(self, messages: List[str]):
        super().__init__("; ".join(messages))
        self.messages = messages


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class NodeConfig(BaseModel):
    """Base for decoded configuration records."""
    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def recommendations(self) -> List[str]:
        """Optional-but-recommended fields that are empty."""
        return []


# =============================================================================
# Conditions
# =============================================================================

class ConditionConfig(NodeConfig):
    condition_type: ConditionType = Field(
        ConditionType.FIELD_COMPARISON,
        validation_alias=_alias("condition_type", "conditionType"),
    )
    field: Optional[str] = Field(None, validation_alias=_alias("field", "fieldName"))
    operator: ComparisonOperator = ComparisonOperator.EQUALS
    value: Any = None
    # Look the field up on a record created earlier in the execution
    document_type: Optional[str] = Field(
        None, validation_alias=_alias("document_type", "documentType")
    )

    @model_validator(mode="after")
    def check_comparison(self) -> "ConditionConfig":
        if self.condition_type == ConditionType.FIELD_COMPARISON and not self.field:
            raise ValueError("field_comparison requires a field")
        return self

    def recommendations(self) -> List[str]:
        if self.condition_type == ConditionType.FIELD_COMPARISON:
            if self.value is None or (isinstance(self.value, str) and not self.value):
                return ["comparison value is empty"]
        return []


# =============================================================================
# Actions
# =============================================================================

class ActionConfig(NodeConfig):
    pass


Priority = Literal["low", "medium", "high"]


class CreateProjectConfig(ActionConfig):
    name: str = Field("", validation_alias=_alias("name", "projectName", "title"))
    description: str = ""
    status: str = "planning"
    start_date: Optional[date] = Field(None, validation_alias=_alias("start_date", "startDate"))
    customer_id: Optional[str] = Field(None, validation_alias=_alias("customer_id", "customerId"))
    copy_line_items: bool = False

    def recommendations(self) -> List[str]:
        return [] if self.name else ["project name is empty"]


class CreateServiceOrderConfig(ActionConfig):
    title: str = Field("", validation_alias=_alias("title", "name"))
    description: str = ""
    status: str = "draft"
    copy_line_items: bool = False

    def recommendations(self) -> List[str]:
        return [] if self.title else ["service order title is empty"]


class CreateInvoiceConfig(ActionConfig):
    name: str = Field("", validation_alias=_alias("name", "title"))
    status: str = "draft"
    due_in_days: int = Field(30, ge=0, validation_alias=_alias("due_in_days", "dueInDays"))
    copy_line_items: bool = False

    def recommendations(self) -> List[str]:
        return [] if self.name else ["invoice name is empty"]


class CreateTaskConfig(ActionConfig):
    title: str = Field("", validation_alias=_alias("title", "name"))
    description: str = ""
    status: str = "pending"
    priority: Priority = "medium"
    due_date: Optional[date] = Field(None, validation_alias=_alias("due_date", "dueDate"))
    assigned_to: Optional[str] = Field(None, validation_alias=_alias("assigned_to", "assignedTo"))

    def recommendations(self) -> List[str]:
        return [] if self.title else ["task title is empty"]


class CreateChecklistConfig(ActionConfig):
    title: str = ""
    description: str = ""
    items: List[str] = Field(default_factory=list)
    priority: Priority = "medium"
    assigned_to: Optional[str] = Field(None, validation_alias=_alias("assigned_to", "assignedTo"))

    def recommendations(self) -> List[str]:
        issues = []
        if not self.title:
            issues.append("checklist title is empty")
        if not [item for item in self.items if item.strip()]:
            issues.append("checklist has no items")
        return issues


class CreateNoteConfig(ActionConfig):
    content: str = Field("", validation_alias=_alias("content", "body"))

    def recommendations(self) -> List[str]:
        return [] if self.content else ["note content is empty"]


class UpdateStatusConfig(ActionConfig):
    status: str = Field(
        ..., min_length=1, validation_alias=_alias("status", "newStatus", "new_status")
    )
    document_type: Optional[str] = Field(
        None, validation_alias=_alias("document_type", "documentType")
    )
    document_id: Optional[str] = Field(None, validation_alias=_alias("document_id", "documentId"))
    notes: str = ""


class SendEmailConfig(ActionConfig):
    to: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    message: str = ""

    def recommendations(self) -> List[str]:
        return [] if self.message else ["email message is empty"]


class SendHelpdeskEmailConfig(ActionConfig):
    subject: str = Field(..., min_length=1)
    body: str = Field("", validation_alias=_alias("body", "content"))
    to_email: Optional[str] = Field(None, validation_alias=_alias("to_email", "toEmail", "to"))

    def recommendations(self) -> List[str]:
        return [] if self.body else ["email body is empty"]


class AssignmentType(str, Enum):
    CURRENT_USER = "current_user"
    SPECIFIC_USER = "specific_user"
    ROUND_ROBIN = "round_robin"


class AssignmentConfig(ActionConfig):
    assignment_type: AssignmentType = Field(
        AssignmentType.CURRENT_USER,
        validation_alias=_alias("assignment_type", "assignmentType"),
    )
    user_id: Optional[str] = Field(
        None, validation_alias=_alias("user_id", "userId", "assigned_to", "assignedTo")
    )
    # Candidate users for round robin; empty means the whole tenant
    pool: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_user(self) -> "AssignmentConfig":
        if self.assignment_type == AssignmentType.SPECIFIC_USER and not self.user_id:
            raise ValueError("specific_user assignment requires a user")
        return self


class AssignUserConfig(AssignmentConfig):
    document_type: Optional[str] = Field(
        None, validation_alias=_alias("document_type", "documentType")
    )
    document_id: Optional[str] = Field(None, validation_alias=_alias("document_id", "documentId"))


class AssignTicketConfig(AssignmentConfig):
    pass


TicketStatus = Literal["open", "in_progress", "waiting_customer", "resolved", "closed"]


class UpdateTicketStatusConfig(ActionConfig):
    new_status: TicketStatus = Field(
        ..., validation_alias=_alias("new_status", "newStatus", "status")
    )


class DelayUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


# Longest delay a workflow may wait before resuming
MAX_DELAY = timedelta(days=3650)


class DelayConfig(ActionConfig):
    duration: int = Field(..., gt=0)
    unit: DelayUnit = DelayUnit.MINUTES

    @model_validator(mode="after")
    def check_length(self) -> "DelayConfig":
        try:
            too_long = self.delta > MAX_DELAY
        except OverflowError:
            too_long = True
        if too_long:
            raise ValueError(f"Delay must not exceed {MAX_DELAY.days} days")
        return self

    @property
    def delta(self) -> timedelta:
        return timedelta(**{self.unit.value: self.duration})


ACTION_CONFIG_MODELS: Dict[ActionType, Type[ActionConfig]] = {
    ActionType.CREATE_PROJECT: CreateProjectConfig,
    ActionType.CREATE_SERVICE_ORDER: CreateServiceOrderConfig,
    ActionType.CREATE_INVOICE: CreateInvoiceConfig,
    ActionType.CREATE_TASK: CreateTaskConfig,
    ActionType.CREATE_CHECKLIST: CreateChecklistConfig,
    ActionType.CREATE_NOTE: CreateNoteConfig,
    ActionType.UPDATE_STATUS: UpdateStatusConfig,
    ActionType.SEND_EMAIL: SendEmailConfig,
    ActionType.SEND_HELPDESK_EMAIL: SendHelpdeskEmailConfig,
    ActionType.ASSIGN_USER: AssignUserConfig,
    ActionType.ASSIGN_TICKET: AssignTicketConfig,
    ActionType.UPDATE_TICKET_STATUS: UpdateTicketStatusConfig,
    ActionType.DELAY: DelayConfig,
}

_unmapped = set(ActionType) - set(ACTION_CONFIG_MODELS)
if _unmapped:
    raise RuntimeError(f"Action types without a config record: {sorted(a.value for a in _unmapped)}")


def _format_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        message = item["msg"]
        messages.append(f"{location}: {message}" if location else message)
    return messages


def parse_action_type(action_type: Optional[str]) -> ActionType:
    """Raises ConfigDecodeError for missing or unknown action types."""
    if not action_type:
        raise ConfigDecodeError(["action type is missing"])
    try:
        return ActionType(action_type)
    except ValueError:
        raise ConfigDecodeError([f"unknown action type {action_type!r}"]) from None


def decode_action_config(action_type: Optional[str], config: Dict[str, Any]) -> ActionConfig:
    """
    Decode raw action configuration into its typed record.

    Raises:
        ConfigDecodeError: Unknown action type or invalid fields
    """
    model = ACTION_CONFIG_MODELS[parse_action_type(action_type)]
    try:
        return model.model_validate(config)
    except ValidationError as e:
        raise ConfigDecodeError(_format_errors(e)) from e


def decode_condition_config(config: Dict[str, Any]) -> ConditionConfig:
    """
    Decode raw condition configuration.

    Raises:
        ConfigDecodeError: Unknown condition type / operator or missing field
    """
    try:
        return ConditionConfig.model_validate(config)
    except ValidationError as e:
        raise ConfigDecodeError(_format_errors(e)) from e


__all__ = [
    "ACTION_CONFIG_MODELS",
    "ActionConfig",
    "AssignTicketConfig",
    "AssignUserConfig",
    "AssignmentConfig",
    "AssignmentType",
    "ConditionConfig",
    "ConfigDecodeError",
    "CreateChecklistConfig",
    "CreateInvoiceConfig",
    "CreateNoteConfig",
    "CreateProjectConfig",
    "CreateServiceOrderConfig",
    "CreateTaskConfig",
    "DelayConfig",
    "DelayUnit",
    "MAX_DELAY",
    "SendEmailConfig",
    "SendHelpdeskEmailConfig",
    "UpdateStatusConfig",
    "UpdateTicketStatusConfig",
    "decode_action_config",
    "decode_condition_config",
    "parse_action_type",
]
