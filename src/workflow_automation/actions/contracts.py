"""Action runtime contracts and data models."""
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from workflow_automation.events import EventContext


class FailureCategory(str, Enum):
    """Machine-readable failure class, drives the engine's retry policy."""

    VALIDATION = "validation"  # Config cannot be decoded, never retried
    TRANSIENT = "transient"  # Network / timeout class, retried with backoff
    PERMANENT = "permanent"  # Rejected by the target system, never retried


class ActionError(Exception):
    """Base exception for action handler failures."""

    category = FailureCategory.PERMANENT


class ActionTransientFailure(ActionError):
    """Raised when the target system is temporarily unavailable."""

    category = FailureCategory.TRANSIENT


class ActionPermanentFailure(ActionError):
    """Raised when the target system rejects the effect."""

    category = FailureCategory.PERMANENT


class ActionContext(EventContext):
    """Event context plus the identity of the step being executed."""

    execution_id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="Workflow ID")
    node_id: str = Field(..., description="Action node ID")
    step_id: str = Field(..., description="Idempotency token for external effects")
    now: datetime = Field(..., description="Engine clock at dispatch time")


class CreatedRecord(BaseModel):
    """Record created by an action, visible to later actions."""

    kind: str
    id: str
    fields: dict[str, Any] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """Outcome of one handler invocation."""

    success: bool
    output: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    category: FailureCategory | None = None
    created: CreatedRecord | None = None
    # Set by the delay handler only
    suspend_until: datetime | None = None

    @classmethod
    def ok(
        cls,
        output: dict[str, Any] | None = None,
        created: CreatedRecord | None = None,
        suspend_until: datetime | None = None,
    ) -> "ActionResult":
        return cls(
            success=True,
            output=output or {},
            created=created,
            suspend_until=suspend_until,
        )

    @classmethod
    def failed(cls, error: str, category: FailureCategory) -> "ActionResult":
        return cls(success=False, error=error, category=category)

    @property
    def is_retryable(self) -> bool:
        return not self.success and self.category == FailureCategory.TRANSIENT
