"""Trigger event intake routes."""
from fastapi import APIRouter
from pydantic import BaseModel, Field

from workflow_automation.events import TriggerEvent
from workflow_automation.integrations.tasks import process_event
from workflow_automation.observability import get_logger

logger = get_logger(__name__)
router = APIRouter()


class EventAcceptedResponse(BaseModel):
    """Response model for an accepted event."""

    status: str = Field(default="accepted", description="Intake status")
    task_id: str = Field(..., description="Celery task matching the event")


@router.post("/v1/events", status_code=202, response_model=EventAcceptedResponse)
def submit_event(event: TriggerEvent) -> EventAcceptedResponse:
    """
    Hand a business event to the engine.

    Matching and execution happen asynchronously in the worker.
    """
    result = process_event.delay(event.model_dump(mode="json"))

    logger.info(
        "Event accepted via API",
        extra={
            "trigger_type": event.trigger_type,
            "tenant_id": event.tenant_id,
            "task_id": result.id,
        },
    )
    return EventAcceptedResponse(task_id=result.id)
