"""Celery tasks for workflow executions."""
from typing import Any

from workflow_automation.engine import get_engine
from workflow_automation.events import TriggerEvent
from workflow_automation.integrations.celery_app import celery_app
from workflow_automation.observability import get_logger, setup_logging
from workflow_automation.storage import ExecutionNotFound

# Setup logging
setup_logging()
logger = get_logger(__name__)


@celery_app.task(name="process_event", bind=True)
def process_event(self, event: dict[str, Any]) -> dict:
    """
    Match an event to active workflows and fan out one task per execution.

    Args:
        event: Serialized TriggerEvent

    Returns:
        Result dict with the created execution ids
    """
    trigger_event = TriggerEvent.model_validate(event)
    executions = get_engine().start(trigger_event)

    for execution in executions:
        run_execution.delay(execution.id)

    logger.info(
        "Event processed",
        extra={
            "trigger_type": trigger_event.trigger_type,
            "tenant_id": trigger_event.tenant_id,
            "task_id": self.request.id,
            "executions": len(executions),
        },
    )
    return {"execution_ids": [e.id for e in executions]}


@celery_app.task(name="run_execution", bind=True)
def run_execution(self, execution_id: str) -> dict:
    """
    Walk one execution until it completes, fails or suspends.

    Redelivery of this task is harmless; finished steps are not re-run.
    """
    logger.info(
        "Starting execution",
        extra={"execution_id": execution_id, "task_id": self.request.id},
    )

    try:
        execution = get_engine().run(execution_id)
    except ExecutionNotFound:
        logger.error(f"Execution not found: {execution_id}")
        return {"error": "Execution not found"}
    except Exception as e:
        logger.error(
            "Execution task failed",
            extra={"execution_id": execution_id, "error": str(e)},
            exc_info=True,
        )
        raise

    return {
        "execution_id": execution.id,
        "status": execution.status.value,
        "error": execution.error,
    }


@celery_app.task(name="resume_due_executions")
def resume_due_executions() -> dict:
    """Periodic sweep: claim elapsed delays and expired leases, enqueue their continuation."""
    execution_ids = get_engine().claim_due()

    for execution_id in execution_ids:
        run_execution.delay(execution_id)

    if execution_ids:
        logger.info("Handed executions to workers", extra={"count": len(execution_ids)})
    return {"resumed": execution_ids}


@celery_app.task(name="cancel_execution")
def cancel_execution(execution_id: str, reason: str | None = None) -> dict:
    """Operator cancellation."""
    try:
        execution = get_engine().cancel(execution_id, reason=reason)
    except ExecutionNotFound:
        logger.error(f"Execution not found: {execution_id}")
        return {"error": "Execution not found"}

    return {"execution_id": execution.id, "status": execution.status.value}
