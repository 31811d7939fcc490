"""Celery application configuration."""
from celery import Celery

from workflow_automation.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "workflow_automation",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["workflow_automation.integrations.tasks"],
)

# Configure Celery with production-safe defaults
celery_app.conf.update(
    # Task execution
    task_time_limit=settings.celery_task_time_limit,  # Hard time limit
    task_soft_time_limit=settings.celery_task_soft_time_limit,  # Soft time limit
    task_acks_late=True,  # Acknowledge after task completes; redelivery is idempotent
    task_reject_on_worker_lost=True,  # Reject if worker dies
    worker_prefetch_multiplier=1,  # Process one task at a time
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Results
    result_expires=3600,  # Results expire after 1 hour
    # Timezone
    timezone="UTC",
    enable_utc=True,
)

# Resumption sweep for suspended executions
celery_app.conf.beat_schedule = {
    "resume-due-executions": {
        "task": "resume_due_executions",
        "schedule": float(settings.resume_sweep_interval_s),
    },
}
