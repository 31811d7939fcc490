"""Workflow repository - persisted workflow definitions and the activation gate."""
import threading
from abc import ABC, abstractmethod

import redis

from workflow_automation.config import get_settings
from workflow_automation.graph import WorkflowDefinition
from workflow_automation.observability import get_logger, with_execution_context
from workflow_automation.validation import Issue, ValidationReport, validate_workflow

logger = get_logger(__name__)


class WorkflowNotFound(LookupError):
    """Raised when a workflow id is unknown."""

    pass


class WorkflowValidationFailed(Exception):
    """Raised when a workflow with error-severity issues is saved or activated."""

    def __init__(self, workflow_id: str, issues: list[Issue]):
        self.workflow_id = workflow_id
        self.issues = issues
        messages = "; ".join(i.message for i in issues)
        super().__init__(f"Validation failed for workflow {workflow_id}: {messages}")


class WorkflowRepository(ABC):
    """
    Stores workflow definitions.

    Saving and activating run the validator first; error issues block the
    write, warnings are returned to the caller for display. Deactivating a
    workflow leaves its in-flight executions untouched.
    """

    @abstractmethod
    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        pass

    @abstractmethod
    def _put(self, definition: WorkflowDefinition) -> None:
        pass

    @abstractmethod
    def list_workflows(self, tenant_id: str | None = None) -> list[WorkflowDefinition]:
        pass

    def ping(self) -> bool:
        """Whether the backend is reachable."""
        return True

    def require(self, workflow_id: str) -> WorkflowDefinition:
        definition = self.get(workflow_id)
        if definition is None:
            raise WorkflowNotFound(f"Workflow not found: {workflow_id}")
        return definition

    def save(self, definition: WorkflowDefinition) -> ValidationReport:
        """
        Validate and store a workflow definition.

        Raises:
            MalformedGraph: If the rows do not form a graph
            WorkflowValidationFailed: If the validator reports errors
        """
        report = validate_workflow(definition.to_graph())
        if not report.is_valid:
            logger.warning(
                "Workflow save refused",
                extra=with_execution_context(
                    tenant_id=definition.tenant_id,
                    workflow_id=definition.id,
                    errors=len(report.errors),
                ),
            )
            raise WorkflowValidationFailed(definition.id, report.errors)

        self._put(definition)
        logger.info(
            "Workflow saved",
            extra=with_execution_context(
                tenant_id=definition.tenant_id,
                workflow_id=definition.id,
                warnings=len(report.warnings),
                is_active=definition.workflow.is_active,
            ),
        )
        return report

    def activate(self, workflow_id: str) -> ValidationReport:
        """
        Re-validate a stored workflow and mark it active.

        Raises:
            WorkflowNotFound: If the workflow id is unknown
            WorkflowValidationFailed: If the validator reports errors
        """
        definition = self.require(workflow_id)
        activated = definition.model_copy(
            update={"workflow": definition.workflow.model_copy(update={"is_active": True})}
        )
        return self.save(activated)

    def deactivate(self, workflow_id: str) -> WorkflowDefinition:
        definition = self.require(workflow_id)
        deactivated = definition.model_copy(
            update={"workflow": definition.workflow.model_copy(update={"is_active": False})}
        )
        self._put(deactivated)
        logger.info(
            "Workflow deactivated",
            extra=with_execution_context(tenant_id=definition.tenant_id, workflow_id=workflow_id),
        )
        return deactivated

    def find_active(self, trigger_type: str, tenant_id: str | None = None) -> list[WorkflowDefinition]:
        """Active workflows bound to ``trigger_type``, optionally of one tenant."""
        return [
            d for d in self.list_workflows(tenant_id)
            if d.workflow.is_active and d.workflow.trigger_type == trigger_type
        ]


class InMemoryWorkflowRepository(WorkflowRepository):
    """Process-local repository."""

    def __init__(self):
        self._lock = threading.Lock()
        self._workflows: dict[str, WorkflowDefinition] = {}

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        with self._lock:
            return self._workflows.get(workflow_id)

    def _put(self, definition: WorkflowDefinition) -> None:
        with self._lock:
            self._workflows[definition.id] = definition

    def list_workflows(self, tenant_id: str | None = None) -> list[WorkflowDefinition]:
        with self._lock:
            return [
                d for d in self._workflows.values()
                if tenant_id is None or d.tenant_id == tenant_id
            ]


class RedisWorkflowRepository(WorkflowRepository):
    """Redis-backed repository; one JSON document per workflow."""

    def __init__(self, redis_client: redis.Redis | None = None):
        if redis_client is None:
            settings = get_settings()
            self.redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
            )
        else:
            self.redis_client = redis_client

        self._workflow_prefix = "workflow:"
        self._all_key = "workflows:all"
        self._tenant_prefix = "workflows:tenant:"
        self._trigger_prefix = "workflows:active:"

    def _workflow_key(self, workflow_id: str) -> str:
        return f"{self._workflow_prefix}{workflow_id}"

    def _trigger_key(self, trigger_type: str) -> str:
        return f"{self._trigger_prefix}{trigger_type}"

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.warning("Workflow repository unreachable", extra={"error": str(e)})
            return False

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        data = self.redis_client.get(self._workflow_key(workflow_id))
        if data is None:
            return None
        return WorkflowDefinition.model_validate_json(data)

    def _put(self, definition: WorkflowDefinition) -> None:
        previous = self.get(definition.id)

        with self.redis_client.pipeline() as pipe:
            pipe.set(self._workflow_key(definition.id), definition.model_dump_json())
            pipe.sadd(self._all_key, definition.id)
            pipe.sadd(f"{self._tenant_prefix}{definition.tenant_id}", definition.id)
            if previous is not None:
                pipe.srem(self._trigger_key(previous.workflow.trigger_type), definition.id)
            if definition.workflow.is_active:
                pipe.sadd(self._trigger_key(definition.workflow.trigger_type), definition.id)
            pipe.execute()

    def _load(self, workflow_ids) -> list[WorkflowDefinition]:
        definitions = []
        for workflow_id in sorted(workflow_ids):
            definition = self.get(workflow_id)
            if definition is not None:
                definitions.append(definition)
        return definitions

    def list_workflows(self, tenant_id: str | None = None) -> list[WorkflowDefinition]:
        key = f"{self._tenant_prefix}{tenant_id}" if tenant_id else self._all_key
        return self._load(self.redis_client.smembers(key))

    def find_active(self, trigger_type: str, tenant_id: str | None = None) -> list[WorkflowDefinition]:
        definitions = self._load(self.redis_client.smembers(self._trigger_key(trigger_type)))
        return [
            d for d in definitions
            if d.workflow.is_active and (tenant_id is None or d.tenant_id == tenant_id)
        ]


# Global repository instance
_repository: WorkflowRepository | None = None


def get_workflow_repository() -> WorkflowRepository:
    """Get or create the process-wide workflow repository."""
    global _repository
    if _repository is None:
        _repository = RedisWorkflowRepository()
    return _repository


def set_workflow_repository(repository: WorkflowRepository | None) -> None:
    global _repository
    _repository = repository
