"""Execution store - append-only log of executions and their steps."""
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

import redis
from pydantic import BaseModel, Field

from workflow_automation.config import get_settings
from workflow_automation.events import TriggerEvent
from workflow_automation.graph import WorkflowDefinition
from workflow_automation.observability import get_logger, with_execution_context

logger = get_logger(__name__)

CANCELLED = "cancelled"


class ExecutionStatus(str, Enum):
    """Execution status."""

    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED})

ALLOWED_TRANSITIONS: dict[ExecutionStatus, frozenset[ExecutionStatus]] = {
    ExecutionStatus.RUNNING: frozenset(ExecutionStatus),
    ExecutionStatus.SUSPENDED: frozenset({ExecutionStatus.RUNNING, ExecutionStatus.FAILED}),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
}


class StepOutcome(str, Enum):
    """Outcome of one node within an execution."""

    SUCCESS = "success"
    FAILURE = "failure"
    TRUE = "true"  # Condition took the true branch
    FALSE = "false"  # Condition took the false branch
    SUSPENDED = "suspended"  # Delay reached
    SKIPPED = "skipped"  # Not run, execution cancelled


# Outcomes that mean the node does not need to run again
FINISHED_OUTCOMES = frozenset({
    StepOutcome.SUCCESS,
    StepOutcome.TRUE,
    StepOutcome.FALSE,
    StepOutcome.SUSPENDED,
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionNotFound(LookupError):
    """Raised when an execution id is unknown."""

    pass


class ExecutionAlreadyExists(ValueError):
    """Raised when an execution id is created a second time."""

    pass


class Execution(BaseModel):
    """One run of a workflow graph for one matched event."""

    id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="Workflow ID")
    tenant_id: str = Field(..., description="Tenant owning the workflow")
    status: ExecutionStatus = Field(default=ExecutionStatus.RUNNING)
    event: TriggerEvent = Field(..., description="Triggering event payload")
    graph_snapshot: WorkflowDefinition = Field(
        ..., description="Workflow as it was when the execution started"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    resume_at: datetime | None = Field(default=None, description="Set while suspended")
    pending_node_id: str | None = Field(
        default=None, description="Node to continue with after resumption"
    )
    visited_node_ids: list[str] = Field(default_factory=list)
    created_records: dict[str, dict[str, Any]] = Field(default_factory=dict)
    error: str | None = Field(default=None, description="Failure reason")
    test_mode: bool = Field(default=False, description="Dry run, no side effects")
    trace_id: str | None = Field(default=None, description="Trace ID for observability")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_cancelled(self) -> bool:
        return self.status == ExecutionStatus.FAILED and self.error == CANCELLED

    def step_id(self, node_id: str) -> str:
        """Stable id of this execution's step for ``node_id``."""
        return f"{self.id}:{node_id}"


class ExecutionStep(BaseModel):
    """Audit record of one node's outcome."""

    id: str = Field(..., description="Step ID (idempotency token)")
    execution_id: str
    node_id: str
    outcome: StepOutcome
    attempts: int = Field(default=1)
    category: str | None = Field(default=None, description="Failure category")
    output: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class InvalidTransition(Exception):
    """Raised when a status change violates the execution state machine."""

    pass


Mutation = Callable[[Execution], Execution | None]


class ExecutionStore(ABC):
    """
    Durable state of executions.

    Steps are append-only; completed and failed executions never change.
    Status changes are compare-and-set so concurrent writers (engine,
    resumption sweep, operator cancellation) cannot overwrite each other.
    """

    _clock: Callable[[], datetime] = staticmethod(utcnow)

    # =========================================================================
    # Backend primitives
    # =========================================================================

    @abstractmethod
    def create(self, execution: Execution) -> Execution:
        pass

    @abstractmethod
    def get(self, execution_id: str) -> Execution | None:
        pass

    @abstractmethod
    def _compare_and_set(self, execution_id: str, mutate: Mutation) -> Execution | None:
        """
        Atomically apply ``mutate`` to the stored execution.

        ``mutate`` returns the replacement, or None to leave it untouched.
        Returns the stored replacement, or None when nothing was written.
        """
        pass

    @abstractmethod
    def append_step(self, step: ExecutionStep) -> ExecutionStep:
        pass

    @abstractmethod
    def steps(self, execution_id: str) -> list[ExecutionStep]:
        pass

    @abstractmethod
    def _suspended_due(self, now: datetime) -> list[str]:
        pass

    @abstractmethod
    def _running_since(self, cutoff: datetime) -> list[str]:
        """Ids of running executions last written at or before ``cutoff``."""
        pass

    @abstractmethod
    def _execution_ids(self, tenant_id: str, workflow_id: str | None) -> list[str]:
        """Ids newest first."""
        pass

    # =========================================================================
    # Operations
    # =========================================================================

    def ping(self) -> bool:
        """Whether the backend is reachable."""
        return True

    def require(self, execution_id: str) -> Execution:
        execution = self.get(execution_id)
        if execution is None:
            raise ExecutionNotFound(f"Execution not found: {execution_id}")
        return execution

    def transition(
        self,
        execution_id: str,
        expected: ExecutionStatus | tuple[ExecutionStatus, ...],
        new_status: ExecutionStatus,
        when: Callable[[Execution], bool] | None = None,
        **fields: Any,
    ) -> Execution | None:
        """
        Change status if the execution is currently in ``expected``.

        Args:
            execution_id: Execution ID
            expected: Status (or statuses) the execution must be in
            new_status: Status to move to
            when: Extra predicate on the stored execution
            **fields: Other fields to set together with the status

        Returns:
            The updated execution, or None when the precondition failed

        Raises:
            InvalidTransition: If the state machine forbids the change
        """
        expected_set = (expected,) if isinstance(expected, ExecutionStatus) else expected
        for status in expected_set:
            if new_status not in ALLOWED_TRANSITIONS[status]:
                raise InvalidTransition(f"{status.value} -> {new_status.value}")

        previous: list[ExecutionStatus] = []

        def mutate(current: Execution) -> Execution | None:
            if current.status not in expected_set:
                return None
            if when is not None and not when(current):
                return None
            previous.append(current.status)
            return current.model_copy(
                update={**fields, "status": new_status, "updated_at": self._clock()}
            )

        updated = self._compare_and_set(execution_id, mutate)
        if updated is not None and previous[-1] != new_status:
            logger.info(
                "Execution status updated",
                extra=with_execution_context(
                    tenant_id=updated.tenant_id,
                    workflow_id=updated.workflow_id,
                    execution_id=execution_id,
                    status=new_status.value,
                ),
            )
        return updated

    def checkpoint(
        self,
        execution_id: str,
        created_records: dict[str, dict[str, Any]],
    ) -> Execution | None:
        """
        Persist records created so far by a running execution.

        Visited nodes are only persisted on suspension: a redelivered run
        walks again from its last resumption point.
        """
        return self.transition(
            execution_id,
            ExecutionStatus.RUNNING,
            ExecutionStatus.RUNNING,
            created_records=dict(created_records),
        )

    def suspend(
        self,
        execution_id: str,
        resume_at: datetime,
        pending_node_id: str | None,
        visited_node_ids: list[str],
        created_records: dict[str, dict[str, Any]],
    ) -> Execution | None:
        """Park a running execution until ``resume_at``."""
        return self.transition(
            execution_id,
            ExecutionStatus.RUNNING,
            ExecutionStatus.SUSPENDED,
            resume_at=resume_at,
            pending_node_id=pending_node_id,
            visited_node_ids=list(visited_node_ids),
            created_records=dict(created_records),
        )

    def claim_for_resume(self, execution_id: str, now: datetime) -> Execution | None:
        """
        Move a due suspended execution back to running.

        Only one caller wins when several sweeps race for the same execution.
        """
        return self.transition(
            execution_id,
            ExecutionStatus.SUSPENDED,
            ExecutionStatus.RUNNING,
            when=lambda current: current.resume_at is not None and current.resume_at <= now,
            resume_at=None,
        )

    def heartbeat(self, execution_id: str) -> Execution | None:
        """Renew the lease of a running execution. None when it is not running."""
        return self.transition(execution_id, ExecutionStatus.RUNNING, ExecutionStatus.RUNNING)

    def reclaim_stale(self, execution_id: str, cutoff: datetime) -> Execution | None:
        """
        Take over a running execution nobody has touched since ``cutoff``.

        Renews the lease, so only one of several racing sweeps wins.
        """
        return self.transition(
            execution_id,
            ExecutionStatus.RUNNING,
            ExecutionStatus.RUNNING,
            when=lambda current: current.updated_at <= cutoff,
        )

    def cancel(self, execution_id: str) -> Execution | None:
        """Mark a running or suspended execution failed with reason ``cancelled``."""
        return self.transition(
            execution_id,
            (ExecutionStatus.RUNNING, ExecutionStatus.SUSPENDED),
            ExecutionStatus.FAILED,
            error=CANCELLED,
            resume_at=None,
        )

    def completed_step(self, execution_id: str, node_id: str) -> ExecutionStep | None:
        """Latest finished step recorded for a node, if any."""
        for step in reversed(self.steps(execution_id)):
            if step.node_id == node_id and step.outcome in FINISHED_OUTCOMES:
                return step
        return None

    def list_runnable(self, now: datetime) -> list[Execution]:
        """Suspended executions whose resume time has elapsed."""
        runnable = []
        for execution_id in self._suspended_due(now):
            execution = self.get(execution_id)
            if (
                execution is not None
                and execution.status == ExecutionStatus.SUSPENDED
                and execution.resume_at is not None
                and execution.resume_at <= now
            ):
                runnable.append(execution)
        return sorted(runnable, key=lambda e: e.resume_at)

    def list_stale(self, cutoff: datetime) -> list[Execution]:
        """Running executions not written to since ``cutoff``, oldest first."""
        stale = []
        for execution_id in self._running_since(cutoff):
            execution = self.get(execution_id)
            if (
                execution is not None
                and execution.status == ExecutionStatus.RUNNING
                and execution.updated_at <= cutoff
            ):
                stale.append(execution)
        return sorted(stale, key=lambda e: e.updated_at)

    def list_executions(
        self,
        tenant_id: str,
        workflow_id: str | None = None,
        status: ExecutionStatus | None = None,
        limit: int | None = None,
    ) -> list[Execution]:
        """Executions of a tenant (optionally one workflow), newest first."""
        executions = []
        for execution_id in self._execution_ids(tenant_id, workflow_id):
            execution = self.get(execution_id)
            if execution is None:
                continue
            if status is not None and execution.status != status:
                continue
            executions.append(execution)
            if limit is not None and len(executions) >= limit:
                break
        return executions

    def list_failed(self, tenant_id: str, workflow_id: str | None = None) -> list[Execution]:
        return self.list_executions(tenant_id, workflow_id, status=ExecutionStatus.FAILED)


class InMemoryExecutionStore(ExecutionStore):
    """Process-local store guarded by a lock."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or utcnow
        self._lock = threading.RLock()
        self._executions: dict[str, Execution] = {}
        self._steps: dict[str, list[ExecutionStep]] = {}

    def create(self, execution: Execution) -> Execution:
        with self._lock:
            if execution.id in self._executions:
                raise ExecutionAlreadyExists(f"Execution already exists: {execution.id}")
            self._executions[execution.id] = execution
            self._steps[execution.id] = []
        logger.info(
            "Execution created",
            extra=with_execution_context(
                tenant_id=execution.tenant_id,
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
            ),
        )
        return execution

    def get(self, execution_id: str) -> Execution | None:
        with self._lock:
            return self._executions.get(execution_id)

    def _compare_and_set(self, execution_id: str, mutate: Mutation) -> Execution | None:
        with self._lock:
            current = self._executions.get(execution_id)
            if current is None:
                raise ExecutionNotFound(f"Execution not found: {execution_id}")
            updated = mutate(current)
            if updated is not None:
                self._executions[execution_id] = updated
            return updated

    def append_step(self, step: ExecutionStep) -> ExecutionStep:
        with self._lock:
            if step.execution_id not in self._executions:
                raise ExecutionNotFound(f"Execution not found: {step.execution_id}")
            self._steps[step.execution_id].append(step)
        return step

    def steps(self, execution_id: str) -> list[ExecutionStep]:
        with self._lock:
            return list(self._steps.get(execution_id, []))

    def _suspended_due(self, now: datetime) -> list[str]:
        with self._lock:
            return [
                e.id for e in self._executions.values()
                if e.status == ExecutionStatus.SUSPENDED
                and e.resume_at is not None
                and e.resume_at <= now
            ]

    def _running_since(self, cutoff: datetime) -> list[str]:
        with self._lock:
            return [
                e.id for e in self._executions.values()
                if e.status == ExecutionStatus.RUNNING and e.updated_at <= cutoff
            ]

    def _execution_ids(self, tenant_id: str, workflow_id: str | None) -> list[str]:
        with self._lock:
            matching = [
                e for e in self._executions.values()
                if e.tenant_id == tenant_id
                and (workflow_id is None or e.workflow_id == workflow_id)
            ]
        matching.sort(key=lambda e: e.created_at, reverse=True)
        return [e.id for e in matching]


class RedisExecutionStore(ExecutionStore):
    """Redis-backed store for execution state."""

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize execution store.

        Args:
            redis_client: Optional Redis client (will create one if not provided)
            clock: Source of ``updated_at`` timestamps
        """
        self._clock = clock or utcnow
        if redis_client is None:
            settings = get_settings()
            self.redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True,
            )
        else:
            self.redis_client = redis_client

        self._execution_prefix = "execution:"
        self._suspended_key = "executions:suspended"
        self._running_key = "executions:running"
        self._tenant_prefix = "executions:tenant:"
        self._workflow_prefix = "executions:workflow:"

    def _execution_key(self, execution_id: str) -> str:
        return f"{self._execution_prefix}{execution_id}"

    def _steps_key(self, execution_id: str) -> str:
        return f"{self._execution_prefix}{execution_id}:steps"

    def _tenant_key(self, tenant_id: str) -> str:
        return f"{self._tenant_prefix}{tenant_id}"

    def _workflow_key(self, tenant_id: str, workflow_id: str) -> str:
        return f"{self._workflow_prefix}{tenant_id}:{workflow_id}"

    def create(self, execution: Execution) -> Execution:
        key = self._execution_key(execution.id)
        score = execution.created_at.timestamp()

        with self.redis_client.pipeline() as pipe:
            pipe.set(key, execution.model_dump_json(), nx=True)
            # nx keeps a redelivered create from renewing the lease of the original
            pipe.zadd(
                self._running_key, {execution.id: execution.updated_at.timestamp()}, nx=True
            )
            pipe.zadd(self._tenant_key(execution.tenant_id), {execution.id: score})
            pipe.zadd(
                self._workflow_key(execution.tenant_id, execution.workflow_id),
                {execution.id: score},
            )
            created = pipe.execute()[0]

        if not created:
            raise ExecutionAlreadyExists(f"Execution already exists: {execution.id}")

        logger.info(
            "Execution created",
            extra=with_execution_context(
                tenant_id=execution.tenant_id,
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
            ),
        )
        return execution

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.warning("Execution store unreachable", extra={"error": str(e)})
            return False

    def get(self, execution_id: str) -> Execution | None:
        data = self.redis_client.get(self._execution_key(execution_id))
        if data is None:
            return None
        return Execution.model_validate_json(data)

    def _compare_and_set(self, execution_id: str, mutate: Mutation) -> Execution | None:
        key = self._execution_key(execution_id)
        with self.redis_client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(key)
                    data = pipe.get(key)
                    if data is None:
                        raise ExecutionNotFound(f"Execution not found: {execution_id}")
                    updated = mutate(Execution.model_validate_json(data))
                    if updated is None:
                        pipe.unwatch()
                        return None

                    pipe.multi()
                    pipe.set(key, updated.model_dump_json())
                    if updated.status == ExecutionStatus.SUSPENDED and updated.resume_at:
                        pipe.zadd(
                            self._suspended_key,
                            {execution_id: updated.resume_at.timestamp()},
                        )
                    else:
                        pipe.zrem(self._suspended_key, execution_id)
                    if updated.status == ExecutionStatus.RUNNING:
                        pipe.zadd(
                            self._running_key,
                            {execution_id: updated.updated_at.timestamp()},
                        )
                    else:
                        pipe.zrem(self._running_key, execution_id)
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    # Someone else wrote first, re-read and re-check
                    continue

    def append_step(self, step: ExecutionStep) -> ExecutionStep:
        if not self.redis_client.exists(self._execution_key(step.execution_id)):
            raise ExecutionNotFound(f"Execution not found: {step.execution_id}")
        self.redis_client.rpush(self._steps_key(step.execution_id), step.model_dump_json())
        return step

    def steps(self, execution_id: str) -> list[ExecutionStep]:
        raw = self.redis_client.lrange(self._steps_key(execution_id), 0, -1)
        return [ExecutionStep.model_validate_json(item) for item in raw]

    def _suspended_due(self, now: datetime) -> list[str]:
        return list(self.redis_client.zrangebyscore(self._suspended_key, "-inf", now.timestamp()))

    def _running_since(self, cutoff: datetime) -> list[str]:
        return list(
            self.redis_client.zrangebyscore(self._running_key, "-inf", cutoff.timestamp())
        )

    def _execution_ids(self, tenant_id: str, workflow_id: str | None) -> list[str]:
        key = (
            self._workflow_key(tenant_id, workflow_id)
            if workflow_id
            else self._tenant_key(tenant_id)
        )
        return list(self.redis_client.zrevrange(key, 0, -1))


# Global store instance
_store: ExecutionStore | None = None


def get_execution_store() -> ExecutionStore:
    """Get or create the process-wide execution store."""
    global _store
    if _store is None:
        _store = RedisExecutionStore()
    return _store


def set_execution_store(store: ExecutionStore | None) -> None:
    """Replace the process-wide store (embedding, tests)."""
    global _store
    _store = store
