"""
Execution Engine - walks a workflow graph for a matched trigger event.

Node execution within one execution is strictly sequential. Different
executions share nothing but the execution store and run side by side.
Delays are persisted suspensions picked up later by the resumption sweep;
no thread is held while an execution waits.
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from workflow_automation.actions import (
    ActionContext,
    ActionDispatcher,
    ActionResult,
    FailureCategory,
    InMemoryMailer,
    InMemoryRecordStore,
    build_default_dispatcher,
)
from workflow_automation.conditions import evaluate
from workflow_automation.config import Settings, get_settings
from workflow_automation.engine.repository import WorkflowRepository, get_workflow_repository
from workflow_automation.events import EventContext, EventSource, TriggerEvent
from workflow_automation.graph import (
    ActionNode,
    BRANCH_FALSE,
    BRANCH_TRUE,
    ConditionNode,
    ConfigDecodeError,
    MalformedGraph,
    WorkflowDefinition,
    WorkflowGraph,
    decode_action_config,
)
from workflow_automation.observability import get_logger, with_execution_context
from workflow_automation.storage import (
    CANCELLED,
    Execution,
    ExecutionAlreadyExists,
    ExecutionStatus,
    ExecutionStep,
    ExecutionStore,
    StepOutcome,
    get_execution_store,
)
from workflow_automation.storage.execution_store import utcnow

logger = get_logger(__name__)

# Namespace of execution ids derived from (workflow, event)
EXECUTION_NAMESPACE = uuid.UUID("5d0f8a52-3c1e-4b7a-9e64-2f81c0d4a7b3")


class CancelledExecution(Exception):
    """Raised inside a walk when the execution is no longer running."""

    def __init__(self, execution_id: str, node_id: str):
        super().__init__(f"Execution {execution_id} stopped before node {node_id}")
        self.execution_id = execution_id
        self.node_id = node_id


def _log_context(execution: Execution, node_id: Optional[str] = None, **kwargs) -> dict:
    return with_execution_context(
        trace_id=execution.trace_id,
        tenant_id=execution.tenant_id,
        workflow_id=execution.workflow_id,
        execution_id=execution.id,
        node_id=node_id,
        **kwargs,
    )


class ExecutionEngine:
    """
    Runs executions against the execution store.

    Args:
        store: Execution store
        repository: Workflow repository used to match events
        dispatcher: Action dispatcher
        settings: Engine settings (process settings when omitted)
        clock: Returns the current UTC time
        sleep: Blocks between retry attempts
    """

    def __init__(
        self,
        store: ExecutionStore,
        repository: WorkflowRepository,
        dispatcher: ActionDispatcher,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.store = store
        self.repository = repository
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self._clock = clock or utcnow
        self._sleep = sleep or time.sleep

    # =========================================================================
    # Entry points
    # =========================================================================

    def start(self, event: TriggerEvent) -> List[Execution]:
        """Create one running execution per active workflow matching ``event``."""
        definitions = self.repository.find_active(event.trigger_type, tenant_id=event.tenant_id)
        executions = [self._create(definition, event) for definition in definitions]
        logger.info(
            f"Event {event.trigger_type} matched {len(executions)} workflow(s)",
            extra=with_execution_context(
                tenant_id=event.tenant_id,
                trigger_type=event.trigger_type,
                execution_ids=[e.id for e in executions],
            ),
        )
        return executions

    def handle_event(self, event: TriggerEvent) -> List[Execution]:
        """Start and run every execution for ``event``, in parallel."""
        return self._run_all([e.id for e in self.start(event)])

    def consume(self, source: EventSource) -> List[Execution]:
        """Handle every event the source yields."""
        executions: List[Execution] = []
        for event in source.drain():
            executions.extend(self.handle_event(event))
        return executions

    def test_run(self, workflow_id: str, event: TriggerEvent) -> Execution:
        """
        Dry run of a workflow from the editor.

        The workflow need not be active. Conditions are evaluated, action
        configs are decoded but no handler runs and delays do not suspend.
        """
        definition = self.repository.require(workflow_id)
        execution = self._create(definition, event, test_mode=True)
        return self.run(execution.id)

    def claim_due(self, now: Optional[datetime] = None) -> List[str]:
        """
        Claim executions that need a worker.

        These are suspended executions whose resume time has elapsed, and
        running executions whose lease expired because the worker walking
        them died or their run message was lost.
        """
        now = now or self._clock()
        claimed = []
        for execution in self.store.list_runnable(now):
            if self.store.claim_for_resume(execution.id, now) is not None:
                logger.info("Execution resumed", extra=_log_context(execution))
                claimed.append(execution.id)

        cutoff = now - timedelta(seconds=self.settings.execution_lease_s)
        for execution in self.store.list_stale(cutoff):
            if self.store.reclaim_stale(execution.id, cutoff) is not None:
                logger.warning(
                    "Execution lease expired, handing it to a worker again",
                    extra=_log_context(execution, last_update=execution.updated_at.isoformat()),
                )
                claimed.append(execution.id)
        return claimed

    def resume_due(self, now: Optional[datetime] = None) -> List[Execution]:
        """Claim and run every execution that needs a worker."""
        return self._run_all(self.claim_due(now))

    def cancel(self, execution_id: str, reason: Optional[str] = None) -> Execution:
        """
        Operator cancellation of a running or suspended execution.

        A running walk notices before its next node and stops without
        running further actions. Terminal executions are returned unchanged.

        Raises:
            ExecutionNotFound: If the execution id is unknown
        """
        execution = self.store.require(execution_id)
        if execution.is_terminal:
            return execution
        cancelled = self.store.cancel(execution_id)
        if cancelled is None:
            return self.store.require(execution_id)
        logger.info(
            "Execution cancelled",
            extra=_log_context(cancelled, reason=reason or CANCELLED),
        )
        return cancelled

    def run(self, execution_id: str) -> Execution:
        """
        Walk a running execution until it completes, fails or suspends.

        Safe to call again for the same execution: nodes already recorded
        as finished are not invoked a second time.
        """
        execution = self.store.require(execution_id)
        if execution.status != ExecutionStatus.RUNNING:
            logger.info(
                f"Execution is {execution.status.value}, nothing to run",
                extra=_log_context(execution),
            )
            return execution

        try:
            graph = execution.graph_snapshot.to_graph()
            return self._walk(execution, graph)
        except CancelledExecution as e:
            logger.info("Walk stopped", extra=_log_context(execution, e.node_id))
            return self.store.require(execution_id)
        except MalformedGraph as e:
            logger.error("Malformed workflow graph", extra=_log_context(execution, e.node_id))
            return self._fail(execution, f"Malformed graph: {e}")
        except Exception as e:
            logger.error("Execution crashed", extra=_log_context(execution), exc_info=True)
            return self._fail(execution, f"Unexpected error: {e}")

    # =========================================================================
    # Walk
    # =========================================================================

    def _walk(self, execution: Execution, graph: WorkflowGraph) -> Execution:
        visited = list(execution.visited_node_ids)
        created = {kind: dict(fields) for kind, fields in execution.created_records.items()}

        if execution.pending_node_id is not None:
            current = execution.pending_node_id
        else:
            current = self._first_node(graph)

        while current is not None:
            self._ensure_running(execution.id, current)

            if current in visited:
                logger.warning(
                    "Node visited twice, stopping walk",
                    extra=_log_context(execution, current),
                )
                break
            visited.append(current)

            node = graph.node(current)
            if isinstance(node, ConditionNode):
                current = self._run_condition(execution, graph, node, created)
            elif isinstance(node, ActionNode):
                result = self._run_action(execution, node, created)
                if not result.success:
                    return self._fail(execution, f"{node.id}: {result.error}")

                successor = self._successor(graph, node.id)
                if result.suspend_until is not None and not execution.test_mode:
                    if successor is None:
                        break
                    return self._suspend(execution, result.suspend_until, successor, visited, created)
                current = successor
            else:
                raise MalformedGraph(f"Trigger node {node.id} reached mid-walk", node_id=node.id)

        return self._complete(execution)

    def _first_node(self, graph: WorkflowGraph) -> Optional[str]:
        triggers = graph.trigger_nodes()
        if len(triggers) != 1:
            raise MalformedGraph(f"Expected one trigger node, found {len(triggers)}")
        edges = graph.outgoing(triggers[0].id)
        if len(edges) > 1:
            raise MalformedGraph("Trigger node has more than one successor", node_id=triggers[0].id)
        return edges[0].target_node_id if edges else None

    def _successor(self, graph: WorkflowGraph, node_id: str) -> Optional[str]:
        edges = graph.outgoing(node_id)
        return edges[0].target_node_id if edges else None

    def _ensure_running(self, execution_id: str, node_id: str) -> None:
        # Renews the lease of a live walk
        if self.store.heartbeat(execution_id) is not None:
            return
        current = self.store.require(execution_id)
        self.store.append_step(
            ExecutionStep(
                id=current.step_id(node_id),
                execution_id=execution_id,
                node_id=node_id,
                outcome=StepOutcome.SKIPPED,
                attempts=0,
                error=current.error or current.status.value,
                created_at=self._clock(),
            )
        )
        raise CancelledExecution(execution_id, node_id)

    def _run_condition(
        self,
        execution: Execution,
        graph: WorkflowGraph,
        node: ConditionNode,
        created: dict,
    ) -> Optional[str]:
        recorded = self.store.completed_step(execution.id, node.id)
        if recorded is not None and recorded.outcome in (StepOutcome.TRUE, StepOutcome.FALSE):
            branch = recorded.outcome.value
        else:
            context = EventContext(
                event=execution.event,
                tenant_id=execution.tenant_id,
                created_records=created,
            )
            branch = BRANCH_TRUE if evaluate(node, context) else BRANCH_FALSE
            self.store.append_step(
                ExecutionStep(
                    id=execution.step_id(node.id),
                    execution_id=execution.id,
                    node_id=node.id,
                    outcome=StepOutcome(branch),
                    output={"branch": branch},
                    created_at=self._clock(),
                )
            )
            logger.info(
                f"Condition took the {branch} branch",
                extra=_log_context(execution, node.id),
            )

        targets = [c.target_node_id for c in graph.outgoing(node.id) if c.branch == branch]
        return targets[0] if targets else None

    def _run_action(self, execution: Execution, node: ActionNode, created: dict) -> ActionResult:
        recorded = self.store.completed_step(execution.id, node.id)
        if recorded is not None:
            # Redelivery: the effect already happened
            logger.info("Reusing recorded step", extra=_log_context(execution, node.id))
            suspend_until = None
            if recorded.outcome == StepOutcome.SUSPENDED:
                suspend_until = datetime.fromisoformat(recorded.output["resume_at"])
            return ActionResult.ok(output=recorded.output, suspend_until=suspend_until)

        context = ActionContext(
            event=execution.event,
            tenant_id=execution.tenant_id,
            created_records=created,
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            node_id=node.id,
            step_id=execution.step_id(node.id),
            now=self._clock(),
        )

        if execution.test_mode:
            result, attempts = self._dry_run(node), 1
        else:
            result, attempts = self._dispatch_with_retry(execution, node, context)

        if result.created is not None:
            created[result.created.kind] = {"id": result.created.id, **result.created.fields}
            self.store.checkpoint(execution.id, created)

        if not result.success:
            outcome = StepOutcome.FAILURE
        elif result.suspend_until is not None and not execution.test_mode:
            outcome = StepOutcome.SUSPENDED
        else:
            outcome = StepOutcome.SUCCESS

        self.store.append_step(
            ExecutionStep(
                id=context.step_id,
                execution_id=execution.id,
                node_id=node.id,
                outcome=outcome,
                attempts=attempts,
                category=result.category.value if result.category else None,
                output=result.output,
                error=result.error,
                created_at=self._clock(),
            )
        )
        return result

    def _dispatch_with_retry(
        self,
        execution: Execution,
        node: ActionNode,
        context: ActionContext,
    ) -> tuple:
        """Returns: (result, attempts)"""
        max_attempts = self.settings.action_max_attempts
        attempt = 1
        while True:
            result = self.dispatcher.dispatch(node.action_type, node.config, context)
            if not result.is_retryable or attempt >= max_attempts:
                return result, attempt

            delay = self.settings.retry_delay(attempt)
            logger.warning(
                f"Transient action failure, retrying in {delay}s",
                extra=_log_context(execution, node.id, attempt=attempt, error=result.error),
            )
            self._sleep(delay)
            self._ensure_running(execution.id, node.id)
            attempt += 1

    def _dry_run(self, node: ActionNode) -> ActionResult:
        try:
            decode_action_config(node.action_type, node.config)
        except ConfigDecodeError as e:
            return ActionResult.failed(f"Invalid configuration: {e}", FailureCategory.VALIDATION)
        return ActionResult.ok(output={"dry_run": True, "action_type": node.action_type})

    # =========================================================================
    # Transitions
    # =========================================================================

    def _create(
        self,
        definition: WorkflowDefinition,
        event: TriggerEvent,
        test_mode: bool = False,
    ) -> Execution:
        now = self._clock()
        if test_mode:
            execution_id = str(uuid.uuid4())
        else:
            # Redelivery of the same event maps to the same execution
            execution_id = str(
                uuid.uuid5(EXECUTION_NAMESPACE, f"{definition.id}:{event.fingerprint()}")
            )
        execution = Execution(
            id=execution_id,
            workflow_id=definition.id,
            tenant_id=definition.tenant_id,
            event=event,
            graph_snapshot=definition,
            created_at=now,
            updated_at=now,
            test_mode=test_mode,
            trace_id=str(uuid.uuid4()),
        )
        try:
            return self.store.create(execution)
        except ExecutionAlreadyExists:
            existing = self.store.require(execution_id)
            logger.info(
                "Event already delivered, keeping its execution",
                extra=_log_context(existing),
            )
            return existing

    def _complete(self, execution: Execution) -> Execution:
        done = self.store.transition(
            execution.id,
            ExecutionStatus.RUNNING,
            ExecutionStatus.COMPLETED,
            pending_node_id=None,
        )
        return done or self.store.require(execution.id)

    def _fail(self, execution: Execution, error: str) -> Execution:
        logger.warning("Execution failed", extra=_log_context(execution, error=error))
        failed = self.store.transition(
            execution.id,
            ExecutionStatus.RUNNING,
            ExecutionStatus.FAILED,
            error=error,
        )
        return failed or self.store.require(execution.id)

    def _suspend(
        self,
        execution: Execution,
        resume_at: datetime,
        pending_node_id: str,
        visited: List[str],
        created: dict,
    ) -> Execution:
        suspended = self.store.suspend(
            execution.id,
            resume_at=resume_at,
            pending_node_id=pending_node_id,
            visited_node_ids=visited,
            created_records=created,
        )
        if suspended is not None:
            logger.info(
                f"Execution suspended until {resume_at.isoformat()}",
                extra=_log_context(execution, pending_node_id),
            )
        return suspended or self.store.require(execution.id)

    def _run_all(self, execution_ids: Iterable[str]) -> List[Execution]:
        execution_ids = list(execution_ids)
        if not execution_ids:
            return []
        workers = min(len(execution_ids), self.settings.max_parallel_executions)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="execution") as pool:
            return list(pool.map(self.run, execution_ids))


# Global engine instance
_engine: Optional[ExecutionEngine] = None


def get_engine() -> ExecutionEngine:
    """
    Get or create the process-wide engine.

    Host applications install their record store and mailer with
    ``set_engine``; without one the engine falls back to in-memory
    collaborators.
    """
    global _engine
    if _engine is None:
        logger.warning("No engine configured, using in-memory record store and mailer")
        _engine = ExecutionEngine(
            store=get_execution_store(),
            repository=get_workflow_repository(),
            dispatcher=build_default_dispatcher(InMemoryRecordStore(), InMemoryMailer()),
        )
    return _engine


def set_engine(engine: Optional[ExecutionEngine]) -> None:
    global _engine
    _engine = engine
