"""Action dispatcher - registry of handlers keyed by action type."""
import threading
from typing import Any, Callable

from workflow_automation.actions.collaborators import (
    InMemoryUserDirectory,
    Mailer,
    RecordStore,
    UserDirectory,
)
from workflow_automation.actions.contracts import (
    ActionContext,
    ActionError,
    ActionResult,
    FailureCategory,
)
from workflow_automation.actions.handlers import (
    ActionHandler,
    AssignTicketHandler,
    AssignUserHandler,
    CreateChecklistHandler,
    CreateInvoiceHandler,
    CreateNoteHandler,
    CreateProjectHandler,
    CreateServiceOrderHandler,
    CreateTaskHandler,
    DelayHandler,
    SendEmailHandler,
    SendHelpdeskEmailHandler,
    UpdateStatusHandler,
    UpdateTicketStatusHandler,
)
from workflow_automation.config import get_settings
from workflow_automation.graph import ActionType, ConfigDecodeError, decode_action_config
from workflow_automation.graph.configs import parse_action_type
from workflow_automation.observability import get_logger, with_execution_context

logger = get_logger(__name__)

Handler = Callable[[Any, ActionContext], ActionResult]

# Errors raised by collaborators that are worth another attempt
TRANSIENT_ERRORS = (ConnectionError, TimeoutError)


class UnregisteredActionError(LookupError):
    """Raised when an action type has no handler."""

    pass


def run_with_timeout(
    func: Callable, timeout_seconds: float, *args, **kwargs
) -> tuple[Any, threading.Thread | None]:
    """
    Run a function with a timeout.

    Returns: (result, straggler) where straggler is the thread still running
    after the timeout, else None
    """
    result_holder = [None]
    exception_holder: list[BaseException | None] = [None]

    def target():
        try:
            result_holder[0] = func(*args, **kwargs)
        except Exception as e:
            exception_holder[0] = e

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join(timeout=timeout_seconds)

    if thread.is_alive():
        # Python threads can't be killed; the idempotency key covers a late finish
        return None, thread

    if exception_holder[0]:
        raise exception_holder[0]

    return result_holder[0], None


class ActionDispatcher:
    """
    Maps action types to handlers and invokes them.

    Decodes node configuration, enforces the per-invocation time budget and
    turns every failure into an ``ActionResult`` with a failure category.
    Handlers for different executions may run concurrently; within one
    execution a call that outlived its time budget blocks the next one.
    """

    def __init__(self, timeout_s: float | None = None):
        """
        Initialize dispatcher.

        Args:
            timeout_s: Wall-clock budget per handler call (settings default)
        """
        self._handlers: dict[ActionType, Handler] = {}
        self._timeout_s = timeout_s if timeout_s is not None else get_settings().action_timeout_s
        # Timed-out calls still running, by execution id
        self._stragglers: dict[str, threading.Thread] = {}
        self._stragglers_lock = threading.Lock()

    def register(self, action_type: ActionType, handler: Handler) -> None:
        """Register (or replace) the handler of an action type."""
        self._handlers[ActionType(action_type)] = handler
        logger.debug(f"Action handler registered: {ActionType(action_type).value}")

    def registered(self) -> list[ActionType]:
        return list(self._handlers)

    def missing(self) -> list[ActionType]:
        """Action types without a handler."""
        return [a for a in ActionType if a not in self._handlers]

    def _track_straggler(self, execution_id: str, thread: threading.Thread) -> None:
        with self._stragglers_lock:
            for key in [k for k, t in self._stragglers.items() if not t.is_alive()]:
                del self._stragglers[key]
            self._stragglers[execution_id] = thread

    def _wait_for_straggler(self, execution_id: str) -> bool:
        """
        Wait up to one time budget for the execution's timed-out call.

        Returns:
            True when no earlier call of the execution is still running
        """
        with self._stragglers_lock:
            thread = self._stragglers.get(execution_id)
        if thread is None:
            return True
        thread.join(timeout=self._timeout_s)
        if thread.is_alive():
            return False
        with self._stragglers_lock:
            if self._stragglers.get(execution_id) is thread:
                del self._stragglers[execution_id]
        return True

    def dispatch(
        self,
        action_type: str | None,
        config: dict[str, Any],
        context: ActionContext,
    ) -> ActionResult:
        """
        Invoke the handler for ``action_type``.

        Args:
            action_type: Action type of the node
            config: Raw node configuration
            context: Step context (``step_id`` is the idempotency token)

        Returns:
            ActionResult; never raises for handler failures
        """
        extra = with_execution_context(
            tenant_id=context.tenant_id,
            workflow_id=context.workflow_id,
            execution_id=context.execution_id,
            node_id=context.node_id,
            action_type=action_type,
        )

        try:
            kind = parse_action_type(action_type)
            decoded = decode_action_config(kind, config)
        except ConfigDecodeError as e:
            logger.warning("Action configuration rejected", extra={**extra, "error": str(e)})
            return ActionResult.failed(f"Invalid configuration: {e}", FailureCategory.VALIDATION)

        handler = self._handlers.get(kind)
        if handler is None:
            logger.error("No handler registered", extra=extra)
            return ActionResult.failed(
                f"No handler registered for {kind.value}", FailureCategory.PERMANENT
            )

        if not self._wait_for_straggler(context.execution_id):
            logger.warning("Previous attempt still running", extra=extra)
            return ActionResult.failed(
                "Previous attempt of this action is still running", FailureCategory.TRANSIENT
            )

        try:
            result, straggler = run_with_timeout(handler, self._timeout_s, decoded, context)
        except ActionError as e:
            logger.warning(
                "Action failed",
                extra={**extra, "error": str(e), "category": e.category.value},
            )
            return ActionResult.failed(str(e), e.category)
        except TRANSIENT_ERRORS as e:
            logger.warning("Action failed transiently", extra={**extra, "error": str(e)})
            return ActionResult.failed(str(e), FailureCategory.TRANSIENT)
        except Exception as e:
            logger.error("Unexpected action error", extra=extra, exc_info=True)
            return ActionResult.failed(f"Unexpected error: {e}", FailureCategory.PERMANENT)

        if straggler is not None:
            self._track_straggler(context.execution_id, straggler)
            logger.warning(
                "Action timed out",
                extra={**extra, "timeout_s": self._timeout_s},
            )
            return ActionResult.failed(
                f"Action timed out after {self._timeout_s}s", FailureCategory.TRANSIENT
            )

        if not isinstance(result, ActionResult):
            logger.error("Handler returned no ActionResult", extra=extra)
            return ActionResult.failed(
                "Handler returned an invalid result", FailureCategory.PERMANENT
            )
        return result


def build_default_dispatcher(
    records: RecordStore,
    mailer: Mailer,
    directory: UserDirectory | None = None,
    timeout_s: float | None = None,
) -> ActionDispatcher:
    """
    Dispatcher with the built-in handler for every action type.

    Raises:
        UnregisteredActionError: If an action type was left without a handler
    """
    directory = directory or InMemoryUserDirectory()
    dispatcher = ActionDispatcher(timeout_s=timeout_s)

    handlers: list[ActionHandler] = [
        CreateProjectHandler(records),
        CreateServiceOrderHandler(records),
        CreateInvoiceHandler(records),
        CreateTaskHandler(records),
        CreateChecklistHandler(records),
        CreateNoteHandler(records),
        UpdateStatusHandler(records),
        SendEmailHandler(mailer),
        SendHelpdeskEmailHandler(mailer),
        AssignUserHandler(records, directory),
        AssignTicketHandler(records, directory),
        UpdateTicketStatusHandler(records),
        DelayHandler(),
    ]
    for handler in handlers:
        dispatcher.register(handler.action_type, handler)

    missing = dispatcher.missing()
    if missing:
        raise UnregisteredActionError(
            f"No handler for action types: {', '.join(a.value for a in missing)}"
        )
    return dispatcher
