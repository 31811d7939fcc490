"""Storage package."""
from workflow_automation.storage.execution_store import (
    CANCELLED,
    Execution,
    ExecutionAlreadyExists,
    ExecutionNotFound,
    ExecutionStatus,
    ExecutionStep,
    ExecutionStore,
    get_execution_store,
    InMemoryExecutionStore,
    InvalidTransition,
    RedisExecutionStore,
    set_execution_store,
    StepOutcome,
)

__all__ = [
    "CANCELLED",
    "Execution",
    "ExecutionAlreadyExists",
    "ExecutionNotFound",
    "ExecutionStatus",
    "ExecutionStep",
    "ExecutionStore",
    "get_execution_store",
    "InMemoryExecutionStore",
    "InvalidTransition",
    "RedisExecutionStore",
    "set_execution_store",
    "StepOutcome",
]
