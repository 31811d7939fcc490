"""
Execution engine package.

This package provides:
- ExecutionEngine: graph walk, retries, suspension and resumption
- WorkflowRepository: workflow definitions behind the activation gate
"""

from .engine import CancelledExecution, ExecutionEngine, get_engine, set_engine
from .repository import (
    InMemoryWorkflowRepository,
    RedisWorkflowRepository,
    WorkflowNotFound,
    WorkflowRepository,
    WorkflowValidationFailed,
    get_workflow_repository,
    set_workflow_repository,
)

__all__ = [
    # Engine
    "CancelledExecution",
    "ExecutionEngine",
    "get_engine",
    "set_engine",
    # Repository
    "InMemoryWorkflowRepository",
    "RedisWorkflowRepository",
    "WorkflowNotFound",
    "WorkflowRepository",
    "WorkflowValidationFailed",
    "get_workflow_repository",
    "set_workflow_repository",
]
