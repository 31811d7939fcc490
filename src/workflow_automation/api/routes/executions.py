"""Execution history routes."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from workflow_automation.engine import ExecutionEngine, get_engine
from workflow_automation.observability import get_logger
from workflow_automation.storage import (
    Execution,
    ExecutionNotFound,
    ExecutionStatus,
    ExecutionStep,
    ExecutionStore,
    get_execution_store,
)

logger = get_logger(__name__)
router = APIRouter()


class ExecutionSummary(BaseModel):
    """Response model for an execution in history listings."""

    execution_id: str = Field(..., description="Execution ID")
    workflow_id: str = Field(..., description="Workflow ID")
    tenant_id: str = Field(..., description="Tenant ID")
    status: ExecutionStatus = Field(..., description="Execution status")
    error: str | None = Field(default=None, description="Failure reason (if failed)")
    test_mode: bool = Field(default=False, description="Dry run from the editor")
    trace_id: str | None = Field(default=None, description="Trace ID")
    resume_at: datetime | None = Field(default=None, description="Resume time (if suspended)")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Update timestamp")

    @classmethod
    def from_execution(cls, execution: Execution, **extra) -> "ExecutionSummary":
        return cls(
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            tenant_id=execution.tenant_id,
            status=execution.status,
            error=execution.error,
            test_mode=execution.test_mode,
            trace_id=execution.trace_id,
            resume_at=execution.resume_at,
            created_at=execution.created_at,
            updated_at=execution.updated_at,
            **extra,
        )


class ExecutionDetail(ExecutionSummary):
    """Execution with its per-node outcomes."""

    pending_node_id: str | None = Field(default=None, description="Next node after resumption")
    steps: list[ExecutionStep] = Field(default_factory=list)

    @classmethod
    def build(cls, execution: Execution, store: ExecutionStore) -> "ExecutionDetail":
        return cls.from_execution(
            execution,
            pending_node_id=execution.pending_node_id,
            steps=store.steps(execution.id),
        )


class CancelRequest(BaseModel):
    """Request model for cancelling an execution."""

    reason: str | None = Field(default=None, description="Operator note")


@router.get("/v1/executions", response_model=list[ExecutionSummary])
def list_executions(
    tenant_id: str = Query(..., description="Tenant ID"),
    workflow_id: str | None = Query(default=None, description="Restrict to one workflow"),
    status: ExecutionStatus | None = Query(default=None, description="Restrict to one status"),
    limit: int = Query(default=50, ge=1, le=500),
    store: ExecutionStore = Depends(get_execution_store),
) -> list[ExecutionSummary]:
    """List executions of a tenant, newest first."""
    executions = store.list_executions(tenant_id, workflow_id, status=status, limit=limit)
    return [ExecutionSummary.from_execution(e) for e in executions]


@router.get("/v1/executions/{execution_id}", response_model=ExecutionDetail)
def get_execution(
    execution_id: str,
    store: ExecutionStore = Depends(get_execution_store),
) -> ExecutionDetail:
    """
    Get an execution and its steps.

    Raises:
        HTTPException: If execution not found
    """
    execution = store.get(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return ExecutionDetail.build(execution, store)


@router.post("/v1/executions/{execution_id}/cancel", response_model=ExecutionSummary)
def cancel_execution(
    execution_id: str,
    request: CancelRequest | None = None,
    engine: ExecutionEngine = Depends(get_engine),
) -> ExecutionSummary:
    """Cancel a running or suspended execution; terminal ones are returned as is."""
    try:
        execution = engine.cancel(execution_id, reason=request.reason if request else None)
    except ExecutionNotFound:
        raise HTTPException(status_code=404, detail="Execution not found")

    logger.info(
        "Execution cancel requested via API",
        extra={"execution_id": execution_id, "status": execution.status.value},
    )
    return ExecutionSummary.from_execution(execution)
