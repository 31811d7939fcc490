"""Workflow authoring routes."""
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from workflow_automation.api.routes.executions import ExecutionDetail
from workflow_automation.engine import (
    ExecutionEngine,
    WorkflowNotFound,
    WorkflowRepository,
    WorkflowValidationFailed,
    get_engine,
    get_workflow_repository,
)
from workflow_automation.events import TriggerEvent
from workflow_automation.graph import MalformedGraph, WorkflowDefinition
from workflow_automation.observability import get_logger
from workflow_automation.validation import Issue, Severity, ValidationReport, validate_workflow

logger = get_logger(__name__)
router = APIRouter()


class ValidationResponse(BaseModel):
    """Response model for a validation run."""

    is_valid: bool = Field(..., description="True when there are no error issues")
    issues: list[Issue] = Field(default_factory=list)


class WorkflowResponse(BaseModel):
    """Response model for a stored workflow."""

    workflow: WorkflowDefinition
    warnings: list[Issue] = Field(
        default_factory=list,
        description="Non-blocking validation warnings",
    )


def _report(definition: WorkflowDefinition) -> ValidationReport:
    try:
        graph = definition.to_graph()
    except MalformedGraph as e:
        return ValidationReport(
            issues=[Issue(severity=Severity.ERROR, node_id=e.node_id, message=str(e))]
        )
    return validate_workflow(graph)


def _validation_failed(issues: list[Issue]) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={
            "message": "Validation failed",
            "issues": [i.model_dump(mode="json") for i in issues],
        },
    )


@router.post("/v1/workflows/validate", response_model=ValidationResponse)
def validate_definition(definition: WorkflowDefinition) -> ValidationResponse:
    """Validate a workflow without storing it."""
    report = _report(definition)
    return ValidationResponse(is_valid=report.is_valid, issues=report.issues)


@router.get("/v1/workflows", response_model=list[WorkflowDefinition])
def list_workflows(
    tenant_id: str = Query(..., description="Tenant ID"),
    repository: WorkflowRepository = Depends(get_workflow_repository),
) -> list[WorkflowDefinition]:
    return repository.list_workflows(tenant_id)


@router.get("/v1/workflows/{workflow_id}", response_model=WorkflowDefinition)
def get_workflow(
    workflow_id: str,
    repository: WorkflowRepository = Depends(get_workflow_repository),
) -> WorkflowDefinition:
    definition = repository.get(workflow_id)
    if definition is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return definition


@router.put("/v1/workflows/{workflow_id}", response_model=WorkflowResponse)
def save_workflow(
    workflow_id: str,
    definition: WorkflowDefinition,
    repository: WorkflowRepository = Depends(get_workflow_repository),
) -> WorkflowResponse:
    """
    Save a workflow.

    Raises:
        HTTPException: 400 on an id mismatch, 422 with the issues when the
            workflow has validation errors
    """
    if definition.id != workflow_id:
        raise HTTPException(status_code=400, detail="Workflow id does not match the path")

    try:
        report = repository.save(definition)
    except MalformedGraph as e:
        raise _validation_failed(
            [Issue(severity=Severity.ERROR, node_id=e.node_id, message=str(e))]
        )
    except WorkflowValidationFailed as e:
        raise _validation_failed(e.issues)

    logger.info(
        "Workflow saved via API",
        extra={"workflow_id": workflow_id, "tenant_id": definition.tenant_id},
    )
    return WorkflowResponse(workflow=definition, warnings=report.warnings)


@router.post("/v1/workflows/{workflow_id}/activate", response_model=WorkflowResponse)
def activate_workflow(
    workflow_id: str,
    repository: WorkflowRepository = Depends(get_workflow_repository),
) -> WorkflowResponse:
    try:
        report = repository.activate(workflow_id)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except WorkflowValidationFailed as e:
        raise _validation_failed(e.issues)
    return WorkflowResponse(workflow=repository.require(workflow_id), warnings=report.warnings)


@router.post("/v1/workflows/{workflow_id}/deactivate", response_model=WorkflowResponse)
def deactivate_workflow(
    workflow_id: str,
    repository: WorkflowRepository = Depends(get_workflow_repository),
) -> WorkflowResponse:
    try:
        definition = repository.deactivate(workflow_id)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return WorkflowResponse(workflow=definition)


@router.post("/v1/workflows/{workflow_id}/test-run", response_model=ExecutionDetail)
def test_run_workflow(
    workflow_id: str,
    event: TriggerEvent,
    engine: ExecutionEngine = Depends(get_engine),
) -> ExecutionDetail:
    """
    Dry run against a sample event.

    Conditions are evaluated for real; no action has side effects.
    """
    try:
        execution = engine.test_run(workflow_id, event)
    except WorkflowNotFound:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return ExecutionDetail.build(execution, engine.store)
