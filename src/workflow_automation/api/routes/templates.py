"""Workflow template routes."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from workflow_automation.api.routes.workflows import WorkflowResponse
from workflow_automation.engine import (
    WorkflowRepository,
    WorkflowValidationFailed,
    get_workflow_repository,
)
from workflow_automation.observability import get_logger
from workflow_automation.templates import (
    TemplateNotFound,
    WorkflowTemplate,
    instantiate_template,
    list_templates,
)

logger = get_logger(__name__)
router = APIRouter()


class InstantiateTemplateRequest(BaseModel):
    """Request model for copying a template into a tenant."""

    tenant_id: str = Field(..., description="Tenant receiving the workflow")
    name: str | None = Field(default=None, description="Workflow name (template name if omitted)")
    workflow_id: str | None = Field(default=None, description="Workflow ID (generated if omitted)")


@router.get("/v1/workflow-templates", response_model=list[WorkflowTemplate])
def get_templates(category: str | None = None) -> list[WorkflowTemplate]:
    return list_templates(category)


@router.post(
    "/v1/workflow-templates/{key}/instantiate",
    status_code=201,
    response_model=WorkflowResponse,
)
def instantiate(
    key: str,
    request: InstantiateTemplateRequest,
    repository: WorkflowRepository = Depends(get_workflow_repository),
) -> WorkflowResponse:
    """Create an inactive workflow from a built-in template."""
    try:
        definition = instantiate_template(
            key,
            tenant_id=request.tenant_id,
            workflow_id=request.workflow_id,
            name=request.name,
        )
    except TemplateNotFound:
        raise HTTPException(status_code=404, detail="Template not found")

    try:
        report = repository.save(definition)
    except WorkflowValidationFailed as e:
        logger.error("Built-in template failed validation", extra={"template": key})
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(
        "Workflow created from template",
        extra={"template": key, "workflow_id": definition.id, "tenant_id": request.tenant_id},
    )
    return WorkflowResponse(workflow=definition, warnings=report.warnings)
