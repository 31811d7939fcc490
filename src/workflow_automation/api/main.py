"""FastAPI application."""
from fastapi import FastAPI

from workflow_automation import __version__
from workflow_automation.api.routes import events, executions, health, templates, workflows
from workflow_automation.observability import setup_logging

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="Workflow Automation",
    description="Trigger, condition and action workflows for business events",
    version=__version__,
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(workflows.router, tags=["workflows"])
app.include_router(templates.router, tags=["templates"])
app.include_router(events.router, tags=["events"])
app.include_router(executions.router, tags=["executions"])


@app.get("/")
def root() -> dict:
    """Root endpoint."""
    return {
        "service": "workflow-automation",
        "version": __version__,
        "docs": "/docs",
    }
