"""Health check routes."""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from workflow_automation.engine import ExecutionEngine, get_engine

router = APIRouter()


@router.get("/health")
def health_check(engine: ExecutionEngine = Depends(get_engine)) -> JSONResponse:
    """
    Readiness of the engine.

    Checks that the execution store and workflow repository answer and
    that every action type has a handler. Any failed check makes the
    service ``degraded`` with status 503.

    Returns:
        Status dict with one entry per check
    """
    missing = [a.value for a in engine.dispatcher.missing()]
    checks = {
        "execution_store": "ok" if engine.store.ping() else "unavailable",
        "workflow_repository": "ok" if engine.repository.ping() else "unavailable",
        "action_handlers": "ok" if not missing else f"missing: {', '.join(missing)}",
    }
    healthy = all(value == "ok" for value in checks.values())

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "service": "workflow-automation",
            "checks": checks,
        },
    )
