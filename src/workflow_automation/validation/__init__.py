"""Workflow validation package."""
from workflow_automation.validation.validator import (
    Issue,
    Severity,
    ValidationReport,
    validate,
    validate_workflow,
)

__all__ = ["Issue", "Severity", "ValidationReport", "validate", "validate_workflow"]
