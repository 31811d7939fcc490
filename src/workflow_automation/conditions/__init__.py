"""Condition evaluation package."""
from workflow_automation.conditions.evaluator import (
    ConditionEvaluationError,
    compare,
    evaluate,
    evaluate_config,
)

__all__ = ["ConditionEvaluationError", "compare", "evaluate", "evaluate_config"]
