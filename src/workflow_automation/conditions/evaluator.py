"""
Condition evaluator - resolves a condition node to a branch.

Evaluation is pure: it reads the event context and never mutates it.
Any failure is logged and the condition evaluates to ``False``.
"""
import math
from typing import Any

from workflow_automation.events import MISSING, EventContext
from workflow_automation.graph import (
    ComparisonOperator,
    ConditionNode,
    ConditionType,
    ConfigDecodeError,
    decode_condition_config,
)
from workflow_automation.graph.configs import ConditionConfig
from workflow_automation.observability import get_logger, with_execution_context

logger = get_logger(__name__)

# Document keys inspected by the relationship conditions
ASSIGNEE_KEYS = ("assigned_to", "assignedTo", "assigned_to_id", "assignedToId")
CREATOR_KEYS = ("created_by", "createdBy")
CUSTOMER_KEYS = ("customer_id", "customerId")
PROJECT_KEYS = ("project_id", "projectId")


class ConditionEvaluationError(Exception):
    """A condition could not be evaluated against the event context."""

    pass


def evaluate(node: ConditionNode, context: EventContext) -> bool:
    """
    Evaluate a condition node.

    Args:
        node: Condition node from the workflow graph
        context: Event context of the running execution

    Returns:
        The selected branch; ``False`` whenever evaluation fails
    """
    extra = with_execution_context(tenant_id=context.tenant_id, node_id=node.id)
    try:
        try:
            config = decode_condition_config(node.config)
        except ConfigDecodeError as e:
            raise ConditionEvaluationError(f"Invalid condition configuration: {e}") from e
        return evaluate_config(config, context)
    except ConditionEvaluationError as e:
        logger.warning(
            "Condition evaluated to false: %s", e, extra=extra,
        )
        return False
    except Exception:
        # Fail closed, an evaluator bug must never fail the execution
        logger.error("Unexpected condition evaluation error", extra=extra, exc_info=True)
        return False


def evaluate_config(config: ConditionConfig, context: EventContext) -> bool:
    """
    Evaluate a decoded condition.

    Raises:
        ConditionEvaluationError: When the comparison cannot be performed
    """
    condition_type = config.condition_type

    if condition_type == ConditionType.FIELD_COMPARISON:
        actual = context.lookup(config.field, document_type=config.document_type)
        return compare(actual, config.operator, config.value, field=config.field)

    if condition_type == ConditionType.IS_ASSIGNED_TO_CURRENT_USER:
        return _is_current_user(context, ASSIGNEE_KEYS)

    if condition_type == ConditionType.IS_CREATED_BY_CURRENT_USER:
        return _is_current_user(context, CREATOR_KEYS)

    if condition_type == ConditionType.HAS_CUSTOMER:
        return _has_reference(context, CUSTOMER_KEYS)

    if condition_type == ConditionType.HAS_PROJECT:
        return _has_reference(context, PROJECT_KEYS)

    raise ConditionEvaluationError(f"Unhandled condition type: {condition_type}")


def compare(actual: Any, operator: ComparisonOperator, expected: Any, field: str | None = None) -> bool:
    """
    Apply a comparison operator.

    ``equals``/``not_equals`` compare numerically when both sides are
    numbers, otherwise as case-sensitive strings. Ordering operators need
    numbers on both sides.

    Raises:
        ConditionEvaluationError: Ordering comparison on non-numeric values
    """
    if actual is MISSING:
        if operator == ComparisonOperator.NOT_EQUALS:
            return True
        if operator in (ComparisonOperator.GREATER_THAN, ComparisonOperator.LESS_THAN):
            raise ConditionEvaluationError(f"Field {field!r} is not present")
        return False

    if operator in (ComparisonOperator.EQUALS, ComparisonOperator.NOT_EQUALS):
        left, right = to_number(actual), to_number(expected)
        if left is not None and right is not None:
            equal = left == right
        else:
            equal = to_text(actual) == to_text(expected)
        return equal if operator == ComparisonOperator.EQUALS else not equal

    if operator in (ComparisonOperator.GREATER_THAN, ComparisonOperator.LESS_THAN):
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            raise ConditionEvaluationError(
                f"Cannot compare {actual!r} with {expected!r} numerically"
            )
        return left > right if operator == ComparisonOperator.GREATER_THAN else left < right

    if operator == ComparisonOperator.CONTAINS:
        return to_text(expected) in to_text(actual)

    raise ConditionEvaluationError(f"Unhandled operator: {operator}")


def to_number(value: Any) -> float | None:
    """Finite float for numbers and numeric strings, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_text(value: Any) -> str:
    if value is None or value is MISSING:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _is_current_user(context: EventContext, keys: tuple[str, ...]) -> bool:
    actor = context.actor_user_id
    if not actor:
        return False
    value = context.lookup(*keys)
    return value is not MISSING and str(value) == str(actor)


def _has_reference(context: EventContext, keys: tuple[str, ...]) -> bool:
    value = context.lookup(*keys)
    return value is not MISSING and bool(value)
