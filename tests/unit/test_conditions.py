"""Tests for the condition evaluator."""
import logging

import pytest

from workflow_automation.conditions import ConditionEvaluationError, compare, evaluate
from workflow_automation.events import MISSING, EventContext, TriggerEvent
from workflow_automation.graph import ComparisonOperator, ConditionNode


def _context(document, actor="user-1", created=None) -> EventContext:
    return EventContext(
        event=TriggerEvent(trigger_type="quote_approved", document=document, actor_user_id=actor),
        tenant_id="tenant-1",
        created_records=created or {},
    )


def _comparison(field, operator, value, **extra) -> ConditionNode:
    config = {
        "condition_type": "field_comparison",
        "field": field,
        "operator": operator,
        "value": value,
        **extra,
    }
    return ConditionNode(id="cond", config=config)


class TestFieldComparison:
    """Test field_comparison semantics."""

    def test_equals_matches_status(self):
        node = _comparison("status", "equals", "approved")

        assert evaluate(node, _context({"status": "approved"})) is True
        assert evaluate(node, _context({"status": "draft"})) is False

    def test_equals_is_case_sensitive(self):
        node = _comparison("status", "equals", "approved")

        assert evaluate(node, _context({"status": "Approved"})) is False

    def test_equals_coerces_numbers(self):
        node = _comparison("total_amount", "equals", "100")

        assert evaluate(node, _context({"total_amount": 100.0})) is True
        assert evaluate(node, _context({"total_amount": "100.00"})) is True

    def test_not_equals(self):
        node = _comparison("priority", "not_equals", "low")

        assert evaluate(node, _context({"priority": "high"})) is True
        assert evaluate(node, _context({"priority": "low"})) is False

    def test_greater_than(self):
        node = _comparison("total_amount", "greater_than", "10000")

        assert evaluate(node, _context({"total_amount": 15000})) is True
        assert evaluate(node, _context({"total_amount": 500})) is False

    def test_less_than(self):
        node = _comparison("total_amount", "less_than", 50)

        assert evaluate(node, _context({"total_amount": "49.5"})) is True

    def test_non_numeric_ordering_fails_closed(self, caplog):
        node = _comparison("total_amount", "greater_than", "100")

        with caplog.at_level(logging.WARNING):
            result = evaluate(node, _context({"total_amount": "not-a-number"}))

        assert result is False
        assert any(r.levelno == logging.WARNING for r in caplog.records)

    def test_contains_is_substring_match(self):
        node = _comparison("title", "contains", "urgent")

        assert evaluate(node, _context({"title": "This is urgent!"})) is True
        assert evaluate(node, _context({"title": "Routine"})) is False

    def test_missing_field(self):
        context = _context({})

        assert evaluate(_comparison("status", "equals", "x"), context) is False
        assert evaluate(_comparison("status", "not_equals", "x"), context) is True
        assert evaluate(_comparison("status", "contains", "x"), context) is False
        assert evaluate(_comparison("status", "greater_than", 1), context) is False

    def test_field_of_created_record(self):
        node = _comparison("status", "equals", "planning", document_type="project")
        context = _context({}, created={"project": {"id": "p1", "status": "planning"}})

        assert evaluate(node, context) is True

    def test_invalid_config_fails_closed(self, caplog):
        node = ConditionNode(id="cond", config={"operator": "between"})

        with caplog.at_level(logging.WARNING):
            assert evaluate(node, _context({"status": "x"})) is False

        assert caplog.records

    def test_evaluation_does_not_mutate_context(self):
        document = {"status": "approved"}
        context = _context(document)

        evaluate(_comparison("status", "equals", "approved"), context)

        assert context.document == {"status": "approved"}
        assert context.created_records == {}


class TestRelationshipConditions:
    """Test conditions on the event actor and document references."""

    def test_is_assigned_to_current_user(self):
        node = ConditionNode(id="c", config={"condition_type": "is_assigned_to_current_user"})

        assert evaluate(node, _context({"assigned_to": "user-1"})) is True
        assert evaluate(node, _context({"assigned_to": "user-2"})) is False
        assert evaluate(node, _context({"assigned_to": "user-1"}, actor=None)) is False

    def test_is_created_by_current_user(self):
        node = ConditionNode(id="c", config={"condition_type": "is_created_by_current_user"})

        assert evaluate(node, _context({"createdBy": "user-1"})) is True
        assert evaluate(node, _context({})) is False

    def test_has_customer(self):
        node = ConditionNode(id="c", config={"condition_type": "has_customer"})

        assert evaluate(node, _context({"customer_id": "cust-9"})) is True
        assert evaluate(node, _context({"customer_id": ""})) is False
        assert evaluate(node, _context({"customer_id": None})) is False

    def test_has_project(self):
        node = ConditionNode(id="c", config={"condition_type": "has_project"})

        assert evaluate(node, _context({"projectId": "p-1"})) is True
        assert evaluate(node, _context({})) is False


class TestCompare:
    """Test the comparison primitive directly."""

    @pytest.mark.parametrize(
        "actual, operator, expected, result",
        [
            (True, ComparisonOperator.EQUALS, "true", True),
            (5, ComparisonOperator.EQUALS, 5.0, True),
            ("abc", ComparisonOperator.CONTAINS, "b", True),
            (MISSING, ComparisonOperator.NOT_EQUALS, "x", True),
            ("10", ComparisonOperator.GREATER_THAN, "9", True),
        ],
    )
    def test_compare(self, actual, operator, expected, result):
        assert compare(actual, operator, expected) is result

    def test_ordering_rejects_booleans(self):
        with pytest.raises(ConditionEvaluationError):
            compare(True, ComparisonOperator.GREATER_THAN, 0)
