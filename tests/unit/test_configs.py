"""Tests for typed node configuration records."""
from datetime import timedelta

import pytest

from workflow_automation.graph import ActionType, ConfigDecodeError, decode_action_config
from workflow_automation.graph.configs import (
    ACTION_CONFIG_MODELS,
    AssignmentType,
    MAX_DELAY,
    decode_condition_config,
    parse_action_type,
)


class TestActionConfigs:
    """Test decoding of action configuration."""

    def test_every_action_type_has_a_record(self):
        assert set(ACTION_CONFIG_MODELS) == set(ActionType)

    def test_delay_decodes_to_timedelta(self):
        config = decode_action_config("delay", {"duration": 2, "unit": "days"})

        assert config.delta == timedelta(hours=48)

    def test_longest_delay_accepted(self):
        config = decode_action_config("delay", {"duration": 3650, "unit": "days"})

        assert config.delta == MAX_DELAY

    @pytest.mark.parametrize(
        "raw",
        [
            {"duration": 0, "unit": "days"},
            {"duration": -5, "unit": "minutes"},
            {"unit": "hours"},
            {"duration": 2, "unit": "weeks"},
            {"duration": 3651, "unit": "days"},
            {"duration": 10**9, "unit": "days"},
        ],
    )
    def test_invalid_delay_rejected(self, raw):
        with pytest.raises(ConfigDecodeError):
            decode_action_config("delay", raw)

    def test_send_email_requires_to_and_subject(self):
        with pytest.raises(ConfigDecodeError) as exc_info:
            decode_action_config("send_email", {"to": "  ", "message": "hi"})

        message = str(exc_info.value)
        assert "to" in message
        assert "subject" in message

    def test_blank_email_message_is_a_recommendation(self):
        config = decode_action_config("send_email", {"to": "a@example.com", "subject": "Hi"})

        assert config.recommendations()

    def test_aliases_from_the_editor(self):
        config = decode_action_config("update_status", {"newStatus": "approved"})
        task = decode_action_config("create_task", {"name": "Call back", "assignedTo": "u1"})

        assert config.status == "approved"
        assert task.title == "Call back"
        assert task.assigned_to == "u1"

    def test_specific_user_assignment_requires_user(self):
        with pytest.raises(ConfigDecodeError):
            decode_action_config("assign_user", {"assignment_type": "specific_user"})

        config = decode_action_config(
            "assign_ticket", {"assignmentType": "specific_user", "userId": "u7"}
        )
        assert config.assignment_type == AssignmentType.SPECIFIC_USER
        assert config.user_id == "u7"

    def test_ticket_status_is_restricted(self):
        with pytest.raises(ConfigDecodeError):
            decode_action_config("update_ticket_status", {"new_status": "archived"})

    def test_unknown_action_type(self):
        with pytest.raises(ConfigDecodeError, match="unknown action type"):
            parse_action_type("launch_rocket")
        with pytest.raises(ConfigDecodeError, match="missing"):
            parse_action_type(None)

    def test_unknown_keys_are_ignored(self):
        config = decode_action_config("create_note", {"content": "hello", "color": "red"})

        assert config.content == "hello"


class TestConditionConfig:
    """Test decoding of condition configuration."""

    def test_field_comparison_requires_field(self):
        with pytest.raises(ConfigDecodeError, match="requires a field"):
            decode_condition_config({"condition_type": "field_comparison", "value": 1})

    def test_defaults(self):
        config = decode_condition_config({"field": "status", "value": "approved"})

        assert config.condition_type.value == "field_comparison"
        assert config.operator.value == "equals"

    def test_unknown_operator(self):
        with pytest.raises(ConfigDecodeError):
            decode_condition_config({"field": "status", "operator": "matches"})

    def test_relationship_conditions_need_no_field(self):
        config = decode_condition_config({"conditionType": "has_customer"})

        assert config.recommendations() == []
