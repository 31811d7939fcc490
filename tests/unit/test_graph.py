"""Tests for the workflow graph model."""
import pytest
from pydantic import ValidationError

from workflow_automation.graph import (
    ActionNode,
    ConditionNode,
    ConnectionRow,
    MalformedGraph,
    NodeRow,
    TriggerNode,
    WorkflowDefinition,
    WorkflowGraph,
    WorkflowRow,
)
from workflow_automation.graph.models import node_from_row


def _workflow(**overrides) -> WorkflowRow:
    data = {"id": "wf-1", "tenant_id": "tenant-1", "trigger_type": "quote_approved"}
    data.update(overrides)
    return WorkflowRow(**data)


class TestRows:
    """Test persisted row models."""

    def test_config_accepts_json_string(self):
        row = NodeRow(
            workflow_id="wf-1",
            node_id="n1",
            node_type="action",
            action_type="delay",
            config='{"duration": 2, "unit": "days"}',
        )

        assert row.config == {"duration": 2, "unit": "days"}

    def test_empty_config_string_is_empty_object(self):
        row = NodeRow(workflow_id="wf-1", node_id="n1", node_type="action", config="")

        assert row.config == {}

    def test_config_must_be_object(self):
        with pytest.raises(ValidationError):
            NodeRow(workflow_id="wf-1", node_id="n1", node_type="action", config="[1, 2]")

    def test_node_from_row_builds_tagged_union(self):
        trigger = node_from_row(
            NodeRow(
                workflow_id="wf-1",
                node_id="t",
                node_type="trigger",
                config={"triggerType": "invoice_sent"},
            )
        )
        condition = node_from_row(
            NodeRow(workflow_id="wf-1", node_id="c", node_type="condition", config={"field": "x"})
        )
        action = node_from_row(
            NodeRow(
                workflow_id="wf-1",
                node_id="a",
                node_type="action",
                config={"actionType": "delay", "duration": 1},
                position_x=10,
                position_y=20,
            )
        )

        assert isinstance(trigger, TriggerNode) and trigger.trigger_type == "invoice_sent"
        assert isinstance(condition, ConditionNode) and condition.kind == "condition"
        assert isinstance(action, ActionNode)
        assert action.action_type == "delay"
        assert action.is_delay
        assert (action.position.x, action.position.y) == (10, 20)

    def test_node_from_row_rejects_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown node type"):
            node_from_row(NodeRow(workflow_id="wf-1", node_id="x", node_type="loop"))

    def test_nodes_are_immutable(self):
        node = ConditionNode(id="c", config={})

        with pytest.raises(ValidationError):
            node.id = "other"


class TestWorkflowGraph:
    """Test graph construction and adjacency queries."""

    def test_duplicate_node_ids_rejected(self):
        nodes = [
            NodeRow(workflow_id="wf-1", node_id="a", node_type="trigger"),
            NodeRow(workflow_id="wf-1", node_id="a", node_type="action"),
        ]

        with pytest.raises(MalformedGraph) as exc_info:
            WorkflowGraph.from_rows(_workflow(), nodes, [])

        assert exc_info.value.node_id == "a"

    def test_dangling_edge_rejected(self):
        nodes = [NodeRow(workflow_id="wf-1", node_id="a", node_type="trigger")]
        edges = [ConnectionRow(workflow_id="wf-1", source_node_id="a", target_node_id="ghost")]

        with pytest.raises(MalformedGraph) as exc_info:
            WorkflowGraph.from_rows(_workflow(), nodes, edges)

        assert exc_info.value.node_id == "ghost"

    def test_rows_of_another_workflow_rejected(self):
        nodes = [NodeRow(workflow_id="wf-2", node_id="a", node_type="trigger")]

        with pytest.raises(MalformedGraph, match="belongs to workflow wf-2"):
            WorkflowGraph.from_rows(_workflow(), nodes, [])

    def test_unknown_node_type_is_malformed(self):
        nodes = [NodeRow(workflow_id="wf-1", node_id="a", node_type="webhook")]

        with pytest.raises(MalformedGraph):
            WorkflowGraph.from_rows(_workflow(), nodes, [])

    def test_outgoing_preserves_persisted_order(self, quote_workflow):
        graph = quote_workflow.to_graph()

        outgoing = graph.outgoing("high_value")

        assert [c.target_node_id for c in outgoing] == ["review_task", "notify"]
        assert [c.branch for c in outgoing] == ["true", "false"]
        assert [c.source_node_id for c in graph.incoming("notify")] == ["high_value"]

    def test_branch_falls_back_to_label(self):
        row = ConnectionRow(
            workflow_id="wf-1", source_node_id="c", target_node_id="a", label="false"
        )
        definition = WorkflowDefinition(
            workflow=_workflow(),
            nodes=[
                NodeRow(workflow_id="wf-1", node_id="c", node_type="condition"),
                NodeRow(workflow_id="wf-1", node_id="a", node_type="action"),
            ],
            connections=[row],
        )

        assert definition.to_graph().outgoing("c")[0].branch == "false"

    def test_node_lookup(self, quote_workflow):
        graph = quote_workflow.to_graph()

        assert graph.node("review_task").action_type == "create_task"
        assert graph.has_node("notify")
        assert not graph.has_node("missing")
        with pytest.raises(MalformedGraph):
            graph.node("missing")

    def test_reachable_from(self, quote_workflow):
        graph = quote_workflow.to_graph()

        assert graph.reachable_from("trigger") == ["high_value", "review_task", "notify"]
        assert graph.reachable_from("notify") == []

    def test_trigger_nodes(self, quote_workflow):
        graph = quote_workflow.to_graph()

        assert [n.id for n in graph.trigger_nodes()] == ["trigger"]
        assert graph.workflow_id == "wf-1"

    def test_definition_round_trips_through_json(self, quote_workflow):
        restored = WorkflowDefinition.model_validate_json(quote_workflow.model_dump_json())

        assert restored == quote_workflow
        assert [n.id for n in restored.to_graph().nodes] == [
            "trigger", "high_value", "review_task", "notify",
        ]
