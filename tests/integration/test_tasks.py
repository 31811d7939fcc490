"""Integration tests for Celery tasks (called in-process, no broker)."""
from unittest.mock import patch

import pytest

from workflow_automation.engine import set_engine
from workflow_automation.events import TriggerEvent
from workflow_automation.integrations import tasks
from workflow_automation.integrations.celery_app import celery_app
from workflow_automation.storage import ExecutionStatus


@pytest.fixture(autouse=True)
def installed_engine(engine):
    set_engine(engine)
    yield engine
    set_engine(None)


@pytest.fixture
def delay_workflow(build_workflow):
    return build_workflow(
        nodes=[
            ("wait", "action", "delay", {"duration": 1, "unit": "days"}),
            ("task", "action", "create_task", {"title": "Later"}),
        ],
        edges=[("trigger", "wait"), ("wait", "task")],
    )


def test_resume_sweep_is_scheduled():
    schedule = celery_app.conf.beat_schedule["resume-due-executions"]

    assert schedule["task"] == "resume_due_executions"
    assert schedule["schedule"] == 60.0


def test_process_event_fans_out_executions(repository, store, quote_workflow):
    repository.save(quote_workflow)

    with patch("workflow_automation.integrations.tasks.run_execution") as run_execution:
        result = tasks.process_event({"trigger_type": "quote_approved", "document": {}})

    [execution_id] = result["execution_ids"]
    run_execution.delay.assert_called_once_with(execution_id)
    assert store.require(execution_id).status == ExecutionStatus.RUNNING


def test_process_event_without_match(repository):
    with patch("workflow_automation.integrations.tasks.run_execution") as run_execution:
        result = tasks.process_event({"trigger_type": "ticket_created"})

    assert result == {"execution_ids": []}
    run_execution.delay.assert_not_called()


def test_run_execution(engine, repository, records, quote_workflow):
    repository.save(quote_workflow)
    [execution] = engine.start(
        TriggerEvent(trigger_type="quote_approved", document={"total_amount": 50000})
    )

    result = tasks.run_execution(execution.id)

    assert result == {"execution_id": execution.id, "status": "completed", "error": None}
    assert len(records.all("task")) == 1


def test_run_execution_not_found():
    assert tasks.run_execution("missing") == {"error": "Execution not found"}


def test_resume_due_executions(engine, repository, clock, delay_workflow):
    repository.save(delay_workflow)
    [execution] = engine.handle_event(TriggerEvent(trigger_type="quote_approved"))

    with patch("workflow_automation.integrations.tasks.run_execution") as run_execution:
        assert tasks.resume_due_executions() == {"resumed": []}

        clock.advance(days=1)
        result = tasks.resume_due_executions()

    assert result == {"resumed": [execution.id]}
    run_execution.delay.assert_called_once_with(execution.id)


def test_cancel_execution(engine, repository, delay_workflow):
    repository.save(delay_workflow)
    [execution] = engine.handle_event(TriggerEvent(trigger_type="quote_approved"))

    result = tasks.cancel_execution(execution.id, reason="operator")

    assert result == {"execution_id": execution.id, "status": "failed"}
    assert tasks.cancel_execution("missing") == {"error": "Execution not found"}


def test_redelivered_process_event_keeps_one_execution(repository, store, quote_workflow):
    repository.save(quote_workflow)
    payload = TriggerEvent(trigger_type="quote_approved", document={"total_amount": 1}).model_dump(
        mode="json"
    )

    with patch("workflow_automation.integrations.tasks.run_execution"):
        first = tasks.process_event(payload)
        second = tasks.process_event(payload)

    assert first == second
    assert len(store.list_executions("tenant-1")) == 1


def test_resume_due_executions_reenqueues_expired_lease(engine, repository, clock, quote_workflow):
    repository.save(quote_workflow)
    # Started, but its run message was lost
    [execution] = engine.start(TriggerEvent(trigger_type="quote_approved"))

    with patch("workflow_automation.integrations.tasks.run_execution") as run_execution:
        assert tasks.resume_due_executions() == {"resumed": []}

        clock.advance(seconds=engine.settings.execution_lease_s)
        result = tasks.resume_due_executions()

    assert result == {"resumed": [execution.id]}
    run_execution.delay.assert_called_once_with(execution.id)
