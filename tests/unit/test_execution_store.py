"""Tests for the execution store."""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import redis

from workflow_automation.events import TriggerEvent
from workflow_automation.storage import (
    CANCELLED,
    Execution,
    ExecutionAlreadyExists,
    ExecutionNotFound,
    ExecutionStatus,
    ExecutionStep,
    InvalidTransition,
    RedisExecutionStore,
    StepOutcome,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_execution(quote_workflow):
    def make(execution_id="exec-1", workflow_id="wf-1", tenant_id="tenant-1", created_at=T0):
        return Execution(
            id=execution_id,
            workflow_id=workflow_id,
            tenant_id=tenant_id,
            event=TriggerEvent(trigger_type="quote_approved", document={"total_amount": 1}),
            graph_snapshot=quote_workflow,
            created_at=created_at,
            updated_at=created_at,
        )

    return make


def _step(execution_id, node_id, outcome):
    return ExecutionStep(
        id=f"{execution_id}:{node_id}",
        execution_id=execution_id,
        node_id=node_id,
        outcome=outcome,
    )


class TestTransitions:
    """Test the status state machine."""

    def test_new_execution_is_running(self, store, make_execution):
        execution = store.create(make_execution())

        assert execution.status == ExecutionStatus.RUNNING
        assert store.require("exec-1") == execution

    def test_duplicate_create_rejected(self, store, make_execution):
        store.create(make_execution())

        with pytest.raises(ExecutionAlreadyExists):
            store.create(make_execution())

    def test_unknown_execution(self, store):
        assert store.get("missing") is None
        with pytest.raises(ExecutionNotFound):
            store.require("missing")
        with pytest.raises(ExecutionNotFound):
            store.cancel("missing")

    def test_suspend_then_claim(self, store, make_execution):
        store.create(make_execution())
        resume_at = T0 + timedelta(days=2)

        suspended = store.suspend("exec-1", resume_at, "notify", ["high_value"], {})

        assert suspended.status == ExecutionStatus.SUSPENDED
        assert suspended.pending_node_id == "notify"
        assert suspended.visited_node_ids == ["high_value"]

        assert store.claim_for_resume("exec-1", T0 + timedelta(days=1)) is None

        claimed = store.claim_for_resume("exec-1", resume_at)
        assert claimed.status == ExecutionStatus.RUNNING
        assert claimed.resume_at is None
        assert claimed.pending_node_id == "notify"

    def test_only_one_claim_wins(self, store, make_execution):
        store.create(make_execution())
        store.suspend("exec-1", T0, "notify", [], {})

        first = store.claim_for_resume("exec-1", T0)
        second = store.claim_for_resume("exec-1", T0)

        assert first is not None
        assert second is None

    def test_terminal_executions_never_change(self, store, make_execution):
        store.create(make_execution())
        store.transition("exec-1", ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED)

        assert store.cancel("exec-1") is None
        assert store.checkpoint("exec-1", {"task": {"id": "t"}}) is None
        with pytest.raises(InvalidTransition):
            store.transition("exec-1", ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING)
        assert store.require("exec-1").status == ExecutionStatus.COMPLETED

    def test_suspended_cannot_complete(self, store):
        with pytest.raises(InvalidTransition):
            store.transition("exec-1", ExecutionStatus.SUSPENDED, ExecutionStatus.COMPLETED)

    def test_cancel_suspended(self, store, make_execution):
        store.create(make_execution())
        store.suspend("exec-1", T0 + timedelta(hours=1), "notify", [], {})

        cancelled = store.cancel("exec-1")

        assert cancelled.status == ExecutionStatus.FAILED
        assert cancelled.error == CANCELLED
        assert cancelled.is_cancelled
        assert cancelled.resume_at is None
        assert store.list_runnable(T0 + timedelta(days=1)) == []

    def test_checkpoint_keeps_created_records(self, store, make_execution):
        store.create(make_execution())

        store.checkpoint("exec-1", {"project": {"id": "p-1"}})

        assert store.require("exec-1").created_records == {"project": {"id": "p-1"}}
        assert store.require("exec-1").visited_node_ids == []


    def test_heartbeat_renews_running_execution(self, store, clock, make_execution):
        store.create(make_execution())
        clock.advance(minutes=5)

        renewed = store.heartbeat("exec-1")

        assert renewed.updated_at == T0 + timedelta(minutes=5)
        assert renewed.status == ExecutionStatus.RUNNING

    def test_heartbeat_of_suspended_execution(self, store, make_execution):
        store.create(make_execution())
        store.suspend("exec-1", T0 + timedelta(hours=1), "notify", [], {})

        assert store.heartbeat("exec-1") is None

    def test_only_one_reclaim_wins(self, store, clock, make_execution):
        store.create(make_execution())
        clock.advance(minutes=20)
        cutoff = T0 + timedelta(minutes=10)

        assert store.reclaim_stale("exec-1", cutoff) is not None
        assert store.reclaim_stale("exec-1", cutoff) is None
        assert store.require("exec-1").updated_at == T0 + timedelta(minutes=20)


class TestSteps:
    """Test the step log."""

    def test_steps_are_appended_in_order(self, store, make_execution):
        store.create(make_execution())

        store.append_step(_step("exec-1", "high_value", StepOutcome.TRUE))
        store.append_step(_step("exec-1", "review_task", StepOutcome.SUCCESS))

        assert [s.node_id for s in store.steps("exec-1")] == ["high_value", "review_task"]

    def test_step_for_unknown_execution(self, store):
        with pytest.raises(ExecutionNotFound):
            store.append_step(_step("ghost", "a", StepOutcome.SUCCESS))

    def test_completed_step_ignores_failures(self, store, make_execution):
        store.create(make_execution())
        store.append_step(_step("exec-1", "notify", StepOutcome.FAILURE))

        assert store.completed_step("exec-1", "notify") is None

        store.append_step(_step("exec-1", "notify", StepOutcome.SUCCESS))

        assert store.completed_step("exec-1", "notify").outcome == StepOutcome.SUCCESS


class TestQueries:
    """Test listing executions."""

    def test_list_runnable_sorted_by_resume_time(self, store, make_execution):
        for index, hours in enumerate([3, 1, 2, 48]):
            execution_id = f"exec-{index}"
            store.create(make_execution(execution_id))
            store.suspend(execution_id, T0 + timedelta(hours=hours), "notify", [], {})

        runnable = store.list_runnable(T0 + timedelta(hours=5))

        assert [e.id for e in runnable] == ["exec-1", "exec-2", "exec-0"]

    def test_list_executions_newest_first_with_filters(self, store, make_execution):
        store.create(make_execution("a", created_at=T0))
        store.create(make_execution("b", created_at=T0 + timedelta(minutes=1)))
        store.create(make_execution("c", workflow_id="wf-2", created_at=T0 + timedelta(minutes=2)))
        store.create(make_execution("d", tenant_id="tenant-2"))
        store.transition("a", ExecutionStatus.RUNNING, ExecutionStatus.FAILED, error="boom")

        assert [e.id for e in store.list_executions("tenant-1")] == ["c", "b", "a"]
        assert [e.id for e in store.list_executions("tenant-1", "wf-1")] == ["b", "a"]
        assert [e.id for e in store.list_executions("tenant-1", limit=1)] == ["c"]
        assert [e.id for e in store.list_failed("tenant-1")] == ["a"]
        assert store.list_executions("tenant-3") == []


    def test_list_stale_oldest_first(self, store, clock, make_execution):
        store.create(make_execution("a"))
        clock.advance(minutes=1)
        store.create(make_execution("b"))
        store.heartbeat("a")
        clock.advance(minutes=1)
        store.create(make_execution("c"))
        store.suspend("c", T0 + timedelta(days=1), "notify", [], {})

        stale = store.list_stale(T0 + timedelta(minutes=2))

        assert [e.id for e in stale] == ["b", "a"]
        assert [e.id for e in store.list_stale(T0)] == ["b"]


class TestRedisExecutionStore:
    """Test the Redis key layout with a mocked client."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def pipe(self, client):
        return client.pipeline.return_value.__enter__.return_value

    def test_create_indexes_by_tenant_and_workflow(self, client, pipe, make_execution):
        pipe.execute.return_value = [True, 1, 1]
        redis_store = RedisExecutionStore(redis_client=client)

        redis_store.create(make_execution())

        key, payload = pipe.set.call_args.args
        assert key == "execution:exec-1"
        assert json.loads(payload)["status"] == "running"
        assert pipe.set.call_args.kwargs == {"nx": True}
        zadd_keys = [c.args[0] for c in pipe.zadd.call_args_list]
        assert zadd_keys == [
            "executions:running",
            "executions:tenant:tenant-1",
            "executions:workflow:tenant-1:wf-1",
        ]
        assert pipe.zadd.call_args_list[0].kwargs == {"nx": True}

    def test_create_duplicate(self, client, pipe, make_execution):
        pipe.execute.return_value = [None, 0, 0]

        with pytest.raises(ExecutionAlreadyExists):
            RedisExecutionStore(redis_client=client).create(make_execution())

    def test_get_missing(self, client):
        client.get.return_value = None

        assert RedisExecutionStore(redis_client=client).get("exec-1") is None
        client.get.assert_called_once_with("execution:exec-1")

    def test_suspend_adds_to_schedule(self, client, pipe, make_execution):
        pipe.get.return_value = make_execution().model_dump_json()
        redis_store = RedisExecutionStore(redis_client=client)
        resume_at = T0 + timedelta(days=2)

        suspended = redis_store.suspend("exec-1", resume_at, "notify", [], {})

        assert suspended.status == ExecutionStatus.SUSPENDED
        pipe.watch.assert_called_once_with("execution:exec-1")
        pipe.zadd.assert_called_once_with(
            "executions:suspended", {"exec-1": resume_at.timestamp()}
        )
        pipe.zrem.assert_called_once_with("executions:running", "exec-1")
        pipe.execute.assert_called_once()

    def test_failed_precondition_writes_nothing(self, client, pipe, make_execution):
        pipe.get.return_value = make_execution().model_dump_json()
        redis_store = RedisExecutionStore(redis_client=client)

        assert redis_store.claim_for_resume("exec-1", T0) is None
        pipe.unwatch.assert_called_once()
        pipe.execute.assert_not_called()

    def test_steps_and_queries_use_expected_keys(self, client):
        step = _step("exec-1", "notify", StepOutcome.SUCCESS)
        client.lrange.return_value = [step.model_dump_json()]
        client.zrevrange.return_value = []
        client.zrangebyscore.return_value = []
        redis_store = RedisExecutionStore(redis_client=client)

        assert redis_store.steps("exec-1") == [step]
        client.lrange.assert_called_once_with("execution:exec-1:steps", 0, -1)

        redis_store.list_executions("tenant-1", "wf-1")
        client.zrevrange.assert_called_once_with("executions:workflow:tenant-1:wf-1", 0, -1)

        redis_store.list_runnable(T0)
        client.zrangebyscore.assert_called_once_with(
            "executions:suspended", "-inf", T0.timestamp()
        )

    def test_append_step_for_unknown_execution(self, client):
        client.exists.return_value = 0

        with pytest.raises(ExecutionNotFound):
            RedisExecutionStore(redis_client=client).append_step(
                _step("exec-1", "notify", StepOutcome.SUCCESS)
            )
        client.rpush.assert_not_called()

    def test_stale_query_uses_running_index(self, client):
        client.zrangebyscore.return_value = []
        redis_store = RedisExecutionStore(redis_client=client)
        cutoff = T0 - timedelta(minutes=10)

        assert redis_store.list_stale(cutoff) == []
        client.zrangebyscore.assert_called_once_with(
            "executions:running", "-inf", cutoff.timestamp()
        )

    def test_ping(self, client):
        client.ping.return_value = True
        redis_store = RedisExecutionStore(redis_client=client)

        assert redis_store.ping() is True

        client.ping.side_effect = redis.ConnectionError("connection refused")
        assert redis_store.ping() is False
