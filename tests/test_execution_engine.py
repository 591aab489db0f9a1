"""
Execution engine tests
"""
import asyncio
import time

import pytest

from flow_engine.core.engine import ExecutionEngine
from flow_engine.core.registry import default_registry
from flow_engine.exceptions import InvalidExecutionStateError, EngineOverloadedError
from flow_engine.integrations import NODE_EVENTS_TOPIC, EXECUTION_EVENTS_TOPIC
from flow_engine.models.execution import ExecutionStatus, NodeRunStatus
from flow_engine.monitoring import NODE_ATTEMPTS, NODE_DURATION, EXECUTIONS_FINISHED

from helpers import workflow, link, parse, fast_settings, wait_for_node_status


def jsons(items):
    return [item.json for item in items]


class TestDataFlow:
    """Item propagation between nodes"""

    @pytest.mark.asyncio
    async def test_linear_run_succeeds(self, engine, sample_workflow):
        execution = await engine.run(parse(sample_workflow), timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.error is None
        b = execution.node_runs["B"]
        assert b.status == NodeRunStatus.SUCCEEDED
        assert b.input_count == 3
        assert jsons(b.outputs[0]) == [
            {"n": 1, "seen": ["B"]},
            {"n": 2, "seen": ["B"]},
            {"n": 3, "seen": ["B"]},
        ]

    @pytest.mark.asyncio
    async def test_entry_nodes_seeded_with_payload(self, engine):
        definition = parse(workflow(
            nodes=[{"id": "hook", "type": "webhook"}, {"id": "next", "type": "tag"}],
            connections=[link("hook", "next")],
        ))
        execution = await engine.run(definition, payload=[{"x": 1}, 2], mode="webhook", timeout=5)

        assert execution.mode == "webhook"
        assert jsons(execution.trigger_items) == [{"x": 1}, {"value": 2}]
        assert jsons(execution.node_runs["hook"].outputs[0]) == [{"x": 1}, {"value": 2}]
        assert jsons(execution.node_runs["next"].outputs[0])[0] == {"x": 1, "seen": ["next"]}

    @pytest.mark.asyncio
    async def test_diamond_concatenates_in_connection_order(self, engine):
        # A finishes last, but C lists A's connection first
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "B", "type": "emit", "parameters": {"items": [{"src": "B"}]}},
                {"id": "A", "type": "emit", "parameters": {"items": [{"src": "A1"}, {"src": "A2"}], "delay": 0.05}},
                {"id": "C", "type": "noOp"},
            ],
            connections=[link("T", "B"), link("T", "A"), link("A", "C"), link("B", "C", to_input=1)],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert jsons(execution.node_runs["C"].outputs[0]) == [{"src": "A1"}, {"src": "A2"}, {"src": "B"}]

    @pytest.mark.asyncio
    async def test_consumers_receive_independent_copies(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "A", "type": "emit", "parameters": {"items": [{"n": 1}]}},
                {"id": "left", "type": "tag"},
                {"id": "right", "type": "tag"},
            ],
            connections=[link("T", "A"), link("A", "left"), link("A", "right")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert jsons(execution.node_runs["left"].outputs[0]) == [{"n": 1, "seen": ["left"]}]
        assert jsons(execution.node_runs["right"].outputs[0]) == [{"n": 1, "seen": ["right"]}]
        assert jsons(execution.node_runs["A"].outputs[0]) == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_output_slots_route_items(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "split", "type": "emit", "parameters": {"slots": [[{"side": 0}], [{"side": 1}]]}},
                {"id": "zero", "type": "noOp"},
                {"id": "one", "type": "noOp"},
                {"id": "missing", "type": "noOp"},
            ],
            connections=[
                link("T", "split"),
                link("split", "zero", output=0),
                link("split", "one", output=1),
                link("split", "missing", output=5),
            ],
        ))
        execution = await engine.run(definition, timeout=5)

        assert jsons(execution.node_runs["zero"].outputs[0]) == [{"side": 0}]
        assert jsons(execution.node_runs["one"].outputs[0]) == [{"side": 1}]
        # A slot the producer never filled is live but empty
        assert execution.node_runs["missing"].status == NodeRunStatus.SUCCEEDED
        assert execution.node_runs["missing"].input_count == 0

    @pytest.mark.asyncio
    async def test_same_level_nodes_run_concurrently(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "a", "type": "sleep", "parameters": {"seconds": 0.2}},
                {"id": "b", "type": "sleep", "parameters": {"seconds": 0.2}},
            ],
            connections=[link("T", "a"), link("T", "b")],
        ))
        started = time.monotonic()
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert time.monotonic() - started < 0.38

    @pytest.mark.asyncio
    async def test_identical_payloads_create_distinct_executions(self, engine, sample_workflow):
        definition = parse(sample_workflow)
        first = await engine.run(definition, payload={"id": 1}, timeout=5)
        second = await engine.run(definition, payload={"id": 1}, timeout=5)

        assert first.id != second.id
        page = await engine.store.list(workflow_id=definition.id)
        assert page.total == 2


class TestFailurePolicies:
    """Retry and onError handling"""

    @pytest.mark.asyncio
    async def test_stop_policy_fails_run_and_skips_dependents(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "trigger", "type": "manualTrigger"},
                {"id": "A", "type": "emit", "parameters": {"items": [{"n": 1}, {"n": 2}, {"n": 3}]}},
                {"id": "B", "type": "fail", "parameters": {"message": "B exploded"}},
                {"id": "C", "type": "noOp"},
                {"id": "D", "type": "noOp"},
                {"id": "E", "type": "noOp"},
            ],
            connections=[
                link("trigger", "A"),
                link("A", "B"),
                link("B", "C"),
                link("C", "E"),
                link("A", "D"),
                link("B", "D"),
            ],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error["nodes"] == ["B"]
        assert execution.node_runs["A"].output_count == 3
        b = execution.node_runs["B"]
        assert b.status == NodeRunStatus.FAILED
        assert b.attempts == 1
        assert b.input_count == 3
        assert b.output_count == 0
        assert "B exploded" in b.error["message"]
        assert b.error["type"] == "NodeExecutionError"
        assert b.error["cause"] == "RuntimeError"
        assert execution.node_runs["C"].skip_reason == "upstream_failed"
        assert execution.node_runs["E"].skip_reason == "upstream_skipped"
        # D is also reachable through A, so it still runs
        assert execution.node_runs["D"].status == NodeRunStatus.SUCCEEDED
        assert execution.node_runs["D"].input_count == 3

    @pytest.mark.asyncio
    async def test_retries_until_success(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "flaky", "type": "flaky", "parameters": {"succeedOn": 3},
                 "retry": {"maxAttempts": 3, "baseDelay": 0}},
            ],
            connections=[link("T", "flaky")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.node_runs["flaky"].attempts == 3

    @pytest.mark.asyncio
    async def test_attempts_capped_at_max_attempts(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "bad", "type": "fail", "retry": {"maxAttempts": 3, "baseDelay": 0.01, "backoff": "fixed"}},
            ],
            connections=[link("T", "bad")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.node_runs["bad"].attempts == 3
        assert engine.metrics.get_counter(NODE_ATTEMPTS, {"node_type": "fail", "outcome": "failed"}) == 3
        assert engine.metrics.get_counter(EXECUTIONS_FINISHED, {"status": "failed"}) == 1
        assert len(engine.metrics.get_observations(NODE_DURATION, {"node_type": "fail"})) == 3

    @pytest.mark.asyncio
    async def test_many_attempts_end_in_failure(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "bad", "type": "fail", "retry": {"maxAttempts": 1100, "baseDelay": 0, "maxDelay": 0}},
            ],
            connections=[link("T", "bad")],
        ))
        execution = await engine.run(definition, timeout=30)

        assert execution.status == ExecutionStatus.FAILED
        bad = execution.node_runs["bad"]
        assert bad.status == NodeRunStatus.FAILED
        assert bad.attempts == 1100

    @pytest.mark.asyncio
    async def test_continue_with_empty(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "bad", "type": "fail", "onError": "continueWithEmpty"},
                {"id": "after", "type": "tag"},
            ],
            connections=[link("T", "bad"), link("bad", "after")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.node_runs["bad"].status == NodeRunStatus.FAILED
        after = execution.node_runs["after"]
        assert after.status == NodeRunStatus.SUCCEEDED
        assert after.input_count == 0

    @pytest.mark.asyncio
    async def test_continue_with_empty_merges_with_other_inputs(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "bad", "type": "fail", "onError": "continueWithEmpty"},
                {"id": "E", "type": "emit", "parameters": {"items": [{"src": "E1"}, {"src": "E2"}]}},
                {"id": "M", "type": "noOp"},
            ],
            connections=[link("T", "bad"), link("T", "E"), link("bad", "M"), link("E", "M", to_input=1)],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.node_runs["bad"].status == NodeRunStatus.FAILED
        merged = execution.node_runs["M"]
        assert merged.status == NodeRunStatus.SUCCEEDED
        assert merged.input_count == 2
        assert jsons(merged.outputs[0]) == [{"src": "E1"}, {"src": "E2"}]

    @pytest.mark.asyncio
    async def test_continue_with_input(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "A", "type": "emit", "parameters": {"items": [{"n": 1}, {"n": 2}]}},
                {"id": "bad", "type": "fail", "onError": "continueWithInput"},
                {"id": "after", "type": "noOp"},
            ],
            connections=[link("T", "A"), link("A", "bad"), link("bad", "after")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert jsons(execution.node_runs["after"].outputs[0]) == [{"n": 1}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_error_connection_receives_error_items(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "A", "type": "emit", "parameters": {"items": [{"n": 1}]}},
                {"id": "bad", "type": "fail", "onError": "continueWithEmpty", "parameters": {"message": "nope"}},
                {"id": "handler", "type": "noOp"},
                {"id": "happy", "type": "noOp"},
            ],
            connections=[
                link("T", "A"),
                link("A", "bad"),
                link("bad", "handler", kind="error"),
                link("bad", "happy"),
            ],
        ))
        execution = await engine.run(definition, timeout=5)

        handled = jsons(execution.node_runs["handler"].outputs[0])
        assert len(handled) == 1
        assert handled[0]["n"] == 1
        assert handled[0]["error"]["nodeId"] == "bad"
        assert "nope" in handled[0]["error"]["message"]
        assert execution.node_runs["happy"].input_count == 0

    @pytest.mark.asyncio
    async def test_error_connection_dead_when_producer_succeeds(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "ok", "type": "noOp", "onError": "continueWithEmpty"},
                {"id": "handler", "type": "noOp"},
            ],
            connections=[link("T", "ok"), link("ok", "handler", kind="error")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.node_runs["handler"].skip_reason == "branch_not_taken"

    @pytest.mark.asyncio
    async def test_node_timeout(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "slow", "type": "sleep", "timeout": 0.05, "parameters": {"seconds": 2}},
            ],
            connections=[link("T", "slow")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.node_runs["slow"].error["type"] == "NodeTimeoutError"

    @pytest.mark.asyncio
    async def test_unknown_node_type_aborts_run(self, engine):
        definition = parse(workflow(
            nodes=[{"id": "T", "type": "manualTrigger"}, {"id": "x", "type": "doesNotExist"}],
            connections=[link("T", "x")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error["type"] == "UnknownNodeTypeError"
        assert {run.skip_reason for run in execution.node_runs.values()} == {"run_aborted"}

    @pytest.mark.asyncio
    async def test_invalid_parameters_abort_run(self, engine):
        definition = parse(workflow(nodes=[{"id": "req", "type": "httpRequest", "parameters": {}}]))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error["type"] == "WorkflowValidationError"

    @pytest.mark.asyncio
    async def test_disabled_node_passes_input_through(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "A", "type": "emit", "parameters": {"items": [{"n": 1}]}},
                {"id": "off", "type": "fail", "disabled": True},
                {"id": "after", "type": "noOp"},
            ],
            connections=[link("T", "A"), link("A", "off"), link("off", "after")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert jsons(execution.node_runs["after"].outputs[0]) == [{"n": 1}]


class TestLifecycle:
    """Cancellation, waiting and persistence"""

    @pytest.mark.asyncio
    async def test_cancel_running_execution(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "hold", "type": "gate"},
                {"id": "after", "type": "noOp"},
            ],
            connections=[link("T", "hold"), link("hold", "after")],
        ))
        submitted = await engine.submit(definition)
        await wait_for_node_status(engine, submitted.id, "hold", NodeRunStatus.RUNNING)

        await engine.cancel_execution(submitted.id)
        execution = await engine.wait_for_execution(submitted.id, timeout=5)

        assert execution.status == ExecutionStatus.CANCELED
        assert execution.node_runs["hold"].status == NodeRunStatus.SUCCEEDED
        assert execution.node_runs["after"].skip_reason == "canceled"

        with pytest.raises(InvalidExecutionStateError):
            await engine.cancel_execution(submitted.id)

    @pytest.mark.asyncio
    async def test_capability_requested_cancellation(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "quit", "type": "selfCancel"},
                {"id": "after", "type": "noOp"},
            ],
            connections=[link("T", "quit"), link("quit", "after")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.CANCELED
        assert execution.node_runs["quit"].skip_reason == "canceled"
        assert execution.node_runs["after"].skip_reason == "canceled"

    @pytest.mark.asyncio
    async def test_wait_and_resume(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "approval", "type": "pause"},
                {"id": "after", "type": "tag"},
            ],
            connections=[link("T", "approval"), link("approval", "after")],
        ))
        submitted = await engine.submit(definition)
        waiting = await wait_for_node_status(engine, submitted.id, "approval", NodeRunStatus.WAITING)
        assert waiting.status == ExecutionStatus.WAITING
        assert engine.worker_pool.busy == 0

        with pytest.raises(InvalidExecutionStateError):
            await engine.resume_execution(submitted.id, "after", None)

        await engine.resume_execution(submitted.id, "approval", {"approved": True})
        execution = await engine.wait_for_execution(submitted.id, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert jsons(execution.node_runs["after"].outputs[0]) == [{"approved": True, "seen": ["after"]}]

    @pytest.mark.asyncio
    async def test_wait_timeout_fails_node(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "approval", "type": "pause", "parameters": {"timeout": 0.05}},
            ],
            connections=[link("T", "approval")],
        ))
        execution = await engine.run(definition, timeout=5)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.node_runs["approval"].error["type"] == "NodeTimeoutError"

    @pytest.mark.asyncio
    async def test_cancel_releases_waiting_node(self, engine):
        definition = parse(workflow(
            nodes=[{"id": "T", "type": "manualTrigger"}, {"id": "approval", "type": "pause"}],
            connections=[link("T", "approval")],
        ))
        submitted = await engine.submit(definition)
        await wait_for_node_status(engine, submitted.id, "approval", NodeRunStatus.WAITING)

        await engine.cancel_execution(submitted.id)
        execution = await engine.wait_for_execution(submitted.id, timeout=5)

        assert execution.status == ExecutionStatus.CANCELED
        assert execution.node_runs["approval"].skip_reason == "canceled"

    @pytest.mark.asyncio
    async def test_final_state_is_persisted(self, engine, sample_workflow):
        execution = await engine.run(parse(sample_workflow), timeout=5)
        stored = await engine.store.get(execution.id)

        assert stored.status == ExecutionStatus.SUCCESS
        assert stored.finished_at is not None
        assert {node_id: run.status for node_id, run in stored.node_runs.items()} == {
            "trigger": NodeRunStatus.SUCCEEDED,
            "A": NodeRunStatus.SUCCEEDED,
            "B": NodeRunStatus.SUCCEEDED,
        }
        assert engine.active_count == 0

    @pytest.mark.asyncio
    async def test_events_published(self, engine, sample_workflow):
        node_events = []
        execution_events = []
        await engine.event_bus.subscribe(NODE_EVENTS_TOPIC, lambda event: node_events.append(event.payload))
        await engine.event_bus.subscribe(EXECUTION_EVENTS_TOPIC, lambda event: execution_events.append(event.payload))

        await engine.run(parse(sample_workflow), timeout=5)
        await engine.event_bus.drain()

        assert [e.event_type for e in execution_events] == ["execution_started", "execution_succeeded"]
        assert [(e.node_id, e.event_type) for e in node_events if e.node_id == "B"] == [
            ("B", "node_started"),
            ("B", "node_succeeded"),
        ]

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_hold_the_run(self, engine):
        received = []

        async def slow_observer(event):
            await asyncio.sleep(0.5)
            received.append(event.payload.event_type)

        await engine.event_bus.subscribe(NODE_EVENTS_TOPIC, slow_observer)
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "A", "type": "noOp"},
                {"id": "B", "type": "noOp"},
            ],
            connections=[link("T", "A"), link("A", "B")],
        ))

        started = time.monotonic()
        execution = await engine.run(definition, timeout=5)
        elapsed = time.monotonic() - started

        assert execution.status == ExecutionStatus.SUCCESS
        assert elapsed < 0.5
        await engine.event_bus.drain()
        assert received.count("node_succeeded") == 3

    @pytest.mark.asyncio
    async def test_capabilities_cannot_mutate_shared_parameters(self, engine):
        definition = parse(workflow(
            nodes=[
                {"id": "T", "type": "manualTrigger"},
                {"id": "M", "type": "appendParam", "parameters": {"log": [], "nested": {"count": 0}}},
            ],
            connections=[link("T", "M")],
        ))
        first, second = await asyncio.gather(
            engine.run(definition, timeout=5),
            engine.run(definition, timeout=5),
        )

        for execution in (first, second):
            assert execution.status == ExecutionStatus.SUCCESS
            assert jsons(execution.node_runs["M"].outputs[0]) == [{"log": [execution.id], "count": 1}]
        parameters = definition.get_node("M").parameters
        assert parameters["log"] == []
        assert parameters["nested"] == {"count": 0}

    @pytest.mark.asyncio
    async def test_load_shedding(self, registry):
        engine = ExecutionEngine(registry, settings=fast_settings(max_active_executions=1))
        await engine.start()
        try:
            definition = parse(workflow(
                nodes=[{"id": "T", "type": "manualTrigger"}, {"id": "hold", "type": "gate"}],
                connections=[link("T", "hold")],
            ))
            await engine.submit(definition)
            with pytest.raises(EngineOverloadedError):
                await engine.submit(definition)
        finally:
            await engine.stop()

    @pytest.mark.asyncio
    async def test_submit_requires_started_engine(self, sample_workflow):
        engine = ExecutionEngine(default_registry())
        with pytest.raises(InvalidExecutionStateError):
            await engine.submit(parse(sample_workflow))

    @pytest.mark.asyncio
    async def test_start_freezes_registry(self, engine):
        assert engine.registry.frozen
