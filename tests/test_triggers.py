"""
Trigger service and schedule runner tests
"""
from datetime import datetime, timedelta, timezone

import pytest

from flow_engine.core.engine import ExecutionEngine
from flow_engine.core.triggers import TriggerService, ScheduleRunner, ScheduleSpec
from flow_engine.exceptions import UnknownWorkflowError, WorkflowDisabledError, EngineOverloadedError
from flow_engine.models.execution import ExecutionStatus
from flow_engine.storage.repository import InMemoryWorkflowRepository

from helpers import workflow, link, parse, fast_settings


@pytest.fixture
def repo():
    return InMemoryWorkflowRepository()


@pytest.fixture
def trigger_service(engine, repo):
    return TriggerService(engine, repo)


def hook_workflow(workflow_id: str = "wf-hook", **extra):
    return parse(workflow(
        nodes=[{"id": "hook", "type": "webhook"}, {"id": "out", "type": "noOp"}],
        connections=[link("hook", "out")],
        id=workflow_id,
        **extra
    ))


class TestTriggerService:

    @pytest.mark.asyncio
    async def test_trigger_starts_execution(self, engine, repo, trigger_service):
        await repo.save(hook_workflow())

        execution_id = await trigger_service.on_trigger("wf-hook", b'{"order": 7}')
        execution = await engine.wait_for_execution(execution_id, timeout=5)

        assert execution.status == ExecutionStatus.SUCCESS
        assert execution.mode == "webhook"
        assert execution.node_runs["out"].outputs[0][0].json == {"order": 7}

    @pytest.mark.asyncio
    async def test_every_trigger_creates_an_execution(self, engine, repo, trigger_service):
        await repo.save(hook_workflow())

        first = await trigger_service.on_trigger("wf-hook", {"same": 1})
        second = await trigger_service.on_trigger("wf-hook", {"same": 1})

        assert first != second
        await engine.wait_for_execution(first, timeout=5)
        await engine.wait_for_execution(second, timeout=5)

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, trigger_service):
        with pytest.raises(UnknownWorkflowError):
            await trigger_service.on_trigger("ghost")

    @pytest.mark.asyncio
    async def test_disabled_workflow(self, repo, trigger_service):
        await repo.save(hook_workflow(), enabled=False)
        with pytest.raises(WorkflowDisabledError):
            await trigger_service.on_trigger("wf-hook")

    @pytest.mark.asyncio
    async def test_sheds_load_at_capacity(self, registry, repo):
        engine = ExecutionEngine(registry, settings=fast_settings(max_active_executions=1))
        await engine.start()
        try:
            await repo.save(parse(workflow(
                nodes=[{"id": "T", "type": "webhook"}, {"id": "hold", "type": "gate"}],
                connections=[link("T", "hold")],
                id="wf-busy",
            )))
            service = TriggerService(engine, repo)
            await service.on_trigger("wf-busy")
            with pytest.raises(EngineOverloadedError):
                await service.on_trigger("wf-busy")
        finally:
            await engine.stop()


class TestScheduleSpec:

    def test_interval(self):
        spec = ScheduleSpec.from_trigger({"type": "schedule", "intervalSeconds": 30})
        moment = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert spec.next_after(moment) == moment + timedelta(seconds=30)

    def test_cron(self):
        spec = ScheduleSpec.from_trigger({"type": "schedule", "cron": "0 * * * *"})
        moment = datetime(2024, 1, 1, 12, 15, tzinfo=timezone.utc)
        assert spec.next_after(moment) == datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)

    def test_non_schedule_trigger_ignored(self):
        assert ScheduleSpec.from_trigger({"type": "webhook"}) is None


class TestScheduleRunner:

    @pytest.fixture
    def scheduled(self):
        return parse(workflow(
            nodes=[{"id": "tick", "type": "scheduleTrigger"}, {"id": "out", "type": "noOp"}],
            connections=[link("tick", "out")],
            triggers=[{"type": "schedule", "intervalSeconds": 60}],
            id="wf-cron",
        ))

    @pytest.mark.asyncio
    async def test_first_tick_only_schedules(self, repo, trigger_service, scheduled):
        await repo.save(scheduled)
        runner = ScheduleRunner(trigger_service, repo)
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

        assert await runner.tick(now) == 0
        assert runner.next_run("wf-cron") == now + timedelta(seconds=60)

    @pytest.mark.asyncio
    async def test_due_schedule_fires(self, engine, repo, trigger_service, scheduled):
        await repo.save(scheduled)
        runner = ScheduleRunner(trigger_service, repo)
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

        await runner.tick(now)
        assert await runner.tick(now + timedelta(seconds=30)) == 0
        assert await runner.tick(now + timedelta(seconds=61)) == 1

        await engine.recorder.flush()
        page = await engine.store.list(workflow_id="wf-cron")
        executions = [await engine.wait_for_execution(e.id, timeout=5) for e in page.items]
        assert len(executions) == 1
        assert executions[0].mode == "schedule"
        assert executions[0].trigger_items[0].json["triggerIndex"] == 0

    @pytest.mark.asyncio
    async def test_disabled_workflow_not_fired(self, repo, trigger_service, scheduled):
        await repo.save(scheduled, enabled=False)
        runner = ScheduleRunner(trigger_service, repo)
        now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

        await runner.tick(now)
        assert await runner.tick(now + timedelta(minutes=5)) == 0
        assert runner.next_run("wf-cron") is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, repo, trigger_service):
        runner = ScheduleRunner(trigger_service, repo, tick_interval=0.01)
        await runner.start()
        assert runner.running
        await runner.stop()
        assert not runner.running
