"""
Workflow execution engine
"""
import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, Any, Optional, List, Mapping, Tuple

from ..config import EngineSettings
from ..models.workflow import (
    WorkflowDefinition, NodeSpec, Connection, Item, OnErrorPolicy, ExecutionPlan,
    copy_items, items_from_payload
)
from ..models.execution import (
    Execution, NodeRunResult, ExecutionStatus, NodeRunStatus,
    ExecutionEvent, ExecutionEventType, error_detail, utcnow
)
from ..exceptions import (
    FlowEngineError, WorkflowValidationError, UnknownNodeTypeError, NodeExecutionError,
    NodeTimeoutError, CancellationRequested, InvalidExecutionStateError, EngineOverloadedError
)
from ..integrations.event_bus import EventBus, EXECUTION_EVENTS_TOPIC, NODE_EVENTS_TOPIC
from ..monitoring import (
    MetricsRecorder, EventLogger, TracingManager,
    EXECUTIONS_STARTED, EXECUTIONS_FINISHED, NODE_ATTEMPTS, NODE_DURATION
)
from ..storage.repository import ExecutionStore, InMemoryExecutionStore
from ..storage.recorder import ExecutionRecorder
from .planner import ExecutionPlanner, ExecutionPlanCache
from .registry import NodeRegistry, NodeCapability, NodeContext, WaitForResume, CapabilityResult
from .retry import calculate_retry_delay, sleep_unless_cancelled
from .scheduler import WorkerPool, JobNotStarted


logger = logging.getLogger(__name__)
node_logger = logging.getLogger("flow_engine.nodes")

SKIP_CANCELED = "canceled"
SKIP_UPSTREAM_FAILED = "upstream_failed"
SKIP_UPSTREAM_SKIPPED = "upstream_skipped"
SKIP_BRANCH_NOT_TAKEN = "branch_not_taken"
SKIP_RUN_ABORTED = "run_aborted"

FINISHED_EVENTS = {
    ExecutionStatus.SUCCESS: ExecutionEventType.EXECUTION_SUCCEEDED,
    ExecutionStatus.FAILED: ExecutionEventType.EXECUTION_FAILED,
    ExecutionStatus.CANCELED: ExecutionEventType.EXECUTION_CANCELED,
}


@dataclass
class RunState:
    """Mutable state of one execution, confined to its driver task"""
    execution: Execution
    definition: WorkflowDefinition
    plan: ExecutionPlan
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    done: asyncio.Event = field(default_factory=asyncio.Event)
    capabilities: Dict[str, NodeCapability] = field(default_factory=dict)
    inputs: Dict[str, List[Item]] = field(default_factory=dict)
    waiters: Dict[str, asyncio.Future] = field(default_factory=dict)
    stop_failures: List[str] = field(default_factory=list)
    task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class ExecutionEngine:
    """Runs workflow definitions level by level on a shared worker pool"""

    def __init__(
        self,
        registry: NodeRegistry,
        store: ExecutionStore = None,
        settings: EngineSettings = None,
        event_bus: EventBus = None,
        metrics: MetricsRecorder = None,
        planner: ExecutionPlanner = None
    ):
        self.registry = registry
        self.settings = settings or EngineSettings()
        self.store = store or InMemoryExecutionStore()
        self.event_bus = event_bus or EventBus()
        self.metrics = metrics or MetricsRecorder()
        self.planner = planner or ExecutionPlanner()
        self.plan_cache = ExecutionPlanCache(self.settings.plan_cache_size)
        self.worker_pool = WorkerPool(self.settings.worker_pool_size)
        self.recorder = ExecutionRecorder(
            self.store,
            retry_attempts=self.settings.store_retry_attempts,
            retry_delay=self.settings.store_retry_delay,
            metrics=self.metrics,
            event_bus=self.event_bus
        )
        self.event_logger = EventLogger()
        self.tracing = TracingManager()

        # Active runs by execution id
        self._runs: Dict[str, RunState] = {}
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def active_count(self) -> int:
        return len(self._runs)

    async def start(self):
        """Freeze the registry and start the worker pool and store writer"""
        if self._started:
            return
        if not self.registry.frozen:
            self.registry.freeze()
        await self.worker_pool.start()
        await self.recorder.start()
        self._started = True
        logger.info(f"Execution engine started (workers={self.settings.worker_pool_size})")

    async def stop(self):
        """Cancel active runs, then stop the worker pool and flush the store writer"""
        if not self._started:
            return
        states = list(self._runs.values())
        for state in states:
            self._request_cancel(state)
        tasks = [state.task for state in states if state.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.worker_pool.stop()
        await self.recorder.stop()
        await self.event_bus.drain()
        self._started = False
        logger.info("Execution engine stopped")

    def plan(self, definition: WorkflowDefinition) -> ExecutionPlan:
        """Plan a definition, reusing cached plans"""
        key = self.plan_cache.key_for(definition)
        plan = self.plan_cache.get(key)
        if plan is None:
            plan = self.planner.plan(definition)
            self.plan_cache.put(key, plan)
        return plan

    async def submit(
        self,
        definition: WorkflowDefinition,
        payload: Any = None,
        mode: str = "manual"
    ) -> Execution:
        """Create an execution and start driving it; returns immediately"""
        if not self._started:
            raise InvalidExecutionStateError("Execution engine is not started")
        if len(self._runs) >= self.settings.max_active_executions:
            raise EngineOverloadedError(
                f"Too many active executions ({len(self._runs)}/{self.settings.max_active_executions})"
            )

        plan = self.plan(definition)
        execution = Execution(
            workflow_id=definition.id,
            workflow_version=definition.version,
            mode=mode,
            trigger_items=items_from_payload(payload),
        )
        execution.node_runs = {node_id: NodeRunResult(node_id=node_id) for node_id in plan.node_ids}

        state = RunState(execution=execution, definition=definition, plan=plan)
        self._runs[execution.id] = state
        self.recorder.record_create(execution)
        self.metrics.inc(EXECUTIONS_STARTED, {"mode": mode})

        state.task = asyncio.create_task(self._drive(state))
        logger.info(
            f"Execution {execution.id} submitted for workflow {definition.id} "
            f"({len(plan.node_ids)} nodes in {len(plan.levels)} levels, mode={mode})"
        )
        return self._snapshot(state)

    async def run(
        self,
        definition: WorkflowDefinition,
        payload: Any = None,
        mode: str = "manual",
        timeout: Optional[float] = None
    ) -> Execution:
        """Submit and wait for the terminal execution"""
        execution = await self.submit(definition, payload, mode)
        return await self.wait_for_execution(execution.id, timeout)

    async def wait_for_execution(self, execution_id: str, timeout: Optional[float] = None) -> Execution:
        """Wait until an execution is terminal and persisted"""
        state = self._runs.get(execution_id)
        if state is None:
            return await self.store.get(execution_id)
        await asyncio.wait_for(state.done.wait(), timeout)
        return self._snapshot(state)

    async def get_execution(self, execution_id: str) -> Execution:
        """Live snapshot for active runs, stored record otherwise"""
        state = self._runs.get(execution_id)
        if state is not None:
            return self._snapshot(state)
        return await self.store.get(execution_id)

    async def cancel_execution(self, execution_id: str) -> Execution:
        """Request cancellation; the driver finalizes the run as canceled"""
        state = self._runs.get(execution_id)
        if state is None:
            execution = await self.store.get(execution_id)
            raise InvalidExecutionStateError(
                f"Execution {execution_id} is not active (status: {execution.status.value})"
            )
        self._request_cancel(state)
        return self._snapshot(state)

    async def resume_execution(
        self,
        execution_id: str,
        node_id: str,
        items: Any = None
    ) -> Execution:
        """Complete a waiting node with items, or with its own input when items is None"""
        state = self._runs.get(execution_id)
        if state is None:
            execution = await self.store.get(execution_id)
            raise InvalidExecutionStateError(
                f"Execution {execution_id} is not active (status: {execution.status.value})"
            )

        waiter = state.waiters.get(node_id)
        if waiter is None or waiter.done():
            raise InvalidExecutionStateError(f"Node '{node_id}' of execution {execution_id} is not waiting")

        if items is None:
            resumed = copy_items(state.inputs.get(node_id, []))
        else:
            resumed = items_from_payload(items)
        waiter.set_result(resumed)
        logger.info(f"Execution {execution_id}: node {node_id} resumed with {len(resumed)} items")
        return self._snapshot(state)

    def _request_cancel(self, state: RunState):
        if state.cancelled:
            return
        state.cancel_event.set()
        for node_id, waiter in state.waiters.items():
            if not waiter.done():
                waiter.set_exception(CancellationRequested(f"Node '{node_id}' released by cancellation"))
        logger.info(f"Cancellation requested for execution {state.execution.id}")

    def _snapshot(self, state: RunState) -> Execution:
        return Execution.from_dict(state.execution.to_dict())

    async def _drive(self, state: RunState):
        """Driver task of one execution"""
        execution = state.execution
        execution.start()
        self._record(state, {
            "status": execution.status.value,
            "startedAt": execution.started_at.isoformat(),
            "updatedAt": execution.updated_at.isoformat(),
        })
        self._publish_execution_event(state, ExecutionEventType.EXECUTION_STARTED, {"mode": execution.mode})

        try:
            try:
                self._resolve_capabilities(state)
            except (UnknownNodeTypeError, WorkflowValidationError) as e:
                logger.error(f"Execution {execution.id} aborted before dispatch: {e}")
                for run in execution.node_runs.values():
                    run.skip(SKIP_RUN_ABORTED)
                await self._finalize(state, ExecutionStatus.FAILED, error_detail(e))
                return

            for level in state.plan.levels:
                if state.cancelled:
                    break
                tasks = []
                for node_id in level:
                    if state.cancelled:
                        break
                    items, inputs_by_index, skip_reason = self._collect_inputs(state, node_id)
                    if skip_reason is not None:
                        await self._skip_node(state, node_id, skip_reason)
                        continue
                    tasks.append(asyncio.create_task(self._run_node(state, node_id, items, inputs_by_index)))

                # Level barrier
                results = await asyncio.gather(*tasks, return_exceptions=True)
                for result in results:
                    if isinstance(result, Exception):
                        raise result

            status, error = self._final_status(state)
            await self._finalize(state, status, error)

        except asyncio.CancelledError:
            state.cancel_event.set()
            self._skip_unfinished(state)
            await self._finalize(state, ExecutionStatus.CANCELED)
            raise
        except Exception as e:
            logger.error(f"Execution {execution.id} crashed: {e}", exc_info=True)
            self._skip_unfinished(state, SKIP_RUN_ABORTED)
            await self._finalize(state, ExecutionStatus.FAILED, error_detail(e))

    def validate(self, definition: WorkflowDefinition) -> Dict[str, NodeCapability]:
        """Resolve every enabled node's type and validate its parameters"""
        capabilities: Dict[str, NodeCapability] = {}
        for node in definition.nodes:
            if node.disabled:
                continue
            capabilities[node.id] = self._capability_for(node)
        return capabilities

    def _capability_for(self, node: NodeSpec) -> NodeCapability:
        capability = self.registry.resolve(node.type)
        try:
            capability.validate_parameters(node.parameters)
        except WorkflowValidationError as e:
            raise WorkflowValidationError(f"Node '{node.id}': {e}", details=e.details) from e
        return capability

    def _resolve_capabilities(self, state: RunState):
        for node_id in state.plan.node_ids:
            node = state.definition.get_node(node_id)
            if not node.disabled:
                state.capabilities[node_id] = self._capability_for(node)

    def _collect_inputs(
        self,
        state: RunState,
        node_id: str
    ) -> Tuple[List[Item], Dict[int, List[Item]], Optional[str]]:
        """Concatenate live contributions in connection declaration order"""
        incoming = state.definition.incoming(node_id)
        if not incoming:
            items = copy_items(state.execution.trigger_items)
            return items, {0: items}, None

        items: List[Item] = []
        inputs_by_index: Dict[int, List[Item]] = {}
        dead_reasons: List[str] = []
        for _, connection in incoming:
            producer = state.definition.get_node(connection.from_node)
            run = state.execution.node_runs.get(connection.from_node)
            contribution = self._contribution(state, connection, producer, run)
            if contribution is None:
                dead_reasons.append(self._dead_reason(producer, run))
                continue
            items.extend(contribution)
            inputs_by_index.setdefault(connection.to_input, []).extend(contribution)

        if len(dead_reasons) == len(incoming):
            for reason in (SKIP_UPSTREAM_FAILED, SKIP_CANCELED, SKIP_UPSTREAM_SKIPPED):
                if reason in dead_reasons:
                    return [], {}, reason
            return [], {}, SKIP_BRANCH_NOT_TAKEN
        return items, inputs_by_index, None

    def _contribution(
        self,
        state: RunState,
        connection: Connection,
        producer: NodeSpec,
        run: Optional[NodeRunResult]
    ) -> Optional[List[Item]]:
        """Items a connection delivers, or None when the connection is dead"""
        if run is None or run.status not in (NodeRunStatus.SUCCEEDED, NodeRunStatus.FAILED):
            return None

        if connection.is_error:
            if run.status == NodeRunStatus.FAILED and producer.on_error != OnErrorPolicy.STOP:
                return self._error_items(state, producer.id, run)
            return None

        if run.status == NodeRunStatus.SUCCEEDED:
            if connection.from_output < len(run.outputs):
                return copy_items(run.outputs[connection.from_output])
            return []

        if producer.on_error == OnErrorPolicy.CONTINUE_WITH_EMPTY:
            return []
        if producer.on_error == OnErrorPolicy.CONTINUE_WITH_INPUT:
            if connection.from_output == 0:
                return copy_items(state.inputs.get(producer.id, []))
            return []
        return None

    def _error_items(self, state: RunState, node_id: str, run: NodeRunResult) -> List[Item]:
        error = {"message": run.error.get("message"), "type": run.error.get("type"), "nodeId": node_id}
        inputs = copy_items(state.inputs.get(node_id, []))
        if not inputs:
            return [Item(json={"error": error})]
        for item in inputs:
            item.json["error"] = dict(error)
        return inputs

    def _dead_reason(self, producer: NodeSpec, run: Optional[NodeRunResult]) -> str:
        if run is not None and run.status == NodeRunStatus.FAILED and producer.on_error == OnErrorPolicy.STOP:
            return SKIP_UPSTREAM_FAILED
        if run is not None and run.status == NodeRunStatus.SKIPPED:
            return SKIP_CANCELED if run.skip_reason == SKIP_CANCELED else SKIP_UPSTREAM_SKIPPED
        return SKIP_BRANCH_NOT_TAKEN

    async def _run_node(
        self,
        state: RunState,
        node_id: str,
        items: List[Item],
        inputs_by_index: Dict[int, List[Item]]
    ):
        """Run one node through its attempts and apply its error policy"""
        node = state.definition.get_node(node_id)
        run = state.execution.node_runs[node_id]
        run.input_count = len(items)
        state.inputs[node_id] = items

        if node.disabled:
            run.start()
            run.succeed([copy_items(items)])
            self._record_node(state, run)
            self._publish_node_event(state, node_id, ExecutionEventType.NODE_SUCCEEDED, {"disabled": True})
            return

        capability = state.capabilities[node_id]
        timeout = node.timeout or self.settings.default_node_timeout
        last_error: Optional[Exception] = None
        attempt = 0

        while not state.cancelled:
            attempt += 1
            context = NodeContext(
                execution_id=state.execution.id,
                workflow_id=state.definition.id,
                node_id=node_id,
                node_name=node.display_name,
                attempt=attempt,
                mode=state.execution.mode,
                inputs_by_index={index: copy_items(slot) for index, slot in inputs_by_index.items()},
                cancel_event=state.cancel_event,
                logger=node_logger,
            )
            job = partial(self._attempt, state, node, run, capability, items, context, timeout)
            try:
                result = await self.worker_pool.submit(
                    job,
                    cancel_event=state.cancel_event,
                    label=f"{state.execution.id}:{node_id}#{attempt}"
                )
            except JobNotStarted:
                break
            except CancellationRequested:
                logger.info(f"Execution {state.execution.id}: node {node_id} requested cancellation")
                self._request_cancel(state)
                break
            except Exception as e:
                last_error = e
                if attempt >= node.retry.max_attempts:
                    await self._fail_node(state, node, run, e)
                    return
                delay = calculate_retry_delay(node.retry, attempt)
                logger.warning(
                    f"Execution {state.execution.id}: node {node_id} attempt {attempt}/"
                    f"{node.retry.max_attempts} failed: {e}; retrying in {delay:.2f}s"
                )
                self._publish_node_event(state, node_id, ExecutionEventType.NODE_RETRYING, {
                    "attempt": attempt, "delay": delay, "error": str(e)
                })
                if not await sleep_unless_cancelled(delay, state.cancel_event):
                    break
                continue

            if isinstance(result, WaitForResume):
                await self._wait_for_resume(state, node, run, result)
            else:
                run.succeed(result)
                self._record_node(state, run)
                self._publish_node_event(state, node_id, ExecutionEventType.NODE_SUCCEEDED, {
                    "attempts": run.attempts, "outputs": [len(slot) for slot in result]
                })
            return

        # Cancelled before the node could finish
        if last_error is not None:
            await self._fail_node(state, node, run, last_error)
        else:
            await self._skip_node(state, node_id, SKIP_CANCELED)

    async def _attempt(
        self,
        state: RunState,
        node: NodeSpec,
        run: NodeRunResult,
        capability: NodeCapability,
        items: List[Item],
        context: NodeContext,
        timeout: float
    ) -> CapabilityResult:
        """One capability invocation; runs on a worker"""
        run.attempts = context.attempt
        run.start()
        self._record_node(state, run)
        self._publish_node_event(state, node.id, ExecutionEventType.NODE_STARTED, {"attempt": context.attempt})

        started = time.monotonic()
        outcome = "failed"
        try:
            with self.tracing.span("node.attempt", execution_id=context.execution_id, node_id=node.id):
                try:
                    result = await asyncio.wait_for(
                        capability.execute(copy_items(items), copy.deepcopy(dict(node.parameters)), context),
                        timeout=timeout
                    )
                except asyncio.TimeoutError:
                    raise NodeTimeoutError(node.id, timeout)
                except FlowEngineError:
                    raise
                except Exception as e:
                    raise NodeExecutionError(node.id, str(e) or type(e).__name__, cause=e) from e
            result = self._normalize_result(node.id, result)
            outcome = "waiting" if isinstance(result, WaitForResume) else "succeeded"
            return result
        except CancellationRequested:
            outcome = "canceled"
            raise
        finally:
            labels = {"node_type": node.type, "outcome": outcome}
            self.metrics.inc(NODE_ATTEMPTS, labels)
            self.metrics.observe(NODE_DURATION, time.monotonic() - started, {"node_type": node.type})

    def _normalize_result(self, node_id: str, result: Any) -> CapabilityResult:
        if isinstance(result, WaitForResume):
            return result
        if result is None:
            return []
        if not isinstance(result, (list, tuple)):
            raise NodeExecutionError(node_id, f"expected a list of output slots, got {type(result).__name__}")

        outputs: List[List[Item]] = []
        for slot in result:
            if not isinstance(slot, (list, tuple)):
                raise NodeExecutionError(node_id, f"output slot must be a list, got {type(slot).__name__}")
            items: List[Item] = []
            for item in slot:
                if isinstance(item, Item):
                    items.append(item)
                elif isinstance(item, Mapping):
                    items.append(Item(json=dict(item)))
                else:
                    raise NodeExecutionError(node_id, f"output item must be an Item, got {type(item).__name__}")
            outputs.append(items)
        return outputs

    async def _wait_for_resume(self, state: RunState, node: NodeSpec, run: NodeRunResult, marker: WaitForResume):
        """Suspend a node without holding a worker until it is resumed, times out or is cancelled"""
        execution = state.execution
        waiter = asyncio.get_running_loop().create_future()
        state.waiters[node.id] = waiter
        if state.cancelled:
            waiter.set_exception(CancellationRequested(f"Node '{node.id}' released by cancellation"))

        run.wait()
        self._record_node(state, run)
        self._publish_node_event(state, node.id, ExecutionEventType.NODE_WAITING, {"timeout": marker.timeout})
        if execution.status == ExecutionStatus.RUNNING:
            execution.wait()
            self._record(state, {"status": execution.status.value, "updatedAt": execution.updated_at.isoformat()})
            self._publish_execution_event(state, ExecutionEventType.EXECUTION_WAITING, {"nodeId": node.id})
        logger.info(f"Execution {execution.id}: node {node.id} is waiting")

        try:
            items = await asyncio.wait_for(waiter, timeout=marker.timeout)
        except asyncio.TimeoutError:
            await self._fail_node(state, node, run, NodeTimeoutError(node.id, marker.timeout))
        except CancellationRequested:
            await self._skip_node(state, node.id, SKIP_CANCELED)
        else:
            run.succeed([items])
            self._record_node(state, run)
            self._publish_node_event(state, node.id, ExecutionEventType.NODE_SUCCEEDED, {
                "attempts": run.attempts, "resumed": True, "outputs": [len(items)]
            })
        finally:
            state.waiters.pop(node.id, None)

        if not state.waiters and execution.status == ExecutionStatus.WAITING:
            execution.resume()
            self._record(state, {"status": execution.status.value, "updatedAt": execution.updated_at.isoformat()})
            self._publish_execution_event(state, ExecutionEventType.EXECUTION_RESUMED)

    async def _fail_node(self, state: RunState, node: NodeSpec, run: NodeRunResult, error: Exception):
        run.fail(error)
        self._record_node(state, run)
        if node.on_error == OnErrorPolicy.STOP:
            state.stop_failures.append(node.id)
            logger.warning(f"Execution {state.execution.id}: node {node.id} failed after {run.attempts} attempts: {error}")
        else:
            logger.info(
                f"Execution {state.execution.id}: node {node.id} failed, continuing with {node.on_error.value}: {error}"
            )
        self.event_logger.log(
            "node_failed",
            execution_id=state.execution.id,
            node_id=node.id,
            attempts=run.attempts,
            on_error=node.on_error.value,
        )
        self._publish_node_event(state, node.id, ExecutionEventType.NODE_FAILED, {
            "attempts": run.attempts, "onError": node.on_error.value, "error": run.error
        })

    async def _skip_node(self, state: RunState, node_id: str, reason: str):
        run = state.execution.node_runs[node_id]
        run.skip(reason)
        self._record_node(state, run)
        logger.debug(f"Execution {state.execution.id}: node {node_id} skipped ({reason})")
        self._publish_node_event(state, node_id, ExecutionEventType.NODE_SKIPPED, {"reason": reason})

    def _skip_unfinished(self, state: RunState, reason: str = SKIP_CANCELED):
        for run in state.execution.node_runs.values():
            if not run.status.is_terminal:
                run.skip(reason)

    def _final_status(self, state: RunState) -> Tuple[ExecutionStatus, Optional[Dict[str, Any]]]:
        if state.cancelled:
            self._skip_unfinished(state)
            return ExecutionStatus.CANCELED, None
        if state.stop_failures:
            return ExecutionStatus.FAILED, {
                "type": NodeExecutionError.__name__,
                "message": f"Node(s) failed with onError=stop: {', '.join(state.stop_failures)}",
                "nodes": list(state.stop_failures),
                "timestamp": utcnow().isoformat(),
            }
        return ExecutionStatus.SUCCESS, None

    async def _finalize(
        self,
        state: RunState,
        status: ExecutionStatus,
        error: Optional[Dict[str, Any]] = None
    ):
        execution = state.execution
        execution.finish(status, error)
        self._record(state, execution.to_dict(), final=True)
        self.metrics.inc(EXECUTIONS_FINISHED, {"status": status.value})
        self.event_logger.log(
            "execution_finished",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            status=status.value,
            duration=execution.duration,
        )
        logger.info(f"Execution {execution.id} finished with status {status.value}")
        self._publish_execution_event(state, FINISHED_EVENTS[status], {"error": error} if error else None)

        try:
            await self.recorder.drain(execution.id)
        finally:
            self._runs.pop(execution.id, None)
            state.done.set()

    def _record(self, state: RunState, patch: Dict[str, Any], final: bool = False):
        self.recorder.record_update(state.execution.id, patch, final=final)

    def _record_node(self, state: RunState, run: NodeRunResult):
        self._record(state, {"nodeRuns": {run.node_id: run.to_dict()}, "updatedAt": utcnow().isoformat()})

    def _publish_execution_event(
        self,
        state: RunState,
        event_type: ExecutionEventType,
        data: Dict[str, Any] = None
    ):
        event = ExecutionEvent(
            execution_id=state.execution.id,
            workflow_id=state.definition.id,
            event_type=event_type.value,
            data=data or {}
        )
        self.event_bus.publish_nowait(EXECUTION_EVENTS_TOPIC, event)

    def _publish_node_event(
        self,
        state: RunState,
        node_id: str,
        event_type: ExecutionEventType,
        data: Dict[str, Any] = None
    ):
        event = ExecutionEvent(
            execution_id=state.execution.id,
            workflow_id=state.definition.id,
            node_id=node_id,
            event_type=event_type.value,
            data=data or {}
        )
        self.event_bus.publish_nowait(NODE_EVENTS_TOPIC, event)
