"""Workflow execution engine for chainflow runs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Tuple

from .clients.llm import LLMClient, PydanticAIChatClient
from .clients.plugins import HttpPluginClient, PluginExecutor
from .clients.tools import ToolExecutor, ToolRegistry
from .config import ChainflowConfig, EngineConfig, load_config
from .contracts import (
    ChainInfo,
    ExecStatus,
    NodeType,
    RunningParameters,
    WorkflowDefinition,
    WorkflowNode,
)
from .dsl import DefinitionParser, extract_node_parameters
from .errors import (
    ChainflowError,
    ExecutionNotFound,
    MalformedDefinition,
    NodeFailure,
    NodeNotFound,
    NodeSuspended,
    NotSuspended,
    UnknownNodeType,
    WorkflowNotFound,
)
from .nodes import (
    Completed,
    Failed,
    NodeExecutorRegistry,
    NodeOutcome,
    Suspended,
    build_default_registry,
)
from .persistence import ExecutionRepository, WorkflowStore, get_repository, get_workflow_store
from .persistence.models import ExecutionRecord, ExecutionStep, WorkflowRecord
from .state import ChainState, NodeState, RunStateStore, utcnow

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
DEADLINE_EXCEEDED = "cancelled: deadline exceeded"


class ChainExecutor:
    """Walks workflow graphs and tracks their runs.

    Each run is driven by one background task at a time. A run that reaches a
    confirmation node stops without holding a task and is continued by
    :meth:`resume`. All durable writes go through ``repository``; a failing
    write is logged and the run carries on with the in-memory state.
    """

    def __init__(
        self,
        workflow_store: WorkflowStore,
        repository: ExecutionRepository | None = None,
        *,
        registry: NodeExecutorRegistry | None = None,
        llm: Optional[LLMClient] = None,
        tools: Optional[ToolExecutor] = None,
        plugins: Optional[PluginExecutor] = None,
        state_store: RunStateStore | None = None,
        parser: DefinitionParser | None = None,
        engine_config: EngineConfig | None = None,
    ) -> None:
        self._workflows = workflow_store
        self._repository = repository or get_repository()
        self._engine = engine_config or EngineConfig()
        self._parser = parser or DefinitionParser()
        self._states = state_store or RunStateStore()
        self._registry = registry or build_default_registry(
            llm=llm,
            tools=tools,
            plugins=plugins,
            subworkflows=self,
            max_subworkflow_depth=self._engine.max_subworkflow_depth,
        )
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._open_steps: Dict[str, Tuple[str, str]] = {}
        self._claim_lock = asyncio.Lock()
        self._admission = (
            asyncio.Semaphore(self._engine.max_concurrent_runs)
            if self._engine.max_concurrent_runs > 0
            else None
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[ChainflowConfig] = None,
        *,
        workflow_store: WorkflowStore | None = None,
        repository: ExecutionRepository | None = None,
        llm: Optional[LLMClient] = None,
        tools: Optional[ToolExecutor] = None,
        plugins: Optional[PluginExecutor] = None,
    ) -> "ChainExecutor":
        """Build an executor with the default clients for ``config``."""
        config = config or load_config()
        return cls(
            workflow_store or get_workflow_store(config),
            repository or get_repository(config=config),
            llm=llm or PydanticAIChatClient(config.llm.models, config.llm.default_model),
            tools=tools or ToolRegistry(),
            plugins=plugins or HttpPluginClient(config.plugins),
            engine_config=config.engine,
        )

    @property
    def registry(self) -> NodeExecutorRegistry:
        return self._registry

    @property
    def repository(self) -> ExecutionRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Public API
    async def execute_async(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        actor: Optional[str] = None,
        created_by: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Start a run in the background and return its execute id.

        Raises:
            WorkflowNotFound: If the workflow store has no such workflow.
            MalformedDefinition: If the stored DSL cannot be parsed.
            DefinitionValidationError: If the graph is invalid.
        """
        state, definition = await self._create_run(
            workflow_id, variables, actor=actor, created_by=created_by, timeout=timeout
        )
        start = self._parser.get_start_node(definition)
        self._launch(state.execute_id, self._run_task(state, definition, [start]))
        return state.execute_id

    async def get_status(
        self, execute_id: str, nodes: Optional[Iterable[str]] = None
    ) -> ChainInfo:
        """Return the current view of a run, optionally limited to ``nodes``.

        Runs no longer tracked in memory are reconstructed from the durable
        execution record and its steps.
        """
        state = self._states.get(execute_id)
        if state is None:
            record = await self._repository.get_execution_record_by_key(execute_id)
            if record is None:
                raise ExecutionNotFound(execute_id)
            steps = await self._repository.get_steps_by_key(execute_id)
            state = self._state_from_record(record, steps)
        return state.to_chain_info(nodes)

    async def resume(self, execute_id: str, confirm_params: Dict[str, Any]) -> None:
        """Continue a suspended run with the confirmation input.

        Raises:
            NotSuspended: If the run is unknown or not waiting for input.
        """
        state = await self._claim(execute_id)
        definition = self._definitions[execute_id]
        node_id = state.mark_resumed(dict(confirm_params or {}))
        self._states.save(state)
        await self._persist(
            f"resume of {execute_id}",
            self._repository.update_execution_record(
                state.record_id, ExecStatus.RUNNING, output=dict(state.variables)
            ),
        )
        logger.info(f"Resumed execute_id={execute_id} after node {node_id}")

        next_nodes = self._parser.get_next_nodes(definition, node_id)
        if not next_nodes:
            await self._complete(state)
            return
        self._launch(execute_id, self._run_task(state, definition, next_nodes))

    async def execute_node(
        self,
        workflow_id: str,
        node_id: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run a single node on a throwaway state and return its output.

        Nothing is persisted and no run is created.

        Raises:
            NodeNotFound: If the workflow has no such node.
            UnknownNodeType: If no executor handles the node type.
            NodeFailure: If the node fails.
            NodeSuspended: If the node asks for confirmation input.
        """
        record = await self._get_workflow(workflow_id)
        definition = self._parser.parse(record.content)
        node = self._parser.get_node_by_id(definition, node_id)
        if node is None:
            raise NodeNotFound(node_id)

        executor = self._registry.get(node.type)
        state = ChainState(
            execute_id=f"debug-{uuid.uuid4().hex}",
            workflow_id=workflow_id,
            status=ExecStatus.RUNNING,
            variables=dict(variables or {}),
        )
        try:
            outcome = await executor.execute(state, node)
        except ChainflowError:
            raise
        except Exception as e:
            raise NodeFailure(node.id, str(e) or type(e).__name__) from e

        if isinstance(outcome, Suspended):
            raise NodeSuspended(node.id, outcome.params)
        if isinstance(outcome, Failed):
            raise NodeFailure(node.id, outcome.error)
        return dict(outcome.output)

    async def wait(self, execute_id: str, timeout: Optional[float] = None) -> ChainInfo:
        """Wait for the run's current task to stop and return its status.

        A suspended run has no task, so this returns immediately for it.
        """
        task = self._tasks.get(execute_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return await self.get_status(execute_id)

    async def cancel(self, execute_id: str) -> bool:
        """Stop a running or suspended run; it fails with ``"cancelled"``.

        Returns ``False`` when there was nothing to cancel.
        """
        task = self._tasks.get(execute_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
            state = self._states.get(execute_id)
            # A task cancelled before its first step never ran its handlers.
            if state is not None and state.status == ExecStatus.RUNNING:
                await self._fail(state, CANCELLED)
            return True

        try:
            state = await self._claim(execute_id)
        except NotSuspended:
            return False
        await self._fail(state, CANCELLED, state.suspended_node_id)
        return True

    async def get_running_parameters(self, workflow_id: str) -> RunningParameters:
        """Describe the inputs a workflow's start node declares."""
        record = await self._get_workflow(workflow_id)
        definition = self._parser.parse(record.content)
        return RunningParameters(
            workflow_id=workflow_id,
            title=record.title or definition.name,
            description=record.description or definition.description,
            parameters=self._parser.get_start_parameters(definition),
        )

    async def run_to_completion(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        *,
        depth: int = 0,
        actor: Optional[str] = None,
        created_by: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ChainState:
        """Run a workflow inline until it stops and return its final state.

        Used for sub-workflows, which must not take an admission slot while
        their parent holds one.
        """
        state, definition = await self._create_run(
            workflow_id,
            variables,
            depth=depth,
            actor=actor,
            created_by=created_by,
            timeout=timeout,
        )
        start = self._parser.get_start_node(definition)
        await self._run(state, definition, [start])
        return state.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Run lifecycle
    async def _get_workflow(self, workflow_id: str) -> WorkflowRecord:
        record = await self._workflows.get_workflow(workflow_id)
        if record is None:
            raise WorkflowNotFound(workflow_id)
        return record

    async def _create_run(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]],
        *,
        depth: int = 0,
        actor: Optional[str] = None,
        created_by: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[ChainState, WorkflowDefinition]:
        record = await self._get_workflow(workflow_id)
        definition = self._parser.parse(record.content)
        self._parser.validate(definition)

        state = ChainState(
            execute_id=uuid.uuid4().hex,
            workflow_id=workflow_id,
            status=ExecStatus.RUNNING,
            variables=dict(variables or {}),
            depth=depth,
            timeout=timeout,
        )
        state.record_id = await self._repository.create_execution_record(
            state.execute_id,
            workflow_id,
            dict(state.variables),
            record.content,
            title=record.title or definition.name,
            description=record.description or definition.description,
            created_key=actor,
            created_by=created_by,
        )
        self._definitions[state.execute_id] = definition
        self._states.save(state)
        logger.info(
            f"Started execute_id={state.execute_id} for workflow {workflow_id} (depth={depth})"
        )
        return state, definition

    def _launch(self, execute_id: str, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro, name=f"chainflow-run-{execute_id}")
        self._tasks[execute_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(execute_id) is done:
                del self._tasks[execute_id]

        task.add_done_callback(_forget)

    async def _run_task(
        self,
        state: ChainState,
        definition: WorkflowDefinition,
        nodes: List[WorkflowNode],
    ) -> None:
        """Outermost frame of a background run."""
        slot = self._admission or contextlib.nullcontext()
        try:
            async with slot:
                await self._run(state, definition, nodes)
        except asyncio.CancelledError:
            logger.info(f"Background task for execute_id={state.execute_id} cancelled")
        except Exception as e:
            logger.error(f"Unhandled error in execute_id={state.execute_id}: {e}", exc_info=True)
            if not state.is_terminal:
                await self._fail(state, f"internal error: {e}")

    async def _run(
        self,
        state: ChainState,
        definition: WorkflowDefinition,
        nodes: List[WorkflowNode],
    ) -> None:
        deadline = state.timeout if state.timeout is not None else self._engine.run_timeout
        try:
            await asyncio.wait_for(self._walk(state, definition, nodes), deadline)
        except asyncio.TimeoutError:
            logger.warning(f"execute_id={state.execute_id} exceeded its deadline of {deadline}s")
            await self._fail(state, DEADLINE_EXCEEDED, self._running_node(state))
        except asyncio.CancelledError:
            await self._fail(state, CANCELLED, self._running_node(state))
            raise
        except Exception as e:
            logger.error(f"Run execute_id={state.execute_id} crashed: {e}", exc_info=True)
            await self._fail(state, f"internal error: {e}", self._running_node(state))

    async def _walk(
        self,
        state: ChainState,
        definition: WorkflowDefinition,
        nodes: List[WorkflowNode],
    ) -> None:
        for node in nodes:
            if state.status != ExecStatus.RUNNING:
                return
            await self._execute_node(state, definition, node)

    async def _execute_node(
        self, state: ChainState, definition: WorkflowDefinition, node: WorkflowNode
    ) -> None:
        """Execute ``node`` and everything after it.

        Single successors are followed in a loop; fan-out recurses once per
        target in edge order.
        """
        current: Optional[WorkflowNode] = node
        while current is not None:
            next_nodes = await self._step(state, definition, current)
            if len(next_nodes) == 1:
                current = next_nodes[0]
                continue
            for target in next_nodes:
                if state.status != ExecStatus.RUNNING:
                    return
                await self._execute_node(state, definition, target)
            return

    async def _step(
        self, state: ChainState, definition: WorkflowDefinition, node: WorkflowNode
    ) -> List[WorkflowNode]:
        """Run one node; return the nodes to execute next (empty to halt)."""
        if state.status != ExecStatus.RUNNING:
            return []

        node_state = NodeState(
            node_id=node.id,
            node_name=node.display_name,
            input=dict(state.variables),
        )
        state.node_states[node.id] = node_state
        state.touch()
        self._states.save(state)
        step_id = await self._persist(
            f"step {node.id} of {state.execute_id}",
            self._repository.create_step(
                state.record_id,
                state.execute_id,
                node.id,
                node.display_name,
                dict(state.variables),
                node.data,
            ),
        )
        if step_id is not None:
            self._open_steps[state.execute_id] = (node.id, step_id)
        logger.debug(f"Executing node {node.id} ({node.type}) for execute_id={state.execute_id}")

        outcome = await self._dispatch(state, node)

        if isinstance(outcome, Suspended):
            await self._suspend(state, node_state, step_id, outcome)
            return []
        if isinstance(outcome, Failed):
            await self._fail_node(state, node_state, step_id, outcome.error)
            return []

        output = dict(outcome.output or {})
        state.merge_variables(output)
        node_state.status = ExecStatus.COMPLETED
        node_state.output = output
        node_state.end_time = utcnow()
        self._states.save(state)
        self._open_steps.pop(state.execute_id, None)
        if step_id is not None:
            await self._persist(
                f"step {node.id} of {state.execute_id}",
                self._repository.update_step(
                    step_id, ExecStatus.COMPLETED, output=output, end_time=node_state.end_time
                ),
            )

        if node.type == NodeType.END.value:
            await self._complete(state)
            return []

        edges = self._parser.get_outgoing_edges(definition, node.id)
        if not edges:
            await self._complete(state)
            return []

        if node.type == NodeType.CONDITION.value:
            branch = str(output.get("condition", ""))
            for edge in edges:
                if edge.matches(branch):
                    logger.debug(f"Condition {node.id} took branch {branch!r} to {edge.target}")
                    target = self._parser.get_node_by_id(definition, edge.target)
                    return [target] if target is not None else []
            logger.info(
                f"Condition {node.id} matched no edge for branch {branch!r}; "
                f"completing execute_id={state.execute_id}"
            )
            await self._complete(state)
            return []

        return self._parser.get_next_nodes(definition, node.id)

    async def _dispatch(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        try:
            executor = self._registry.get(node.type)
        except UnknownNodeType as e:
            return Failed(str(e))

        try:
            outcome = await asyncio.wait_for(
                executor.execute(state, node), self._engine.node_timeout
            )
        except asyncio.TimeoutError as e:
            if self._engine.node_timeout is None:
                return Failed(str(e) or "timed out")
            return Failed(f"Node timed out after {self._engine.node_timeout}s")
        except Exception as e:
            logger.debug(f"Node {node.id} raised", exc_info=True)
            return Failed(str(e) or type(e).__name__)

        if not isinstance(outcome, (Completed, Suspended, Failed)):
            return Failed(f"Executor for {node.type} returned {type(outcome).__name__}")
        return outcome

    # ------------------------------------------------------------------
    # Transitions
    async def _suspend(
        self,
        state: ChainState,
        node_state: NodeState,
        step_id: Optional[str],
        outcome: Suspended,
    ) -> None:
        params = list(outcome.params)
        node_state.status = ExecStatus.SUSPENDED
        node_state.suspend_for_parameters = params
        state.mark_suspended(node_state.node_id, params)
        self._open_steps.pop(state.execute_id, None)
        # Published last: a resume must not start before these writes are done.
        if step_id is not None:
            await self._persist(
                f"step {node_state.node_id} of {state.execute_id}",
                self._repository.update_step(step_id, ExecStatus.SUSPENDED),
            )
        await self._persist(
            f"suspension of {state.execute_id}",
            self._repository.update_execution_record(
                state.record_id,
                ExecStatus.SUSPENDED,
                output=dict(state.variables),
                suspended_node_id=node_state.node_id,
                suspended_params=params,
            ),
        )
        self._states.save(state)
        logger.info(
            f"Suspended execute_id={state.execute_id} at node {node_state.node_id} "
            f"waiting for {[p.name for p in params]}"
        )

    async def _fail_node(
        self,
        state: ChainState,
        node_state: NodeState,
        step_id: Optional[str],
        error: str,
    ) -> None:
        node_state.status = ExecStatus.FAILED
        node_state.error = error
        node_state.end_time = utcnow()
        self._open_steps.pop(state.execute_id, None)
        if step_id is not None:
            await self._persist(
                f"step {node_state.node_id} of {state.execute_id}",
                self._repository.update_step(
                    step_id, ExecStatus.FAILED, error=error, end_time=node_state.end_time
                ),
            )
        await self._fail(state, error, node_state.node_id)

    async def _fail(
        self, state: ChainState, error: str, node_id: Optional[str] = None
    ) -> None:
        if state.is_terminal:
            return
        node_state = state.node_states.get(node_id) if node_id else None
        if node_state is not None and node_state.status in (
            ExecStatus.RUNNING,
            ExecStatus.SUSPENDED,
        ):
            was_suspended = node_state.status == ExecStatus.SUSPENDED
            node_state.status = ExecStatus.FAILED
            node_state.error = error
            node_state.end_time = utcnow()
            open_step = self._open_steps.pop(state.execute_id, None)
            step_id = open_step[1] if open_step is not None and open_step[0] == node_id else None
            if step_id is None and was_suspended:
                step_id = await self._suspended_step_id(state, node_id)
            if step_id is not None:
                await self._persist(
                    f"step {node_id} of {state.execute_id}",
                    self._repository.update_step(
                        step_id, ExecStatus.FAILED, error=error, end_time=node_state.end_time
                    ),
                )

        state.mark_failed(error, node_id)
        self._states.save(state)
        self._definitions.pop(state.execute_id, None)
        await self._retire(
            state,
            self._repository.update_execution_record(
                state.record_id,
                ExecStatus.FAILED,
                output=dict(state.variables),
                error=error,
                end_time=utcnow(),
            ),
        )
        logger.error(
            f"Run execute_id={state.execute_id} failed"
            + (f" at node {node_id}" if node_id else "")
            + f": {error}"
        )

    async def _complete(self, state: ChainState) -> None:
        if state.is_terminal:
            return
        state.mark_completed()
        self._states.save(state)
        self._definitions.pop(state.execute_id, None)
        await self._retire(
            state,
            self._repository.update_execution_record(
                state.record_id,
                ExecStatus.COMPLETED,
                output=state.result,
                end_time=utcnow(),
            ),
        )
        logger.info(f"Completed execute_id={state.execute_id}")

    @staticmethod
    def _running_node(state: ChainState) -> Optional[str]:
        for node_id, node_state in state.node_states.items():
            if node_state.status == ExecStatus.RUNNING:
                return node_id
        return None

    async def _persist(self, what: str, write: Awaitable[Any]) -> Any:
        """Await a durable write; failures are logged, not raised."""
        try:
            return await write
        except Exception as e:
            logger.warning(f"Failed to persist {what}: {e}")
            return None

    async def _retire(self, state: ChainState, write: Awaitable[Any]) -> None:
        """Persist a terminal record, then drop the run from the live table.

        Status of a retired run is rebuilt from storage. A run whose terminal
        write fails stays in memory so its outcome remains readable.
        """
        try:
            await write
        except Exception as e:
            logger.warning(
                f"Failed to persist {state.status.value} state of {state.execute_id}: {e}"
            )
            return
        self._states.discard(state.execute_id)

    # ------------------------------------------------------------------
    # Suspended runs
    async def _claim(self, execute_id: str) -> ChainState:
        """Take ownership of a suspended run, loading it from storage if needed."""
        state = self._states.claim_suspended(execute_id)
        if state is not None:
            return state

        async with self._claim_lock:
            state = self._states.claim_suspended(execute_id)
            if state is not None:
                return state
            tracked = self._states.get(execute_id)
            if tracked is not None:
                raise NotSuspended(execute_id, tracked.status.value)

            record = await self._repository.get_execution_record_by_key(execute_id)
            if record is None or record.status != ExecStatus.SUSPENDED:
                raise NotSuspended(execute_id, record.status.value if record else None)
            if not record.suspended_node_id:
                raise NotSuspended(execute_id, "suspended without confirmation detail")

            steps = await self._repository.get_steps_by_key(execute_id)
            self._definitions[execute_id] = self._parser.parse(record.dsl_snapshot)
            self._states.save(self._state_from_record(record, steps))
            logger.info(f"Restored suspended execute_id={execute_id} from storage")
            return self._states.claim_suspended(execute_id)

    async def _suspended_step_id(self, state: ChainState, node_id: str) -> Optional[str]:
        steps = await self._persist(
            f"steps of {state.execute_id}",
            self._repository.get_steps_by_key(state.execute_id),
        )
        for step in reversed(steps or []):
            if step.node_id == node_id and step.status == ExecStatus.SUSPENDED:
                return step.id
        return None

    def _state_from_record(
        self, record: ExecutionRecord, steps: List[ExecutionStep]
    ) -> ChainState:
        """Rebuild a run's state from its durable record and steps.

        Confirmation nodes the run already moved past keep the parameters
        their node declares in the stored definition.
        """
        node_states: Dict[str, NodeState] = {}
        snapshot: Optional[WorkflowDefinition] = None
        failed_node_id = None
        for step in steps:
            node_state = NodeState(
                node_id=step.node_id,
                node_name=step.node_name,
                status=step.status,
                input=step.input,
                output=step.output,
                start_time=step.start_time,
                end_time=step.end_time,
                error=step.error,
            )
            if step.status == ExecStatus.SUSPENDED:
                if step.node_id == record.suspended_node_id:
                    node_state.suspend_for_parameters = list(record.suspended_params)
                else:
                    snapshot = snapshot or self._snapshot(record)
                    node = self._parser.get_node_by_id(snapshot, step.node_id) if snapshot else None
                    if node is not None:
                        node_state.suspend_for_parameters = extract_node_parameters(
                            node, "confirmParameters"
                        )
            if step.status == ExecStatus.FAILED:
                failed_node_id = step.node_id
            node_states[step.node_id] = node_state

        state = ChainState(
            execute_id=record.execute_key,
            workflow_id=record.workflow_id,
            record_id=record.id,
            status=record.status,
            variables=dict(record.output or record.input),
            node_states=node_states,
            created_at=record.start_time,
            updated_at=record.end_time or record.start_time,
        )
        if record.status == ExecStatus.SUSPENDED:
            state.suspended_node_id = record.suspended_node_id
            state.suspended_params = list(record.suspended_params)
        elif record.status == ExecStatus.COMPLETED:
            state.result = dict(record.output or {})
        elif record.status == ExecStatus.FAILED:
            state.error = record.error
            state.failed_node_id = failed_node_id
        return state

    def _snapshot(self, record: ExecutionRecord) -> Optional[WorkflowDefinition]:
        if not record.dsl_snapshot:
            return None
        try:
            return self._parser.parse(record.dsl_snapshot)
        except MalformedDefinition:
            logger.warning(f"Stored definition of {record.execute_key} can no longer be parsed")
            return None
