from __future__ import annotations

import logging
from typing import Any, Dict, Protocol

from ..contracts import ExecStatus, NodeType, WorkflowNode
from ..state import ChainState
from .base import Completed, Failed, NodeExecutor, NodeOutcome, get_str, resolve_arguments
from .control import project_outputs

logger = logging.getLogger(__name__)


class SubWorkflowRunner(Protocol):
    async def run_to_completion(
        self, workflow_id: str, variables: Dict[str, Any], *, depth: int = 0
    ) -> ChainState:
        """Run a workflow inline and return its final state."""

    async def cancel(self, execute_id: str) -> bool:
        """Stop a run; a suspended run fails with ``"cancelled"``."""


class SubWorkflowNodeExecutor(NodeExecutor):
    """Runs another workflow inline and returns its final variables.

    The parent node blocks until the child run stops. A child that fails or
    suspends fails this node and the suspended child is cancelled; confirmation
    gates inside sub-workflows are not supported.
    """

    node_type = NodeType.SUB_WORKFLOW.value

    def __init__(self, runner: SubWorkflowRunner, max_depth: int = 8) -> None:
        self._runner = runner
        self._max_depth = max_depth

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        workflow_id = get_str(node.data, "workflowId")
        if not workflow_id:
            return Failed("Sub-workflow node has no workflowId configured")
        if state.depth + 1 > self._max_depth:
            return Failed(f"Sub-workflow nesting exceeds {self._max_depth} levels")

        inputs = resolve_arguments(node.data, state.variables)
        logger.info(
            f"Node {node.id} starting sub-workflow {workflow_id} for execute_id={state.execute_id}"
        )
        child = await self._runner.run_to_completion(
            workflow_id, inputs, depth=state.depth + 1
        )

        if child.status == ExecStatus.COMPLETED:
            return Completed(project_outputs(node.data.get("outputs"), child.result or {}))
        if child.status == ExecStatus.SUSPENDED:
            await self._runner.cancel(child.execute_id)
            return Failed(
                f"Sub-workflow {workflow_id} suspended at node {child.suspended_node_id}; "
                "confirmation inside sub-workflows is not supported"
            )
        return Failed(f"Sub-workflow {workflow_id} failed: {child.error}")
