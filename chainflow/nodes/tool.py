from __future__ import annotations

import logging

from ..clients.tools import ToolExecutor
from ..contracts import NodeType, WorkflowNode
from ..state import ChainState
from .base import (
    Completed,
    Failed,
    NodeExecutor,
    NodeOutcome,
    get_str,
    resolve_arguments,
    wrap_result,
)

logger = logging.getLogger(__name__)


class ToolNodeExecutor(NodeExecutor):
    node_type = NodeType.TOOL.value

    def __init__(self, tools: ToolExecutor) -> None:
        self._tools = tools

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        tool_name = get_str(node.data, "toolName", "name")
        if not tool_name:
            return Failed("Tool node has no tool name configured")

        args = resolve_arguments(node.data, state.variables)
        logger.debug(f"Node {node.id} calling tool {tool_name} with {sorted(args)}")
        try:
            result = await self._tools.execute(tool_name, args)
        except Exception as e:
            return Failed(f"Tool {tool_name} failed: {e}")
        return Completed(wrap_result(result, node.data, "toolOutput"))
