from __future__ import annotations

from ..clients.plugins import PluginExecutor
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


class PluginNodeExecutor(NodeExecutor):
    node_type = NodeType.PLUGIN.value

    def __init__(self, plugins: PluginExecutor) -> None:
        self._plugins = plugins

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        plugin_ref = get_str(node.data, "pluginToolId", "pluginId")
        if not plugin_ref:
            return Failed("Plugin node has no plugin configured")

        args = resolve_arguments(node.data, state.variables)
        try:
            result = await self._plugins.execute(plugin_ref, args)
        except Exception as e:
            return Failed(f"Plugin {plugin_ref} failed: {e}")
        return Completed(wrap_result(result, node.data, "pluginOutput"))
