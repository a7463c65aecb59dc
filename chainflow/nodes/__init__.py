"""Node executor registry and built-in executors."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..clients.llm import LLMClient
from ..clients.plugins import PluginExecutor
from ..clients.tools import ToolExecutor
from ..contracts import NODE_TYPE_ALIASES
from ..errors import UnknownNodeType
from .base import Completed, Failed, NodeExecutor, NodeOutcome, Suspended
from .code import CodeNodeExecutor
from .control import (
    ConditionNodeExecutor,
    EndNodeExecutor,
    HumanConfirmNodeExecutor,
    StartNodeExecutor,
)
from .llm import LLMNodeExecutor
from .plugin import PluginNodeExecutor
from .subworkflow import SubWorkflowNodeExecutor, SubWorkflowRunner
from .tool import ToolNodeExecutor

logger = logging.getLogger(__name__)


class NodeExecutorRegistry:
    """Maps node type strings to executors.

    Open for registration so deployments can add custom node types next to
    the built-in ones.
    """

    def __init__(self) -> None:
        self._executors: Dict[str, NodeExecutor] = {}

    def register(self, node_type: str, executor: NodeExecutor) -> None:
        if node_type in self._executors:
            logger.warning(f"Executor for node type '{node_type}' already registered, overwriting")
        self._executors[node_type] = executor

    def get(self, node_type: str) -> NodeExecutor:
        """Return the executor for ``node_type``.

        Raises:
            UnknownNodeType: If nothing is registered for the type.
        """
        executor = self._executors.get(node_type)
        if executor is None:
            alias = NODE_TYPE_ALIASES.get(node_type)
            executor = self._executors.get(alias) if alias else None
        if executor is None:
            raise UnknownNodeType(node_type)
        return executor

    def types(self) -> List[str]:
        return list(self._executors)

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._executors or NODE_TYPE_ALIASES.get(node_type) in self._executors


def build_default_registry(
    *,
    llm: Optional[LLMClient] = None,
    tools: Optional[ToolExecutor] = None,
    plugins: Optional[PluginExecutor] = None,
    subworkflows: Optional[SubWorkflowRunner] = None,
    max_subworkflow_depth: int = 8,
) -> NodeExecutorRegistry:
    """Registry with every built-in executor whose collaborator is available."""
    registry = NodeExecutorRegistry()
    for executor in (
        StartNodeExecutor(),
        EndNodeExecutor(),
        ConditionNodeExecutor(),
        HumanConfirmNodeExecutor(),
        CodeNodeExecutor(),
    ):
        registry.register(executor.node_type, executor)

    if llm is not None:
        registry.register(LLMNodeExecutor.node_type, LLMNodeExecutor(llm))
    if tools is not None:
        registry.register(ToolNodeExecutor.node_type, ToolNodeExecutor(tools))
    if plugins is not None:
        registry.register(PluginNodeExecutor.node_type, PluginNodeExecutor(plugins))
    if subworkflows is not None:
        registry.register(
            SubWorkflowNodeExecutor.node_type,
            SubWorkflowNodeExecutor(subworkflows, max_depth=max_subworkflow_depth),
        )
    return registry


__all__ = [
    "NodeExecutor",
    "NodeExecutorRegistry",
    "NodeOutcome",
    "Completed",
    "Suspended",
    "Failed",
    "StartNodeExecutor",
    "EndNodeExecutor",
    "ConditionNodeExecutor",
    "HumanConfirmNodeExecutor",
    "CodeNodeExecutor",
    "LLMNodeExecutor",
    "ToolNodeExecutor",
    "PluginNodeExecutor",
    "SubWorkflowNodeExecutor",
    "build_default_registry",
]
