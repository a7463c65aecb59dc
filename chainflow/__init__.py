"""chainflow: DAG workflow execution with suspend and resume for AI backends."""

from .clients import HttpPluginClient, PydanticAIChatClient, ToolRegistry
from .config import ChainflowConfig, load_config
from .contracts import (
    ChainInfo,
    ExecStatus,
    NodeType,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowParameter,
)
from .dsl import DefinitionParser
from .errors import (
    ChainflowError,
    DefinitionValidationError,
    ExecutionNotFound,
    MalformedDefinition,
    NodeFailure,
    NodeNotFound,
    NodeSuspended,
    NotSuspended,
    UnknownNodeType,
    WorkflowNotFound,
)
from .execute import ChainExecutor
from .nodes import Completed, Failed, NodeExecutor, NodeExecutorRegistry, Suspended
from .persistence import get_repository, get_workflow_store
from .state import ChainState, NodeState, RunStateStore

__version__ = "0.1.0"
__all__ = [
    "ChainExecutor",
    "ChainInfo",
    "ChainState",
    "ChainflowConfig",
    "ChainflowError",
    "Completed",
    "DefinitionParser",
    "DefinitionValidationError",
    "ExecStatus",
    "ExecutionNotFound",
    "Failed",
    "HttpPluginClient",
    "MalformedDefinition",
    "NodeExecutor",
    "NodeExecutorRegistry",
    "NodeFailure",
    "NodeNotFound",
    "NodeState",
    "NodeSuspended",
    "NodeType",
    "NotSuspended",
    "PydanticAIChatClient",
    "RunStateStore",
    "Suspended",
    "ToolRegistry",
    "UnknownNodeType",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowNotFound",
    "WorkflowParameter",
    "get_repository",
    "get_workflow_store",
    "load_config",
]
