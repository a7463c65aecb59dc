"""Core data contracts for chainflow workflows."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class NodeType(str, Enum):
    """Built-in node types understood by the default executor registry."""

    START = "start"
    END = "end"
    LLM = "llm"
    TOOL = "tool"
    CONDITION = "condition"
    HUMAN_CONFIRM = "human_confirm"
    PLUGIN = "plugin"
    CODE = "code"
    SUB_WORKFLOW = "sub_workflow"


# Older definitions use ``workflow`` for sub-workflow nodes.
NODE_TYPE_ALIASES: Dict[str, str] = {"workflow": NodeType.SUB_WORKFLOW.value}


class ExecStatus(str, Enum):
    """Lifecycle status shared by runs, nodes and durable records."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SUSPENDED = "suspended"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecStatus.COMPLETED, ExecStatus.FAILED)

    @property
    def code(self) -> int:
        """Numeric status code used by existing API clients."""
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ExecStatus.PENDING: 0,
    ExecStatus.RUNNING: 1,
    ExecStatus.COMPLETED: 2,
    ExecStatus.FAILED: 3,
    ExecStatus.SUSPENDED: 4,
}


class _DSLModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WorkflowParameter(_DSLModel):
    """A named input, either for the start node or a confirmation request."""

    name: str
    type: str = "string"
    description: Optional[str] = None
    required: bool = False
    default_value: Optional[Any] = Field(default=None, alias="defaultValue")


class NodePosition(_DSLModel):
    x: float = 0
    y: float = 0


class WorkflowNode(_DSLModel):
    """One step of the workflow graph."""

    id: str
    type: str
    name: str = ""
    data: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("data", "config")
    )
    parameters: Optional[List[WorkflowParameter]] = None
    position: Optional[NodePosition] = None

    @property
    def display_name(self) -> str:
        return self.name or self.type


class WorkflowEdge(_DSLModel):
    """Directed link between two nodes, optionally guarded by a branch key."""

    id: Optional[str] = None
    source: str
    target: str
    condition: Optional[str] = None
    source_port: Optional[str] = Field(default=None, alias="sourcePort")
    target_port: Optional[str] = Field(default=None, alias="targetPort")

    @property
    def is_default_branch(self) -> bool:
        """An edge without a condition string is taken for any branch."""
        return not self.condition

    def matches(self, branch: str) -> bool:
        """Return ``True`` if this edge should be taken for ``branch``."""
        if self.is_default_branch:
            return True
        return self.condition == branch or self.source_port == branch


class WorkflowDefinition(_DSLModel):
    """Parsed workflow DSL document."""

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)


class NodeInfo(BaseModel):
    """Externally visible status of a single node."""

    node_id: str
    node_name: str = ""
    status: ExecStatus
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    suspend_for_parameters: List[WorkflowParameter] = Field(default_factory=list)


class ChainInfo(BaseModel):
    """Externally visible status of a run."""

    execute_id: str
    status: ExecStatus
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    failed_node_id: Optional[str] = None
    nodes: Dict[str, NodeInfo] = Field(default_factory=dict)

    @property
    def suspended_params(self) -> List[WorkflowParameter]:
        """Parameters requested by the suspended node, if any."""
        if self.status != ExecStatus.SUSPENDED:
            return []
        for info in self.nodes.values():
            if info.status == ExecStatus.SUSPENDED and info.suspend_for_parameters:
                return info.suspend_for_parameters
        return []


class RunningParameters(BaseModel):
    """Describes what a caller needs to provide to start a workflow."""

    workflow_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    parameters: List[WorkflowParameter] = Field(default_factory=list)
