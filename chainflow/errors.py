"""Exception types raised by the chainflow engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .contracts import WorkflowParameter


class ChainflowError(Exception):
    """Base class for all engine errors."""


class MalformedDefinition(ChainflowError):
    """The workflow DSL could not be deserialized."""


class DefinitionValidationError(ChainflowError):
    """The workflow graph violates a structural invariant."""


class WorkflowNotFound(ChainflowError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class ExecutionNotFound(ChainflowError):
    def __init__(self, execute_id: str) -> None:
        super().__init__(f"Execution not found: {execute_id}")
        self.execute_id = execute_id


class NodeNotFound(ChainflowError):
    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class NotSuspended(ChainflowError):
    """Resume was requested for a run that is not waiting for input.

    Unknown execute ids raise this as well: without a durable suspended
    record there is no way to tell them apart from finished runs.
    """

    def __init__(self, execute_id: str, status: Optional[str] = None) -> None:
        detail = f" (status: {status})" if status else " (not found or already finished)"
        super().__init__(f"Execution {execute_id} is not suspended{detail}")
        self.execute_id = execute_id
        self.status = status


class UnknownNodeType(ChainflowError):
    def __init__(self, node_type: str) -> None:
        super().__init__(f"Unknown node type: {node_type}")
        self.node_type = node_type


class NodeFailure(ChainflowError):
    """A node executor reported an error."""

    def __init__(self, node_id: str, message: str) -> None:
        super().__init__(f"Node {node_id} failed: {message}")
        self.node_id = node_id
        self.message = message


class NodeSuspended(ChainflowError):
    """Raised by the single-node debug entry point when a node asks for input."""

    def __init__(self, node_id: str, params: List["WorkflowParameter"]) -> None:
        names = ", ".join(p.name for p in params) or "(none)"
        super().__init__(f"Node {node_id} suspended for parameters: {names}")
        self.node_id = node_id
        self.params = params


__all__ = [
    "ChainflowError",
    "MalformedDefinition",
    "DefinitionValidationError",
    "WorkflowNotFound",
    "ExecutionNotFound",
    "NodeNotFound",
    "NotSuspended",
    "UnknownNodeType",
    "NodeFailure",
    "NodeSuspended",
]
