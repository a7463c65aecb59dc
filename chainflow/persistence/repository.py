"""Repository abstractions for execution state and workflow definitions."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ..contracts import ExecStatus, WorkflowParameter
from .models import ExecutionRecord, ExecutionStep, WorkflowRecord


class ExecutionRepository(Protocol):
    """Protocol for execution audit persistence backends.

    ``update_execution_record`` always writes ``status``, ``error``,
    ``end_time`` and the suspend fields (``None`` clears them); ``output`` is
    only written when given. ``update_step`` follows the same rule.
    """

    async def create_execution_record(
        self,
        execute_key: str,
        workflow_id: str,
        input: dict,
        dsl_snapshot: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        created_key: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> str:
        """Persist a new run in ``running`` status and return its record id."""

    async def update_execution_record(
        self,
        record_id: str,
        status: ExecStatus,
        *,
        output: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None,
        suspended_node_id: Optional[str] = None,
        suspended_params: Optional[list[WorkflowParameter]] = None,
    ) -> None:
        """Record a run status transition."""

    async def create_step(
        self,
        record_id: str,
        execute_key: str,
        node_id: str,
        node_name: str,
        input: dict,
        node_config: dict,
    ) -> str:
        """Persist the start of a node execution and return the step id."""

    async def update_step(
        self,
        step_id: str,
        status: ExecStatus,
        *,
        output: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        """Record the outcome of a node execution."""

    async def get_execution_record_by_key(self, execute_key: str) -> ExecutionRecord | None:
        """Retrieve a run by execute key."""

    async def get_steps_by_key(self, execute_key: str) -> list[ExecutionStep]:
        """Return the steps of a run in execution order."""

    async def list_execution_records(self) -> list[ExecutionRecord]:
        """Return all persisted runs."""


class WorkflowStore(Protocol):
    """Read-only source of workflow definitions."""

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        """Return the workflow or ``None`` if it does not exist."""
