"""Data models for persisted execution state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import ExecStatus, WorkflowParameter


class ExecutionRecord(BaseModel):
    """One row per run."""

    id: str
    execute_key: str
    workflow_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    input: dict[str, Any] = Field(default_factory=dict)
    output: Optional[dict[str, Any]] = None
    dsl_snapshot: str = ""
    start_time: datetime
    end_time: Optional[datetime] = None
    status: ExecStatus = ExecStatus.RUNNING
    error: Optional[str] = None
    created_key: Optional[str] = None
    created_by: Optional[str] = None
    suspended_node_id: Optional[str] = None
    suspended_params: list[WorkflowParameter] = Field(default_factory=list)


class ExecutionStep(BaseModel):
    """One row per node execution, in execution order."""

    id: str
    record_id: str
    execute_key: str
    node_id: str
    node_name: str = ""
    input: dict[str, Any] = Field(default_factory=dict)
    output: Optional[dict[str, Any]] = None
    node_config: dict[str, Any] = Field(default_factory=dict)
    start_time: datetime
    end_time: Optional[datetime] = None
    status: ExecStatus = ExecStatus.RUNNING
    error: Optional[str] = None


class WorkflowRecord(BaseModel):
    """Stored workflow definition as loaded by the engine."""

    id: str
    title: str = ""
    description: Optional[str] = None
    content: str
