"""In-memory implementation of the execution repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..contracts import ExecStatus, WorkflowParameter
from .models import ExecutionRecord, ExecutionStep
from .repository import ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ExecutionRecord] = {}
        self._keys: Dict[str, str] = {}
        self._steps: Dict[str, ExecutionStep] = {}
        self._record_id = 0
        self._step_id = 0

    # ------------------------------------------------------------------
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
        self._record_id += 1
        record_id = str(self._record_id)
        self._records[record_id] = ExecutionRecord(
            id=record_id,
            execute_key=execute_key,
            workflow_id=workflow_id,
            title=title,
            description=description,
            input=dict(input),
            dsl_snapshot=dsl_snapshot,
            start_time=datetime.now(timezone.utc),
            status=ExecStatus.RUNNING,
            created_key=created_key,
            created_by=created_by,
        )
        self._keys[execute_key] = record_id
        return record_id

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
        record = self._records.get(record_id)
        if record is None:
            return
        record.status = status
        record.error = error
        record.end_time = end_time
        record.suspended_node_id = suspended_node_id
        record.suspended_params = list(suspended_params or [])
        if output is not None:
            record.output = dict(output)

    async def create_step(
        self,
        record_id: str,
        execute_key: str,
        node_id: str,
        node_name: str,
        input: dict,
        node_config: dict,
    ) -> str:
        self._step_id += 1
        step_id = str(self._step_id)
        self._steps[step_id] = ExecutionStep(
            id=step_id,
            record_id=record_id,
            execute_key=execute_key,
            node_id=node_id,
            node_name=node_name,
            input=dict(input),
            node_config=dict(node_config),
            start_time=datetime.now(timezone.utc),
            status=ExecStatus.RUNNING,
        )
        return step_id

    async def update_step(
        self,
        step_id: str,
        status: ExecStatus,
        *,
        output: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        step = self._steps.get(step_id)
        if step is None:
            return
        step.status = status
        step.error = error
        step.end_time = end_time
        if output is not None:
            step.output = dict(output)

    async def get_execution_record_by_key(self, execute_key: str) -> ExecutionRecord | None:
        record_id = self._keys.get(execute_key)
        if record_id is None:
            return None
        return self._records[record_id].model_copy(deep=True)

    async def get_steps_by_key(self, execute_key: str) -> List[ExecutionStep]:
        # Dict insertion order is step creation order.
        return [
            step.model_copy(deep=True)
            for step in self._steps.values()
            if step.execute_key == execute_key
        ]

    async def list_execution_records(self) -> List[ExecutionRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]
