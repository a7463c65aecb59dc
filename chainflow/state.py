"""Live execution state and the in-process table of tracked runs."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .contracts import ChainInfo, ExecStatus, NodeInfo, WorkflowParameter

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeState(BaseModel):
    """Last execution of a node within a run."""

    node_id: str
    node_name: str = ""
    status: ExecStatus = ExecStatus.RUNNING
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    suspend_for_parameters: List[WorkflowParameter] = Field(default_factory=list)


class ChainState(BaseModel):
    """Mutable record of one run, owned by the task currently walking it."""

    execute_id: str
    workflow_id: str
    record_id: Optional[str] = None
    status: ExecStatus = ExecStatus.PENDING
    variables: Dict[str, Any] = Field(default_factory=dict)
    node_states: Dict[str, NodeState] = Field(default_factory=dict)
    suspended_node_id: Optional[str] = None
    suspended_params: List[WorkflowParameter] = Field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    failed_node_id: Optional[str] = None
    depth: int = 0
    timeout: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def touch(self) -> None:
        self.updated_at = utcnow()

    def merge_variables(self, output: Dict[str, Any]) -> None:
        """Merge ``output`` into the variable scope, last write wins."""
        self.variables.update(output)
        self.touch()

    def mark_suspended(self, node_id: str, params: List[WorkflowParameter]) -> None:
        self.status = ExecStatus.SUSPENDED
        self.suspended_node_id = node_id
        self.suspended_params = list(params)
        self.touch()

    def mark_resumed(self, confirm_params: Dict[str, Any]) -> str:
        """Merge confirmation input and return to ``running``.

        Returns:
            The id of the node the run was suspended on.
        """
        node_id = self.suspended_node_id or ""
        self.variables.update(confirm_params)
        self.status = ExecStatus.RUNNING
        self.suspended_node_id = None
        self.suspended_params = []
        self.touch()
        return node_id

    def mark_failed(self, error: str, node_id: Optional[str] = None) -> None:
        self.status = ExecStatus.FAILED
        self.error = error
        self.failed_node_id = node_id
        self.suspended_node_id = None
        self.suspended_params = []
        self.touch()

    def mark_completed(self) -> None:
        self.status = ExecStatus.COMPLETED
        self.result = dict(self.variables)
        self.touch()

    def to_chain_info(self, node_filter: Optional[Iterable[str]] = None) -> ChainInfo:
        wanted = set(node_filter) if node_filter else None
        nodes: Dict[str, NodeInfo] = {}
        for node_id, node_state in self.node_states.items():
            if wanted is not None and node_id not in wanted:
                continue
            nodes[node_id] = NodeInfo(
                node_id=node_id,
                node_name=node_state.node_name,
                status=node_state.status,
                message=node_state.error,
                result=node_state.output,
                suspend_for_parameters=list(node_state.suspend_for_parameters),
            )
        return ChainInfo(
            execute_id=self.execute_id,
            status=self.status,
            message=self.error,
            result=self.result,
            failed_node_id=self.failed_node_id,
            nodes=nodes,
        )


class RunStateStore:
    """Thread-safe table of live runs keyed by execute id.

    Writers publish whole-state snapshots and readers receive deep copies, so
    a status query never observes a half-applied node transition.
    """

    def __init__(self) -> None:
        self._states: Dict[str, ChainState] = {}
        self._lock = threading.Lock()

    def save(self, state: ChainState) -> None:
        snapshot = state.model_copy(deep=True)
        with self._lock:
            self._states[state.execute_id] = snapshot

    def get(self, execute_id: str) -> Optional[ChainState]:
        with self._lock:
            state = self._states.get(execute_id)
            return state.model_copy(deep=True) if state is not None else None

    def claim_suspended(self, execute_id: str) -> Optional[ChainState]:
        """Atomically flip a suspended run to running.

        Returns a working copy of the claimed state, or ``None`` if the run is
        unknown or not suspended. Only one caller can win the claim.
        """
        with self._lock:
            state = self._states.get(execute_id)
            if state is None or state.status != ExecStatus.SUSPENDED:
                return None
            state.status = ExecStatus.RUNNING
            state.touch()
            working = state.model_copy(deep=True)
        # The copy still carries the suspend detail the caller needs.
        return working

    def discard(self, execute_id: str) -> None:
        with self._lock:
            self._states.pop(execute_id, None)

    def __contains__(self, execute_id: str) -> bool:
        with self._lock:
            return execute_id in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
