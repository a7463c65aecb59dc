"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..contracts import ExecStatus, WorkflowParameter
from .models import ExecutionRecord, ExecutionStep
from .repository import ExecutionRepository

_RECORD_COLUMNS = (
    "id, execute_key, workflow_id, title, description, input, output, dsl_snapshot, "
    "start_time, end_time, status, error, created_key, created_by, "
    "suspended_node_id, suspended_params"
)
_STEP_COLUMNS = (
    "id, record_id, execute_key, node_id, node_name, input, output, node_config, "
    "start_time, end_time, status, error"
)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution records using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                execute_key TEXT NOT NULL UNIQUE,
                workflow_id TEXT NOT NULL,
                title TEXT,
                description TEXT,
                input TEXT,
                output TEXT,
                dsl_snapshot TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT,
                status TEXT NOT NULL,
                error TEXT,
                created_key TEXT,
                created_by TEXT,
                suspended_node_id TEXT,
                suspended_params TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_steps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                record_id INTEGER NOT NULL,
                execute_key TEXT NOT NULL,
                node_id TEXT NOT NULL,
                node_name TEXT,
                input TEXT,
                output TEXT,
                node_config TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT,
                status TEXT NOT NULL,
                error TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_execution_steps_key ON execution_steps (execute_key)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.lastrowid

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _record_from_row(row: sqlite3.Row) -> ExecutionRecord:
        return ExecutionRecord(
            id=str(row["id"]),
            execute_key=row["execute_key"],
            workflow_id=row["workflow_id"],
            title=row["title"],
            description=row["description"],
            input=json.loads(row["input"]) if row["input"] else {},
            output=json.loads(row["output"]) if row["output"] else None,
            dsl_snapshot=row["dsl_snapshot"] or "",
            start_time=datetime.fromisoformat(row["start_time"]),
            end_time=_dt(row["end_time"]),
            status=ExecStatus(row["status"]),
            error=row["error"],
            created_key=row["created_key"],
            created_by=row["created_by"],
            suspended_node_id=row["suspended_node_id"],
            suspended_params=json.loads(row["suspended_params"]) if row["suspended_params"] else [],
        )

    @staticmethod
    def _step_from_row(row: sqlite3.Row) -> ExecutionStep:
        return ExecutionStep(
            id=str(row["id"]),
            record_id=str(row["record_id"]),
            execute_key=row["execute_key"],
            node_id=row["node_id"],
            node_name=row["node_name"] or "",
            input=json.loads(row["input"]) if row["input"] else {},
            output=json.loads(row["output"]) if row["output"] else None,
            node_config=json.loads(row["node_config"]) if row["node_config"] else {},
            start_time=datetime.fromisoformat(row["start_time"]),
            end_time=_dt(row["end_time"]),
            status=ExecStatus(row["status"]),
            error=row["error"],
        )

    # ------------------------------------------------------------------
    # Repository API
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
        row_id = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO execution_records
                (execute_key, workflow_id, title, description, input, dsl_snapshot,
                 start_time, status, created_key, created_by)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            execute_key,
            workflow_id,
            title,
            description,
            _dumps(input),
            dsl_snapshot,
            datetime.now(timezone.utc).isoformat(),
            ExecStatus.RUNNING.value,
            created_key,
            created_by,
        )
        return str(row_id)

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
        params_json = _dumps([p.model_dump() for p in suspended_params or []])
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE execution_records
            SET status = ?, error = ?, end_time = ?, suspended_node_id = ?,
                suspended_params = ?, output = COALESCE(?, output)
            WHERE id = ?
            """,
            status.value,
            error,
            end_time.isoformat() if end_time else None,
            suspended_node_id,
            params_json,
            _dumps(output) if output is not None else None,
            int(record_id),
        )

    async def create_step(
        self,
        record_id: str,
        execute_key: str,
        node_id: str,
        node_name: str,
        input: dict,
        node_config: dict,
    ) -> str:
        row_id = await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO execution_steps
                (record_id, execute_key, node_id, node_name, input, node_config,
                 start_time, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            int(record_id),
            execute_key,
            node_id,
            node_name,
            _dumps(input),
            _dumps(node_config),
            datetime.now(timezone.utc).isoformat(),
            ExecStatus.RUNNING.value,
        )
        return str(row_id)

    async def update_step(
        self,
        step_id: str,
        status: ExecStatus,
        *,
        output: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE execution_steps
            SET status = ?, error = ?, end_time = ?, output = COALESCE(?, output)
            WHERE id = ?
            """,
            status.value,
            error,
            end_time.isoformat() if end_time else None,
            _dumps(output) if output is not None else None,
            int(step_id),
        )

    async def get_execution_record_by_key(self, execute_key: str) -> ExecutionRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_RECORD_COLUMNS} FROM execution_records WHERE execute_key = ?",
            execute_key,
        )
        if not row:
            return None
        return self._record_from_row(row)

    async def get_steps_by_key(self, execute_key: str) -> list[ExecutionStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_STEP_COLUMNS} FROM execution_steps WHERE execute_key = ? ORDER BY id",
            execute_key,
        )
        return [self._step_from_row(r) for r in rows]

    async def list_execution_records(self) -> list[ExecutionRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_RECORD_COLUMNS} FROM execution_records ORDER BY id",
        )
        return [self._record_from_row(r) for r in rows]

    def close(self) -> None:
        self._conn.close()
