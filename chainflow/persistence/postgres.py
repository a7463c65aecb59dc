"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg

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


def _loads(value: Any) -> Any:
    if value is None:
        return None
    return json.loads(value) if isinstance(value, str) else value


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution records using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_records (
                id BIGSERIAL PRIMARY KEY,
                execute_key TEXT NOT NULL UNIQUE,
                workflow_id TEXT NOT NULL,
                title TEXT,
                description TEXT,
                input JSONB,
                output JSONB,
                dsl_snapshot TEXT,
                start_time TIMESTAMPTZ NOT NULL,
                end_time TIMESTAMPTZ,
                status TEXT NOT NULL,
                error TEXT,
                created_key TEXT,
                created_by TEXT,
                suspended_node_id TEXT,
                suspended_params JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_steps (
                id BIGSERIAL PRIMARY KEY,
                record_id BIGINT NOT NULL,
                execute_key TEXT NOT NULL,
                node_id TEXT NOT NULL,
                node_name TEXT,
                input JSONB,
                output JSONB,
                node_config JSONB,
                start_time TIMESTAMPTZ NOT NULL,
                end_time TIMESTAMPTZ,
                status TEXT NOT NULL,
                error TEXT
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_execution_steps_key ON execution_steps (execute_key)"
        )

    @staticmethod
    def _record_from_row(row: asyncpg.Record) -> ExecutionRecord:
        return ExecutionRecord(
            id=str(row["id"]),
            execute_key=row["execute_key"],
            workflow_id=row["workflow_id"],
            title=row["title"],
            description=row["description"],
            input=_loads(row["input"]) or {},
            output=_loads(row["output"]),
            dsl_snapshot=row["dsl_snapshot"] or "",
            start_time=row["start_time"],
            end_time=row["end_time"],
            status=ExecStatus(row["status"]),
            error=row["error"],
            created_key=row["created_key"],
            created_by=row["created_by"],
            suspended_node_id=row["suspended_node_id"],
            suspended_params=_loads(row["suspended_params"]) or [],
        )

    @staticmethod
    def _step_from_row(row: asyncpg.Record) -> ExecutionStep:
        return ExecutionStep(
            id=str(row["id"]),
            record_id=str(row["record_id"]),
            execute_key=row["execute_key"],
            node_id=row["node_id"],
            node_name=row["node_name"] or "",
            input=_loads(row["input"]) or {},
            output=_loads(row["output"]),
            node_config=_loads(row["node_config"]) or {},
            start_time=row["start_time"],
            end_time=row["end_time"],
            status=ExecStatus(row["status"]),
            error=row["error"],
        )

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
        conn = await self._connect()
        try:
            record_id = await conn.fetchval(
                """
                INSERT INTO execution_records
                    (execute_key, workflow_id, title, description, input, dsl_snapshot,
                     start_time, status, created_key, created_by)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                RETURNING id
                """,
                execute_key,
                workflow_id,
                title,
                description,
                _dumps(input),
                dsl_snapshot,
                datetime.now(timezone.utc),
                ExecStatus.RUNNING.value,
                created_key,
                created_by,
            )
        finally:
            await conn.close()
        return str(record_id)

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
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE execution_records
                SET status = $1, error = $2, end_time = $3, suspended_node_id = $4,
                    suspended_params = $5, output = COALESCE($6, output)
                WHERE id = $7
                """,
                status.value,
                error,
                end_time,
                suspended_node_id,
                _dumps([p.model_dump() for p in suspended_params or []]),
                _dumps(output) if output is not None else None,
                int(record_id),
            )
        finally:
            await conn.close()

    async def create_step(
        self,
        record_id: str,
        execute_key: str,
        node_id: str,
        node_name: str,
        input: dict,
        node_config: dict,
    ) -> str:
        conn = await self._connect()
        try:
            step_id = await conn.fetchval(
                """
                INSERT INTO execution_steps
                    (record_id, execute_key, node_id, node_name, input, node_config,
                     start_time, status)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING id
                """,
                int(record_id),
                execute_key,
                node_id,
                node_name,
                _dumps(input),
                _dumps(node_config),
                datetime.now(timezone.utc),
                ExecStatus.RUNNING.value,
            )
        finally:
            await conn.close()
        return str(step_id)

    async def update_step(
        self,
        step_id: str,
        status: ExecStatus,
        *,
        output: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        end_time: Optional[datetime] = None,
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE execution_steps
                SET status = $1, error = $2, end_time = $3, output = COALESCE($4, output)
                WHERE id = $5
                """,
                status.value,
                error,
                end_time,
                _dumps(output) if output is not None else None,
                int(step_id),
            )
        finally:
            await conn.close()

    async def get_execution_record_by_key(self, execute_key: str) -> ExecutionRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_RECORD_COLUMNS} FROM execution_records WHERE execute_key = $1",
                execute_key,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return self._record_from_row(row)

    async def get_steps_by_key(self, execute_key: str) -> list[ExecutionStep]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_STEP_COLUMNS} FROM execution_steps WHERE execute_key = $1 ORDER BY id",
                execute_key,
            )
        finally:
            await conn.close()
        return [self._step_from_row(r) for r in rows]

    async def list_execution_records(self) -> list[ExecutionRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_RECORD_COLUMNS} FROM execution_records ORDER BY id"
            )
        finally:
            await conn.close()
        return [self._record_from_row(r) for r in rows]
