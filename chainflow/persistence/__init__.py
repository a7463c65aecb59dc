"""Persistence layer for chainflow runs and workflow definitions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ChainflowConfig, load_config
from .inmemory import InMemoryExecutionRepository
from .models import ExecutionRecord, ExecutionStep, WorkflowRecord
from .postgres import PostgresExecutionRepository
from .repository import ExecutionRepository, WorkflowStore
from .sqlite import SQLiteExecutionRepository
from .workflows import FileWorkflowStore, InMemoryWorkflowStore

_repository_instance: ExecutionRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[ChainflowConfig] = None
) -> ExecutionRepository:
    """Factory function to obtain an execution repository.

    The backend is selected from ``database_url`` which can be provided
    explicitly, via ``CHAINFLOW_DATABASE_URL`` or ``DATABASE_URL``, or from
    the loaded configuration. Without a database an in-memory repository is
    returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("CHAINFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryExecutionRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteExecutionRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        _repository_instance = PostgresExecutionRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


def get_workflow_store(config: Optional[ChainflowConfig] = None) -> FileWorkflowStore:
    """Return a file-backed workflow store rooted at ``workflows_dir``."""
    config = config or load_config()
    return FileWorkflowStore(config.workflows_dir)


__all__ = [
    "ExecutionRecord",
    "ExecutionStep",
    "WorkflowRecord",
    "ExecutionRepository",
    "WorkflowStore",
    "InMemoryExecutionRepository",
    "SQLiteExecutionRepository",
    "PostgresExecutionRepository",
    "InMemoryWorkflowStore",
    "FileWorkflowStore",
    "get_repository",
    "get_workflow_store",
]
