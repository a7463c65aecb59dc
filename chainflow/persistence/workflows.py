"""Workflow definition stores."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import WorkflowRecord
from .repository import WorkflowStore

logger = logging.getLogger(__name__)

_SUFFIXES = (".json", ".yaml", ".yml")


class InMemoryWorkflowStore(WorkflowStore):
    """Keep workflow definitions in a dict keyed by workflow id."""

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowRecord] = {}

    def add(
        self,
        workflow_id: str,
        content: str | dict[str, Any],
        *,
        title: str = "",
        description: Optional[str] = None,
    ) -> WorkflowRecord:
        if isinstance(content, dict):
            title = title or content.get("name", "")
            description = description or content.get("description")
            content = json.dumps(content)
        record = WorkflowRecord(
            id=workflow_id, title=title, description=description, content=content
        )
        self._workflows[workflow_id] = record
        return record

    def remove(self, workflow_id: str) -> None:
        self._workflows.pop(workflow_id, None)

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        record = self._workflows.get(workflow_id)
        return record.model_copy() if record else None


class FileWorkflowStore(WorkflowStore):
    """Load workflows from ``<id>.json`` / ``<id>.yaml`` files in a directory.

    YAML files are converted to JSON so that the stored content, and the
    DSL snapshot taken from it, is always JSON.
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def _find(self, workflow_id: str) -> Path | None:
        if not workflow_id or "/" in workflow_id or "\\" in workflow_id:
            return None
        for suffix in _SUFFIXES:
            path = self.base_dir / f"{workflow_id}{suffix}"
            if path.is_file():
                return path
        return None

    def _load(self, workflow_id: str) -> WorkflowRecord | None:
        path = self._find(workflow_id)
        if path is None:
            logger.debug(f"No workflow file for {workflow_id} in {self.base_dir}")
            return None
        text = path.read_text(encoding="utf-8")
        title = ""
        description = None
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text)
            # Leave malformed files to the parser so it reports them.
            if isinstance(data, dict):
                text = json.dumps(data)
        else:
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                data = None
        if isinstance(data, dict):
            title = data.get("name") or ""
            description = data.get("description")
        return WorkflowRecord(
            id=workflow_id, title=title, description=description, content=text
        )

    def list_workflows(self) -> list[str]:
        if not self.base_dir.is_dir():
            return []
        ids = {p.stem for p in self.base_dir.iterdir() if p.suffix in _SUFFIXES}
        return sorted(ids)

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        return await asyncio.to_thread(self._load, workflow_id)
