"""Helpers for the workflow and run CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml

from chainflow.contracts import ChainInfo, ExecStatus, WorkflowParameter


def _read_definition_file(path: Path) -> str:
    """Return the DSL in ``path`` as JSON text; YAML files are converted."""
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        return json.dumps(yaml.safe_load(text))
    return text


def _parse_json_option(value: Optional[str], option: str) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        data = json.loads(value)
    except json.JSONDecodeError as exc:
        typer.secho(f"{option} is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(data, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


def _format_parameter(param: WorkflowParameter) -> str:
    line = f"{param.name} ({param.type})"
    if param.required:
        line += " required"
    if param.default_value is not None:
        line += f" default={param.default_value!r}"
    if param.description:
        line += f" - {param.description}"
    return line


def _echo_chain_info(info: ChainInfo) -> None:
    color = {
        ExecStatus.COMPLETED: typer.colors.GREEN,
        ExecStatus.FAILED: typer.colors.RED,
        ExecStatus.SUSPENDED: typer.colors.YELLOW,
    }.get(info.status)
    typer.secho(f"Execution {info.execute_id}: {info.status.value}", fg=color)
    if info.message:
        where = f" (node {info.failed_node_id})" if info.failed_node_id else ""
        typer.echo(f"Error{where}: {info.message}")
    for node in info.nodes.values():
        typer.echo(f"- {node.node_id} [{node.node_name}]: {node.status.value}")
    if info.status == ExecStatus.SUSPENDED:
        typer.echo("Waiting for:")
        for param in info.suspended_params:
            typer.echo(f"  {_format_parameter(param)}")
        typer.echo(f"Resume with: chainflow run resume {info.execute_id} --params '{{...}}'")
    if info.result is not None:
        typer.echo(f"Result: {json.dumps(info.result, default=str)}")
