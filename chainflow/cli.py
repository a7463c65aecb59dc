"""Command line interface for running chainflow workflows."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer

from chainflow import ChainExecutor, get_repository, get_workflow_store
from chainflow.cli_utils.workflow import (
    _echo_chain_info,
    _format_parameter,
    _parse_json_option,
    _read_definition_file,
)
from chainflow.config import ChainflowConfig, load_config
from chainflow.contracts import ExecStatus
from chainflow.dsl import DefinitionParser
from chainflow.errors import ChainflowError

app = typer.Typer(help="CLI for chainflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for validating and running workflows")
run_app = typer.Typer(help="Commands for inspecting and resuming runs")

app.add_typer(workflow_app, name="workflow")
app.add_typer(run_app, name="run")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a chainflow.yaml configuration file"
    ),
) -> None:
    """chainflow CLI entry point."""
    cfg = load_config(str(config) if config else None)
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = cfg


def _config(ctx: typer.Context) -> ChainflowConfig:
    return ctx.obj if isinstance(ctx.obj, ChainflowConfig) else load_config()


def _fail(exc: Exception) -> None:
    typer.secho(str(exc), fg=typer.colors.RED)
    raise typer.Exit(code=1)


@workflow_app.command("validate")
def workflow_validate(path: Path) -> None:
    """
    Check a workflow definition file.

    Parses the JSON or YAML document and checks the graph: unique node ids,
    exactly one start node, at least one end node and edges that reference
    existing nodes.

    Example:
        chainflow workflow validate ./workflows/approval.json
        # Output: Valid workflow 'approval': 4 nodes, 3 edges
    """
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    parser = DefinitionParser()
    try:
        definition = parser.parse(_read_definition_file(path))
        parser.validate(definition)
    except (ChainflowError, ValueError) as exc:
        _fail(exc)

    name = definition.name or path.stem
    typer.echo(
        f"Valid workflow '{name}': {len(definition.nodes)} nodes, {len(definition.edges)} edges"
    )


@workflow_app.command("list")
def workflow_list(ctx: typer.Context) -> None:
    """List workflow ids available in the configured workflows directory."""
    store = get_workflow_store(_config(ctx))
    workflow_ids = store.list_workflows()
    if not workflow_ids:
        typer.echo("No workflows found")
        return
    for workflow_id in workflow_ids:
        typer.echo(workflow_id)


@workflow_app.command("params")
def workflow_params(ctx: typer.Context, workflow_id: str) -> None:
    """Show the inputs a workflow's start node declares."""
    executor = ChainExecutor.from_config(_config(ctx))
    try:
        info = asyncio.run(executor.get_running_parameters(workflow_id))
    except ChainflowError as exc:
        _fail(exc)

    typer.echo(f"Workflow {workflow_id}: {info.title or '(untitled)'}")
    if info.description:
        typer.echo(info.description)
    if not info.parameters:
        typer.echo("No parameters declared")
        return
    for param in info.parameters:
        typer.echo(f"- {_format_parameter(param)}")


@workflow_app.command("run")
def workflow_run(
    ctx: typer.Context,
    workflow_id: str,
    variables: Optional[str] = typer.Option(
        None, "--vars", help="Input variables as a JSON object"
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Fail the run if it does not stop within SECONDS"
    ),
    actor: Optional[str] = typer.Option(None, "--actor", help="Recorded as the run's creator key"),
) -> None:
    """
    Run a workflow until it completes, fails or waits for confirmation.

    A run that stops at a confirmation node can be continued later with
    'chainflow run resume' as long as a database is configured.

    Example:
        chainflow workflow run approval --vars '{"amount": 120}'
    """
    inputs = _parse_json_option(variables, "--vars")
    executor = ChainExecutor.from_config(_config(ctx))

    async def _run():
        execute_id = await executor.execute_async(
            workflow_id, inputs, actor=actor, created_by=actor, timeout=timeout
        )
        return await executor.wait(execute_id)

    try:
        info = asyncio.run(_run())
    except ChainflowError as exc:
        _fail(exc)

    _echo_chain_info(info)
    if info.status == ExecStatus.FAILED:
        raise typer.Exit(code=1)


@run_app.command("status")
def run_status(
    ctx: typer.Context,
    execute_id: str,
    node: Optional[List[str]] = typer.Option(
        None, "--node", help="Only show these node ids (repeatable)"
    ),
) -> None:
    """Show the status of a run and its nodes."""
    executor = ChainExecutor.from_config(_config(ctx))
    try:
        info = asyncio.run(executor.get_status(execute_id, node or None))
    except ChainflowError as exc:
        _fail(exc)
    _echo_chain_info(info)


@run_app.command("resume")
def run_resume(
    ctx: typer.Context,
    execute_id: str,
    params: Optional[str] = typer.Option(
        None, "--params", help="Confirmation values as a JSON object"
    ),
) -> None:
    """
    Continue a suspended run with the requested confirmation values.

    Example:
        chainflow run resume 3f2a... --params '{"approved": true}'
    """
    confirm = _parse_json_option(params, "--params")
    executor = ChainExecutor.from_config(_config(ctx))

    async def _resume():
        await executor.resume(execute_id, confirm)
        return await executor.wait(execute_id)

    try:
        info = asyncio.run(_resume())
    except ChainflowError as exc:
        _fail(exc)

    _echo_chain_info(info)
    if info.status == ExecStatus.FAILED:
        raise typer.Exit(code=1)


@run_app.command("list")
def run_list(ctx: typer.Context) -> None:
    """List persisted runs with their status."""
    repo = get_repository(config=_config(ctx))
    records = asyncio.run(repo.list_execution_records())
    if not records:
        typer.echo("No runs found")
        return
    for record in records:
        typer.echo(f"{record.execute_key}\t{record.workflow_id}\t{record.status.value}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
