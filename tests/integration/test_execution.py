"""End-to-end tests for ChainExecutor runs against in-memory collaborators."""

import asyncio

import pytest

from chainflow import ChainExecutor, ExecStatus, RunStateStore, ToolRegistry
from chainflow.config import EngineConfig
from chainflow.errors import (
    DefinitionValidationError,
    ExecutionNotFound,
    MalformedDefinition,
    NodeFailure,
    NodeNotFound,
    NodeSuspended,
    NotSuspended,
    WorkflowNotFound,
)
from chainflow.persistence import InMemoryExecutionRepository, InMemoryWorkflowStore


def _start(**extra):
    return {"id": "start", "type": "start", **extra}


def _end():
    return {"id": "end", "type": "end"}


def _tool(node_id, tool_name, **data):
    return {"id": node_id, "type": "tool", "data": {"toolName": tool_name, **data}}


def _chain(*node_ids):
    return [{"source": a, "target": b} for a, b in zip(node_ids, node_ids[1:])]


def _make_executor(workflows, tools=None, repository=None, **engine):
    store = InMemoryWorkflowStore()
    for workflow_id, definition in workflows.items():
        store.add(workflow_id, definition)
    tools = tools or ToolRegistry()
    repository = repository or InMemoryExecutionRepository()
    executor = ChainExecutor(
        store, repository, tools=tools, engine_config=EngineConfig(**engine)
    )
    return executor, repository


def _tools():
    tools = ToolRegistry()

    @tools.tool()
    def double(n):
        return {"doubled": n * 2}

    @tools.tool()
    def broken():
        raise ValueError("boom")

    @tools.tool()
    async def label(text):
        return f"<{text}>"

    return tools


LINEAR = {
    "nodes": [
        _start(),
        _tool("a", "double", parameters={"n": "${x}"}),
        _tool("b", "label", parameters={"text": "${doubled}"}, outputVariable="tag"),
        _end(),
    ],
    "edges": _chain("start", "a", "b", "end"),
}

APPROVAL = {
    "nodes": [
        _start(),
        {
            "id": "confirm",
            "type": "human_confirm",
            "data": {"confirmParameters": [{"name": "approved", "type": "boolean", "required": True}]},
        },
        {
            "id": "after",
            "type": "code",
            "data": {"codeType": "template", "code": "approved=${approved}", "outputVariable": "note"},
        },
        _end(),
    ],
    "edges": _chain("start", "confirm", "after", "end"),
}

BRANCHING = {
    "nodes": [
        _start(),
        {
            "id": "check",
            "type": "condition",
            "data": {"conditions": [{"name": "yes", "expression": "${score} >= 10"}]},
        },
        {"id": "A", "type": "code", "data": {"codeType": "json", "code": '{"path": "A"}'}},
        {"id": "B", "type": "code", "data": {"codeType": "json", "code": '{"path": "B"}'}},
        _end(),
    ],
    "edges": [
        {"source": "start", "target": "check"},
        {"source": "check", "target": "A", "condition": "yes"},
        {"source": "check", "target": "B", "condition": ""},
        {"source": "A", "target": "end"},
        {"source": "B", "target": "end"},
    ],
}


@pytest.mark.asyncio
async def test_linear_run_completes_with_merged_outputs():
    executor, repository = _make_executor({"linear": LINEAR}, tools=_tools())

    execute_id = await executor.execute_async("linear", {"x": 1}, created_by="ada")
    info = await executor.wait(execute_id)

    assert info.status == ExecStatus.COMPLETED
    assert info.result == {"x": 1, "doubled": 2, "tag": "<2>"}
    assert all(node.status == ExecStatus.COMPLETED for node in info.nodes.values())
    assert list(info.nodes) == ["start", "a", "b", "end"]

    record = await repository.get_execution_record_by_key(execute_id)
    assert record.status == ExecStatus.COMPLETED
    assert record.output == info.result
    assert record.created_by == "ada"
    steps = await repository.get_steps_by_key(execute_id)
    assert [s.node_id for s in steps] == ["start", "a", "b", "end"]
    assert steps[1].output == {"doubled": 2}


@pytest.mark.asyncio
@pytest.mark.parametrize("score,taken,skipped", [(15, "A", "B"), (3, "B", "A")])
async def test_condition_takes_exactly_one_branch(score, taken, skipped):
    executor, _ = _make_executor({"branching": BRANCHING})

    info = await executor.wait(await executor.execute_async("branching", {"score": score}))

    assert info.status == ExecStatus.COMPLETED
    assert info.result["path"] == taken
    assert taken in info.nodes
    assert skipped not in info.nodes


@pytest.mark.asyncio
async def test_condition_without_matching_edge_completes_run():
    workflow = {
        "nodes": BRANCHING["nodes"],
        "edges": [e for e in BRANCHING["edges"] if e.get("condition") != ""],
    }
    executor, _ = _make_executor({"strict": workflow})

    info = await executor.wait(await executor.execute_async("strict", {"score": 1}))

    assert info.status == ExecStatus.COMPLETED
    assert info.result == {"score": 1, "condition": "default"}
    assert "A" not in info.nodes and "B" not in info.nodes


@pytest.mark.asyncio
async def test_edge_without_condition_is_default_whatever_its_port():
    workflow = {
        "nodes": BRANCHING["nodes"],
        "edges": [
            {"source": "start", "target": "check"},
            {"source": "check", "target": "B", "condition": "", "sourcePort": "else"},
            {"source": "B", "target": "end"},
        ],
    }
    executor, _ = _make_executor({"ported": workflow})

    info = await executor.wait(await executor.execute_async("ported", {"score": 1}))

    assert info.status == ExecStatus.COMPLETED
    assert info.result["path"] == "B"
    assert list(info.nodes) == ["start", "check", "B", "end"]

@pytest.mark.asyncio
async def test_fan_out_runs_targets_in_edge_order():
    order = []
    tools = ToolRegistry()
    tools.register("mark", lambda tag: order.append(tag) or {tag: True})
    workflow = {
        "nodes": [
            _start(),
            _tool("left", "mark", parameters={"tag": "left"}),
            _tool("right", "mark", parameters={"tag": "right"}),
            _end(),
        ],
        "edges": [
            {"source": "start", "target": "left"},
            {"source": "start", "target": "right"},
            {"source": "right", "target": "end"},
            {"source": "left", "target": "right"},
        ],
    }
    executor, _ = _make_executor({"fan": workflow}, tools=tools)

    info = await executor.wait(await executor.execute_async("fan", {}))

    assert info.status == ExecStatus.COMPLETED
    assert order == ["left", "right"]
    assert info.result["left"] is True and info.result["right"] is True


@pytest.mark.asyncio
async def test_suspend_and_resume_round_trip():
    executor, repository = _make_executor({"approval": APPROVAL})

    execute_id = await executor.execute_async("approval", {"amount": 5})
    info = await executor.wait(execute_id)
    confirm_before = info.nodes["confirm"]

    assert info.status == ExecStatus.SUSPENDED
    assert [p.name for p in info.suspended_params] == ["approved"]
    assert confirm_before.status == ExecStatus.SUSPENDED
    assert "after" not in info.nodes
    record = await repository.get_execution_record_by_key(execute_id)
    assert record.status == ExecStatus.SUSPENDED
    assert record.suspended_node_id == "confirm"

    await executor.resume(execute_id, {"approved": True})
    info = await executor.wait(execute_id)

    assert info.status == ExecStatus.COMPLETED
    assert info.result["approved"] is True
    assert info.result["note"] == "approved=true"
    assert info.suspended_params == []
    # The confirmation node keeps the state recorded when the run suspended.
    assert info.nodes["confirm"] == confirm_before

    steps = await repository.get_steps_by_key(execute_id)
    assert [s.node_id for s in steps] == ["start", "confirm", "after", "end"]
    assert steps[1].status == ExecStatus.SUSPENDED
    assert steps[1].output is None


@pytest.mark.asyncio
async def test_resume_waits_for_suspension_to_be_stored():
    class SlowSuspendRepository(InMemoryExecutionRepository):
        def __init__(self):
            super().__init__()
            self.suspending = asyncio.Event()

        async def update_step(self, step_id, status, **kwargs):
            if status == ExecStatus.SUSPENDED:
                self.suspending.set()
                await asyncio.sleep(0.2)
            await super().update_step(step_id, status, **kwargs)

    repository = SlowSuspendRepository()
    executor, _ = _make_executor({"approval": APPROVAL}, repository=repository)

    execute_id = await executor.execute_async("approval", {})
    await repository.suspending.wait()

    # Not suspended until both durable writes are done.
    assert (await executor.get_status(execute_id)).status == ExecStatus.RUNNING
    with pytest.raises(NotSuspended):
        await executor.resume(execute_id, {"approved": True})

    assert (await executor.wait(execute_id)).status == ExecStatus.SUSPENDED
    record = await repository.get_execution_record_by_key(execute_id)
    assert record.status == ExecStatus.SUSPENDED

    await executor.resume(execute_id, {"approved": True})
    info = await executor.wait(execute_id)

    assert info.status == ExecStatus.COMPLETED
    record = await repository.get_execution_record_by_key(execute_id)
    assert record.status == ExecStatus.COMPLETED
    assert record.suspended_node_id is None
    steps = await repository.get_steps_by_key(execute_id)
    assert [(s.node_id, s.status) for s in steps] == [
        ("start", ExecStatus.COMPLETED),
        ("confirm", ExecStatus.SUSPENDED),
        ("after", ExecStatus.COMPLETED),
        ("end", ExecStatus.COMPLETED),
    ]


@pytest.mark.asyncio
async def test_resumed_run_keeps_its_deadline():
    tools = ToolRegistry()

    @tools.tool()
    async def nap():
        await asyncio.sleep(5)

    workflow = {
        "nodes": [_start(), {"id": "confirm", "type": "human_confirm"}, _tool("nap", "nap"), _end()],
        "edges": _chain("start", "confirm", "nap", "end"),
    }
    executor, _ = _make_executor({"gated_nap": workflow}, tools=tools)

    execute_id = await executor.execute_async("gated_nap", {}, timeout=0.1)
    assert (await executor.wait(execute_id)).status == ExecStatus.SUSPENDED

    await executor.resume(execute_id, {})
    info = await executor.wait(execute_id, timeout=2)

    assert info.status == ExecStatus.FAILED
    assert info.message == "cancelled: deadline exceeded"
    assert info.failed_node_id == "nap"

@pytest.mark.asyncio
async def test_resume_of_terminal_node_completes_immediately():
    workflow = {
        "nodes": [_start(), {"id": "confirm", "type": "human_confirm"}, _end()],
        "edges": _chain("start", "confirm"),
    }
    executor, _ = _make_executor({"dangling": workflow})
    execute_id = await executor.execute_async("dangling", {})
    await executor.wait(execute_id)

    await executor.resume(execute_id, {"ok": 1})
    info = await executor.get_status(execute_id)
    assert info.status == ExecStatus.COMPLETED
    assert info.result == {"ok": 1}


@pytest.mark.asyncio
async def test_failure_short_circuits_the_run():
    workflow = {
        "nodes": [_start(), _tool("a", "double", parameters={"n": 2}), _tool("bad", "broken"),
                  _tool("c", "label", parameters={"text": "x"}), _end()],
        "edges": _chain("start", "a", "bad", "c", "end"),
    }
    executor, repository = _make_executor({"failing": workflow}, tools=_tools())

    execute_id = await executor.execute_async("failing", {})
    info = await executor.wait(execute_id)

    assert info.status == ExecStatus.FAILED
    assert info.failed_node_id == "bad"
    assert "boom" in info.message
    assert info.nodes["bad"].status == ExecStatus.FAILED
    assert "c" not in info.nodes
    assert info.result is None

    record = await repository.get_execution_record_by_key(execute_id)
    assert record.status == ExecStatus.FAILED
    assert "boom" in record.error
    # Outputs of nodes completed before the failure stay visible.
    assert record.output["doubled"] == 4


@pytest.mark.asyncio
async def test_unknown_node_type_fails_at_that_node():
    workflow = {
        "nodes": [_start(), {"id": "mystery", "type": "quantum"}, _end()],
        "edges": _chain("start", "mystery", "end"),
    }
    executor, _ = _make_executor({"mystery": workflow})

    info = await executor.wait(await executor.execute_async("mystery", {}))

    assert info.status == ExecStatus.FAILED
    assert info.failed_node_id == "mystery"
    assert info.message == "Unknown node type: quantum"


@pytest.mark.asyncio
async def test_status_is_idempotent_and_filterable():
    executor, _ = _make_executor({"linear": LINEAR}, tools=_tools())
    execute_id = await executor.execute_async("linear", {"x": 3})
    await executor.wait(execute_id)

    first = await executor.get_status(execute_id)
    second = await executor.get_status(execute_id)
    assert first == second

    only_a = await executor.get_status(execute_id, ["a"])
    assert list(only_a.nodes) == ["a"]

    with pytest.raises(ExecutionNotFound):
        await executor.get_status("unknown")


@pytest.mark.asyncio
async def test_resume_rejected_for_non_suspended_runs():
    executor, repository = _make_executor({"linear": LINEAR}, tools=_tools())
    execute_id = await executor.execute_async("linear", {"x": 1})
    before = await executor.wait(execute_id)

    with pytest.raises(NotSuspended):
        await executor.resume(execute_id, {"x": 100})
    with pytest.raises(NotSuspended):
        await executor.resume("unknown", {})

    assert await executor.get_status(execute_id) == before
    record = await repository.get_execution_record_by_key(execute_id)
    assert record.output["x"] == 1


@pytest.mark.asyncio
async def test_definition_errors_are_raised_before_a_run_exists():
    invalid = {"nodes": [_start()], "edges": []}
    executor, repository = _make_executor({"invalid": invalid})
    executor._workflows.add("garbled", "{not json")

    with pytest.raises(DefinitionValidationError):
        await executor.execute_async("invalid", {})
    with pytest.raises(MalformedDefinition):
        await executor.execute_async("garbled", {})
    with pytest.raises(WorkflowNotFound):
        await executor.execute_async("absent", {})
    assert await repository.list_execution_records() == []


@pytest.mark.asyncio
async def test_cancel_fails_running_and_suspended_runs():
    started = asyncio.Event()
    tools = ToolRegistry()

    @tools.tool()
    async def wait_forever():
        started.set()
        await asyncio.sleep(3600)

    workflow = {
        "nodes": [_start(), _tool("slow", "wait_forever"), _end()],
        "edges": _chain("start", "slow", "end"),
    }
    executor, repository = _make_executor({"slow": workflow, "approval": APPROVAL}, tools=tools)

    execute_id = await executor.execute_async("slow", {})
    await started.wait()
    assert await executor.cancel(execute_id) is True

    info = await executor.get_status(execute_id)
    assert info.status == ExecStatus.FAILED
    assert info.message == "cancelled"
    assert info.failed_node_id == "slow"
    steps = await repository.get_steps_by_key(execute_id)
    assert steps[-1].status == ExecStatus.FAILED

    suspended_id = await executor.execute_async("approval", {})
    await executor.wait(suspended_id)
    assert await executor.cancel(suspended_id) is True
    assert (await executor.get_status(suspended_id)).message == "cancelled"

    assert await executor.cancel(execute_id) is False


@pytest.mark.asyncio
async def test_run_deadline_and_node_timeout():
    tools = ToolRegistry()

    @tools.tool()
    async def nap():
        await asyncio.sleep(5)

    workflow = {
        "nodes": [_start(), _tool("nap", "nap"), _end()],
        "edges": _chain("start", "nap", "end"),
    }
    executor, _ = _make_executor({"nap": workflow}, tools=tools)
    info = await executor.wait(await executor.execute_async("nap", {}, timeout=0.05))
    assert info.status == ExecStatus.FAILED
    assert info.message == "cancelled: deadline exceeded"

    executor, _ = _make_executor({"nap": workflow}, tools=tools, node_timeout=0.05)
    info = await executor.wait(await executor.execute_async("nap", {}))
    assert info.status == ExecStatus.FAILED
    assert info.failed_node_id == "nap"
    assert "timed out" in info.message


@pytest.mark.asyncio
async def test_sub_workflow_result_is_merged_into_parent():
    child = {
        "nodes": [_start(), _tool("d", "double", parameters={"n": "${n}"}), _end()],
        "edges": _chain("start", "d", "end"),
    }
    parent = {
        "nodes": [
            _start(),
            {
                "id": "sub",
                "type": "workflow",
                "data": {
                    "workflowId": "child",
                    "parameters": {"n": "${n}"},
                    "outputs": [{"name": "child_total", "value": "${doubled}"}],
                },
            },
            _end(),
        ],
        "edges": _chain("start", "sub", "end"),
    }
    executor, repository = _make_executor({"child": child, "parent": parent}, tools=_tools())

    info = await executor.wait(await executor.execute_async("parent", {"n": 4}))

    assert info.status == ExecStatus.COMPLETED
    assert info.result == {"n": 4, "child_total": 8}
    records = await repository.list_execution_records()
    assert sorted(r.workflow_id for r in records) == ["child", "parent"]


@pytest.mark.asyncio
async def test_recursive_sub_workflow_is_bounded():
    looping = {
        "nodes": [
            _start(),
            {"id": "again", "type": "sub_workflow", "data": {"workflowId": "loop"}},
            _end(),
        ],
        "edges": _chain("start", "again", "end"),
    }
    executor, _ = _make_executor({"loop": looping}, max_subworkflow_depth=2)

    info = await executor.wait(await executor.execute_async("loop", {}))

    assert info.status == ExecStatus.FAILED
    assert info.failed_node_id == "again"
    assert "Sub-workflow loop failed" in info.message


@pytest.mark.asyncio
async def test_admission_control_queues_runs():
    gate = asyncio.Event()
    tools = ToolRegistry()

    @tools.tool()
    async def hold():
        await gate.wait()
        return {"held": True}

    workflow = {
        "nodes": [_start(), _tool("hold", "hold"), _end()],
        "edges": _chain("start", "hold", "end"),
    }
    executor, _ = _make_executor({"gated": workflow}, tools=tools, max_concurrent_runs=1)

    first = await executor.execute_async("gated", {})
    second = await executor.execute_async("gated", {})
    await asyncio.sleep(0.05)

    queued = await executor.get_status(second)
    assert queued.status == ExecStatus.RUNNING
    assert queued.nodes == {}

    gate.set()
    assert (await executor.wait(first)).status == ExecStatus.COMPLETED
    assert (await executor.wait(second)).status == ExecStatus.COMPLETED


@pytest.mark.asyncio
async def test_repository_write_failures_do_not_stop_the_run():
    class FlakyRepository(InMemoryExecutionRepository):
        async def update_step(self, step_id, status, **kwargs):
            raise RuntimeError("disk full")

    executor, _ = _make_executor({"linear": LINEAR}, tools=_tools(), repository=FlakyRepository())
    info = await executor.wait(await executor.execute_async("linear", {"x": 2}))
    assert info.status == ExecStatus.COMPLETED
    assert info.result["tag"] == "<4>"


@pytest.mark.asyncio
async def test_finished_runs_leave_the_live_table():
    child = {
        "nodes": [_start(), {"id": "gate", "type": "human_confirm"}, _end()],
        "edges": _chain("start", "gate", "end"),
    }
    parent = {
        "nodes": [_start(), {"id": "sub", "type": "sub_workflow", "data": {"workflowId": "child"}}, _end()],
        "edges": _chain("start", "sub", "end"),
    }
    store = InMemoryWorkflowStore()
    for workflow_id, definition in {
        "linear": LINEAR, "approval": APPROVAL, "child": child, "parent": parent,
    }.items():
        store.add(workflow_id, definition)
    states = RunStateStore()
    repository = InMemoryExecutionRepository()
    executor = ChainExecutor(store, repository, tools=_tools(), state_store=states)

    done_id = await executor.execute_async("linear", {"x": 1})
    done = await executor.wait(done_id)
    assert done.status == ExecStatus.COMPLETED
    assert done_id not in states
    assert done.result == {"x": 1, "doubled": 2, "tag": "<2>"}

    waiting_id = await executor.execute_async("approval", {})
    await executor.wait(waiting_id)
    assert waiting_id in states
    await executor.resume(waiting_id, {"approved": False})
    await executor.wait(waiting_id)
    assert waiting_id not in states

    # A sub-workflow that stops for confirmation is cancelled with its parent node.
    parent_info = await executor.wait(await executor.execute_async("parent", {}))
    assert parent_info.status == ExecStatus.FAILED
    assert parent_info.failed_node_id == "sub"
    assert len(states) == 0
    records = {r.workflow_id: r for r in await repository.list_execution_records()}
    assert records["child"].status == ExecStatus.FAILED
    assert records["child"].error == "cancelled"
    assert executor._definitions == {}


@pytest.mark.asyncio
async def test_run_stays_in_memory_when_its_outcome_is_not_stored():
    class ReadOnlyRepository(InMemoryExecutionRepository):
        async def update_execution_record(self, record_id, status, **kwargs):
            raise RuntimeError("read-only replica")

    store = InMemoryWorkflowStore()
    store.add("linear", LINEAR)
    states = RunStateStore()
    executor = ChainExecutor(store, ReadOnlyRepository(), tools=_tools(), state_store=states)

    execute_id = await executor.execute_async("linear", {"x": 2})
    info = await executor.wait(execute_id)

    assert execute_id in states
    assert info.status == ExecStatus.COMPLETED
    assert info.result["tag"] == "<4>"

@pytest.mark.asyncio
async def test_failure_creating_the_record_reaches_the_caller():
    class DownRepository(InMemoryExecutionRepository):
        async def create_execution_record(self, *args, **kwargs):
            raise ConnectionError("database unavailable")

    executor, _ = _make_executor({"linear": LINEAR}, tools=_tools(), repository=DownRepository())
    with pytest.raises(ConnectionError):
        await executor.execute_async("linear", {"x": 1})


@pytest.mark.asyncio
async def test_execute_node_debug_entry_point():
    executor, repository = _make_executor(
        {"linear": LINEAR, "approval": APPROVAL,
         "failing": {"nodes": [_start(), _tool("bad", "broken"), _end()], "edges": []}},
        tools=_tools(),
    )

    assert await executor.execute_node("linear", "a", {"x": 5}) == {"doubled": 10}
    assert await repository.list_execution_records() == []

    with pytest.raises(NodeNotFound):
        await executor.execute_node("linear", "zzz")
    with pytest.raises(NodeSuspended) as exc_info:
        await executor.execute_node("approval", "confirm")
    assert [p.name for p in exc_info.value.params] == ["approved"]
    with pytest.raises(NodeFailure) as exc_info:
        await executor.execute_node("failing", "bad")
    assert exc_info.value.node_id == "bad"


@pytest.mark.asyncio
async def test_running_parameters_describe_start_inputs():
    workflow = {
        "name": "Greeter",
        "description": "Says hi",
        "nodes": [
            _start(parameters=[{"name": "who", "required": True}, {"name": "tone", "defaultValue": "warm"}]),
            _end(),
        ],
        "edges": _chain("start", "end"),
    }
    executor, _ = _make_executor({"greeter": workflow})

    params = await executor.get_running_parameters("greeter")
    assert params.title == "Greeter"
    assert params.description == "Says hi"
    assert [p.name for p in params.parameters] == ["who", "tone"]

    info = await executor.wait(await executor.execute_async("greeter", {"who": "Ada"}))
    assert info.result == {"who": "Ada", "tone": "warm"}
