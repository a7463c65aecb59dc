"""Control-flow node executors: start, end, condition and human confirmation."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from ..contracts import NodeType, WorkflowNode
from ..dsl import extract_node_parameters
from ..state import ChainState
from .base import (
    Completed,
    NodeExecutor,
    NodeOutcome,
    Suspended,
    get_str,
    resolve_template,
    resolve_variable,
)

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "default"

# Two-character operators first so ">=" is not read as ">".
_OPERATORS = ("==", "!=", ">=", "<=", ">", "<")


class StartNodeExecutor(NodeExecutor):
    """Passes the run's input through, filling declared defaults."""

    node_type = NodeType.START.value

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        output = dict(state.variables)
        for param in extract_node_parameters(node, "parameters"):
            if param.name not in output and param.default_value is not None:
                output[param.name] = param.default_value
        return Completed(output)


class EndNodeExecutor(NodeExecutor):
    """Returns the variables, or the projection declared in ``outputs``."""

    node_type = NodeType.END.value

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        return Completed(project_outputs(node.data.get("outputs"), state.variables))


def project_outputs(outputs: Any, variables: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    if isinstance(outputs, list):
        for item in outputs:
            if not isinstance(item, Mapping):
                continue
            key = get_str(item, "name")
            value = item.get("value")
            if key and value not in (None, ""):
                result[key] = resolve_variable(value, variables)
    if not result:
        return dict(variables)
    return result


class ConditionNodeExecutor(NodeExecutor):
    """Picks a branch key; the orchestrator maps it onto an outgoing edge."""

    node_type = NodeType.CONDITION.value

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        conditions = node.data.get("conditions")
        if isinstance(conditions, list):
            for cond in conditions:
                if not isinstance(cond, Mapping):
                    continue
                name = get_str(cond, "name")
                expression = get_str(cond, "expression")
                if name and evaluate_condition(expression, state.variables):
                    logger.debug(f"Condition node {node.id} matched branch {name!r}")
                    return Completed({"condition": name})
        return Completed({"condition": DEFAULT_BRANCH})


def evaluate_condition(expression: str, variables: Mapping[str, Any]) -> bool:
    """Evaluate a simple comparison such as ``${score} >= 10``.

    Placeholders are substituted first. Operands compare numerically when both
    sides parse as numbers, otherwise as trimmed strings. An expression with
    no operator holds when it renders to ``true`` or ``1``.
    """
    if not expression:
        return False
    resolved = resolve_template(expression, variables)
    for op in _OPERATORS:
        if op in resolved:
            left, right = (part.strip() for part in resolved.split(op, 1))
            return _compare(left, op, right)
    return resolved.strip().lower() in ("true", "1")


def _compare(left: str, op: str, right: str) -> bool:
    lnum, rnum = _to_number(left), _to_number(right)
    if lnum is not None and rnum is not None:
        a: Any = lnum
        b: Any = rnum
    else:
        a, b = _unquote(left), _unquote(right)
    if op == "==":
        return a == b
    if op == "!=":
        return a != b
    try:
        if op == ">=":
            return a >= b
        if op == "<=":
            return a <= b
        if op == ">":
            return a > b
        return a < b
    except TypeError:
        return False


def _to_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


class HumanConfirmNodeExecutor(NodeExecutor):
    """Always suspends with the configured confirmation parameters.

    Resuming the run continues after this node without executing it again.
    """

    node_type = NodeType.HUMAN_CONFIRM.value

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        return Suspended(extract_node_parameters(node, "confirmParameters"))
