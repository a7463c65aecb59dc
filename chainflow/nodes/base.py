"""Node executor contract and helpers shared by the built-in executors."""

from __future__ import annotations

import abc
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Union

from ..contracts import WorkflowNode, WorkflowParameter
from ..state import ChainState


@dataclass(frozen=True)
class Completed:
    """The node finished; ``output`` is merged into the run's variables."""

    output: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Suspended:
    """The node needs external input before the run can continue."""

    params: List[WorkflowParameter] = field(default_factory=list)


@dataclass(frozen=True)
class Failed:
    """The node could not complete; the run fails with ``error``."""

    error: str


NodeOutcome = Union[Completed, Suspended, Failed]


class NodeExecutor(abc.ABC):
    """Performs the work of one node type.

    Executors read ``state.variables`` but never mutate the state; the
    orchestrator merges the returned output. Raising is equivalent to
    returning :class:`Failed` with the exception text.
    """

    node_type: str = ""

    @abc.abstractmethod
    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        raise NotImplementedError


_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")
_MISSING = object()


def lookup_variable(path: str, variables: Mapping[str, Any]) -> Any:
    """Return the value at ``path`` (``a`` or ``a.b.c``) or a sentinel."""
    path = path.strip()
    if path in variables:
        return variables[path]
    current: Any = variables
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def resolve_variable(value: Any, variables: Mapping[str, Any]) -> Any:
    """Resolve a whole-value reference such as ``"${name}"``.

    The referenced value is returned with its own type. Anything that is not
    exactly one placeholder is rendered as a template instead.
    """
    if not isinstance(value, str):
        return value
    match = _PLACEHOLDER.fullmatch(value.strip())
    if match:
        resolved = lookup_variable(match.group(1), variables)
        return value if resolved is _MISSING else resolved
    return resolve_template(value, variables)


def resolve_template(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute every ``${name}`` in ``template``; unknown names are kept."""
    if not template:
        return ""

    def _sub(match: re.Match[str]) -> str:
        resolved = lookup_variable(match.group(1), variables)
        if resolved is _MISSING:
            return match.group(0)
        return _stringify(resolved)

    return _PLACEHOLDER.sub(_sub, template)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def get_str(data: Mapping[str, Any], *keys: str) -> str:
    """First non-empty value among ``keys`` as a string."""
    for key in keys:
        value = data.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value)
    return ""


def resolve_arguments(data: Mapping[str, Any], variables: Mapping[str, Any]) -> Dict[str, Any]:
    """Build call arguments from ``parameters`` (mapping) and ``inputs`` (list)."""
    args: Dict[str, Any] = {}
    params = data.get("parameters")
    if isinstance(params, Mapping):
        for key, value in params.items():
            args[key] = resolve_variable(value, variables)
    inputs = data.get("inputs")
    if isinstance(inputs, list):
        for item in inputs:
            if not isinstance(item, Mapping):
                continue
            name = get_str(item, "name")
            if name and "value" in item:
                args[name] = resolve_variable(item["value"], variables)
    return args


def wrap_result(result: Any, data: Mapping[str, Any], default_key: str) -> Dict[str, Any]:
    """Mapping results are returned as-is, anything else under the output key."""
    if isinstance(result, Mapping):
        return dict(result)
    return {get_str(data, "outputVariable") or default_key: result}
