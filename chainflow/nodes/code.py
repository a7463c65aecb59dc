"""Code node: declarative data shaping over the variable scope.

Only the JSON and template forms are supported; no code is evaluated.
"""

from __future__ import annotations

import json

from ..contracts import NodeType, WorkflowNode
from ..state import ChainState
from .base import Completed, Failed, NodeExecutor, NodeOutcome, get_str, resolve_template


class CodeNodeExecutor(NodeExecutor):
    node_type = NodeType.CODE.value

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        code_type = get_str(node.data, "codeType").lower()
        code = get_str(node.data, "code")

        if code_type == "json":
            if not code:
                return Completed({})
            rendered = resolve_template(code, state.variables)
            try:
                parsed = json.loads(rendered)
            except json.JSONDecodeError as e:
                return Failed(f"JSON parse error: {e}")
            if not isinstance(parsed, dict):
                return Failed("JSON code must produce an object")
            return Completed(parsed)

        if code_type == "template":
            key = get_str(node.data, "outputVariable") or "output"
            return Completed({key: resolve_template(code, state.variables)})

        return Completed(dict(state.variables))
