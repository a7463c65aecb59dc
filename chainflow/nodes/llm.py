from __future__ import annotations

from ..clients.llm import ChatMessage, LLMClient
from ..contracts import NodeType, WorkflowNode
from ..state import ChainState
from .base import Completed, Failed, NodeExecutor, NodeOutcome, get_str, resolve_template


class LLMNodeExecutor(NodeExecutor):
    """Renders the node's prompt templates and asks the chat model."""

    node_type = NodeType.LLM.value

    def __init__(self, client: LLMClient) -> None:
        self._client = client

    async def execute(self, state: ChainState, node: WorkflowNode) -> NodeOutcome:
        data = node.data
        model = get_str(data, "model", "modelId", "llmId")

        system_prompt = resolve_template(get_str(data, "prompt", "systemPrompt"), state.variables)
        user_message = resolve_template(get_str(data, "userPrompt", "message"), state.variables)

        messages = []
        if system_prompt:
            messages.append(ChatMessage(role="system", content=system_prompt))
        if user_message:
            messages.append(ChatMessage(role="user", content=user_message))
        if not messages:
            return Failed("LLM node has no prompt configured")

        try:
            content = await self._client.chat(model, messages)
        except Exception as e:
            return Failed(f"LLM call failed: {e}")
        return Completed({get_str(data, "outputVariable") or "llmOutput": content})
