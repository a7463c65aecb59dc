"""Chat model client used by ``llm`` nodes."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol

from pydantic import BaseModel
from pydantic_ai import Agent

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class LLMClient(Protocol):
    """Anything that can turn a message list into generated text."""

    async def chat(self, model: str, messages: List[ChatMessage]) -> str:
        """Return the assistant reply for ``messages``."""


class PydanticAIChatClient:
    """LLM client backed by pydantic-ai agents.

    Args:
        models: Maps model references used in workflow definitions (e.g.
            ``"42"`` or ``"fast"``) to pydantic-ai model names such as
            ``"openai:gpt-4o-mini"`` or to model instances.
        default_model: Used when a node does not name a model.
    """

    def __init__(
        self,
        models: Optional[Mapping[str, Any]] = None,
        default_model: Optional[str] = None,
    ) -> None:
        self._models: Dict[str, Any] = dict(models or {})
        self._default_model = default_model

    def resolve_model(self, model: str) -> Any:
        ref = model or self._default_model
        if not ref:
            raise ValueError("No model configured for LLM node")
        return self._models.get(ref, ref)

    async def chat(self, model: str, messages: List[ChatMessage]) -> str:
        system_prompts = [m.content for m in messages if m.role == "system"]
        user_prompts = [m.content for m in messages if m.role == "user"]
        if not user_prompts and system_prompts:
            # A lone system prompt is sent as the user turn.
            user_prompts, system_prompts = system_prompts, []

        agent = Agent(self.resolve_model(model), system_prompt=system_prompts)
        logger.debug(f"Running chat completion with model {model or self._default_model}")
        result = await agent.run("\n\n".join(user_prompts))
        return str(result.output)
