"""Clients for the services node executors delegate to."""

from .llm import ChatMessage, LLMClient, PydanticAIChatClient
from .plugins import HttpPluginClient, PluginExecutor, PluginNotFound
from .tools import ToolExecutor, ToolNotFound, ToolRegistry

__all__ = [
    "ChatMessage",
    "LLMClient",
    "PydanticAIChatClient",
    "HttpPluginClient",
    "PluginExecutor",
    "PluginNotFound",
    "ToolExecutor",
    "ToolNotFound",
    "ToolRegistry",
]
