"""In-process tool registry used by ``tool`` nodes."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class ToolExecutor(Protocol):
    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        """Invoke tool ``name`` with keyword ``args``."""


class ToolNotFound(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Tool not found: {name}")
        self.name = name


class ToolRegistry:
    """Registry of named callables.

    Tools are called with the resolved node arguments as keyword arguments.
    Coroutine functions are awaited; plain functions run in a worker thread
    so a slow tool does not block other runs.
    """

    def __init__(self) -> None:
        self._tools: Dict[str, Callable[..., Any]] = {}

    def register(self, name: str, func: Callable[..., Any]) -> None:
        if name in self._tools:
            logger.warning(f"Tool '{name}' already registered, overwriting")
        self._tools[name] = func
        logger.info(f"Registered tool: {name}")

    def tool(self, name: Optional[str] = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of :meth:`register`."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.register(name or func.__name__, func)
            return func

        return decorator

    def get(self, name: str) -> Optional[Callable[..., Any]]:
        return self._tools.get(name)

    def list_tools(self) -> List[str]:
        return list(self._tools.keys())

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            logger.info(f"Unregistered tool: {name}")
            return True
        return False

    async def execute(self, name: str, args: Dict[str, Any]) -> Any:
        func = self._tools.get(name)
        if func is None:
            raise ToolNotFound(name)
        if inspect.iscoroutinefunction(func):
            return await func(**args)
        return await asyncio.to_thread(func, **args)
