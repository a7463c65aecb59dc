"""HTTP plugin client used by ``plugin`` nodes."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from ..config import PluginConfig

logger = logging.getLogger(__name__)


class PluginExecutor(Protocol):
    async def execute(self, plugin_ref: str, args: Dict[str, Any]) -> Any:
        """Call plugin ``plugin_ref`` with ``args`` and return its result."""


class PluginNotFound(LookupError):
    def __init__(self, plugin_ref: str) -> None:
        super().__init__(f"Plugin not configured: {plugin_ref}")
        self.plugin_ref = plugin_ref


class HttpPluginClient:
    """Calls plugin endpoints declared in configuration.

    ``GET`` and ``DELETE`` send the arguments as query parameters, other
    methods as a JSON body. JSON responses are decoded; anything else is
    returned as text.
    """

    def __init__(
        self,
        endpoints: Optional[Mapping[str, PluginConfig]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._endpoints: Dict[str, PluginConfig] = dict(endpoints or {})
        self._client = client

    def register(self, plugin_ref: str, endpoint: PluginConfig) -> None:
        self._endpoints[plugin_ref] = endpoint

    async def execute(self, plugin_ref: str, args: Dict[str, Any]) -> Any:
        endpoint = self._endpoints.get(plugin_ref)
        if endpoint is None:
            raise PluginNotFound(plugin_ref)

        if self._client is not None:
            return await self._send(self._client, endpoint, args)
        async with httpx.AsyncClient(timeout=endpoint.timeout) as client:
            return await self._send(client, endpoint, args)

    async def _send(
        self, client: httpx.AsyncClient, endpoint: PluginConfig, args: Dict[str, Any]
    ) -> Any:
        request: Dict[str, Any] = {"headers": endpoint.headers}
        if endpoint.method in ("GET", "DELETE"):
            request["params"] = args
        else:
            request["json"] = args

        logger.debug(f"Calling plugin endpoint {endpoint.method} {endpoint.url}")
        response = await client.request(endpoint.method, endpoint.url, **request)
        response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            return response.json()
        return response.text
