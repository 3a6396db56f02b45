"""
Tool Registry - discovers tools from the configured tool servers and invokes them by name.

The active descriptor set is an immutable mapping that is replaced in one
assignment on refresh, so concurrent readers always see either the old or
the new set.
"""

from __future__ import annotations

import asyncio
import time

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

import httpx

from api.middleware.exception_handlers import ExternalServiceError, ToolExecutionError
from core.constants import MCPServerSettings
from integrations.mcp_http_client import MCPHttpClient
from models.mcp_models import ToolDescriptor, ToolResult
from utils.logger import logger
from utils.metrics import (
    mcp_servers_available,
    mcp_servers_total,
    mcp_tool_call_duration_seconds,
    mcp_tool_calls_total,
    mcp_tools_discovered,
)


class RegistryState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    READY = "ready"


class ToolRegistry:
    """Process-wide registry of discovered tools.

    State machine: IDLE -> DISCOVERING -> READY, and READY -> DISCOVERING on
    refresh. Invocation failures never change registry state.
    """

    def __init__(
        self,
        servers: list[MCPServerSettings],
        http_client: httpx.AsyncClient,
        request_timeout: float,
        discovery_timeout: float,
    ):
        self._http = http_client
        self._discovery_timeout = discovery_timeout
        self._clients: dict[str, MCPHttpClient] = {
            server.name: MCPHttpClient(server, http_client, request_timeout) for server in servers
        }
        self._tools: Mapping[str, ToolDescriptor] = MappingProxyType({})
        self._state = RegistryState.IDLE
        self._refresh_lock = asyncio.Lock()
        self.last_refreshed: datetime | None = None
        mcp_servers_total.set(len(self._clients))

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def server_names(self) -> list[str]:
        return list(self._clients)

    async def _discover_server(self, client: MCPHttpClient) -> list[ToolDescriptor]:
        raw_tools = await asyncio.wait_for(client.list_tools(), timeout=self._discovery_timeout)
        return [ToolDescriptor.from_server(raw, client.name, client.server.url) for raw in raw_tools]

    async def discover(self) -> list[ToolDescriptor]:
        """Query every server concurrently.

        A server that fails or times out contributes no tools; the others'
        tools are still returned. When two servers offer the same tool name
        the first configured server wins.
        """
        clients = list(self._clients.values())
        results = await asyncio.gather(
            *(self._discover_server(client) for client in clients),
            return_exceptions=True,
        )

        discovered: dict[str, ToolDescriptor] = {}
        available = 0
        for client, result in zip(clients, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                reason = "timed out" if isinstance(result, asyncio.TimeoutError) else str(result)
                logger.warning(f"Tool discovery failed for {client.name}: {reason}", server=client.name)
                continue
            available += 1
            for descriptor in result:
                if descriptor.name in discovered:
                    logger.warning(
                        f"Tool '{descriptor.name}' from {client.name} shadowed by "
                        f"{discovered[descriptor.name].server_name}"
                    )
                    continue
                discovered[descriptor.name] = descriptor

        mcp_servers_available.set(available)
        logger.info(
            f"Discovered {len(discovered)} tools from {available}/{len(clients)} tool servers",
            tool_count=len(discovered),
        )
        return list(discovered.values())

    async def refresh(self) -> list[ToolDescriptor]:
        """Re-run discovery and swap the active set in one assignment.

        In-flight invocations keep using the descriptor they already looked up.
        """
        async with self._refresh_lock:
            previous_state = self._state
            self._state = RegistryState.DISCOVERING
            try:
                tools = await self.discover()
            except asyncio.CancelledError:
                self._state = previous_state
                raise
            self._tools = MappingProxyType({tool.name: tool for tool in tools})
            self._state = RegistryState.READY
            self.last_refreshed = datetime.now(UTC)
            mcp_tools_discovered.set(len(tools))
            return tools

    def get_tools(self) -> list[ToolDescriptor]:
        return list(self._tools.values())

    def get_tool(self, name: str) -> ToolDescriptor | None:
        return self._tools.get(name)

    def openai_tools(self) -> list[dict[str, Any]]:
        return [tool.to_openai_tool() for tool in self._tools.values()]

    async def invoke(self, tool_name: str, arguments: dict[str, Any]) -> ToolResult:
        """Invoke a tool on the server that advertised it in the last discovery.

        Never raises for tool-level problems; failures come back as a failed
        ToolResult so the completion loop can feed them to the model.
        """
        descriptor = self._tools.get(tool_name)
        if descriptor is None:
            logger.warning(f"Tool '{tool_name}' requested but not discovered", tool=tool_name)
            mcp_tool_calls_total.labels(tool_name=tool_name, status="error").inc()
            return ToolResult.not_available(tool_name)

        client = self._clients.get(descriptor.server_name)
        if client is None:
            return ToolResult.not_available(tool_name)

        start = time.perf_counter()
        try:
            payload, cached = await client.call_tool(tool_name, arguments)
        except (ToolExecutionError, ExternalServiceError) as e:
            duration = time.perf_counter() - start
            mcp_tool_calls_total.labels(tool_name=tool_name, status="error").inc()
            mcp_tool_call_duration_seconds.labels(tool_name=tool_name).observe(duration)
            logger.log_tool_call(tool_name, client.name, arguments, success=False, duration_ms=duration * 1000)
            return ToolResult.failure(tool_name, getattr(e, "reason", e.message), server_name=client.name)

        duration = time.perf_counter() - start
        mcp_tool_calls_total.labels(tool_name=tool_name, status="cached" if cached else "success").inc()
        mcp_tool_call_duration_seconds.labels(tool_name=tool_name).observe(duration)
        logger.log_tool_call(tool_name, client.name, arguments, success=True, duration_ms=duration * 1000)
        return ToolResult.ok(tool_name, payload, cached=cached, server_name=client.name)

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = ["RegistryState", "ToolRegistry"]
