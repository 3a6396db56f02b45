"""HTTP JSON-RPC client for one tool server.

Speaks the streamable-HTTP flavour of the Model Context Protocol: every
operation POSTs to ``<server url>/mcp``. A session is negotiated with
``initialize`` before each discovery or call, the way the servers we talk to
expect it.
"""

from __future__ import annotations

import itertools
import json

from typing import Any

import httpx

from api.middleware.exception_handlers import ExternalServiceError, ToolExecutionError
from core.constants import (
    JSONRPC_VERSION,
    MCP_CACHED_RESULT_TEXT,
    MCP_CLIENT_NAME,
    MCP_CLIENT_VERSION,
    MCP_ENDPOINT_PATH,
    MCP_NO_SESSION,
    MCP_PROTOCOL_VERSION,
    MCP_SESSION_HEADER,
    MCPServerSettings,
)
from utils.logger import logger

HTTP_NOT_MODIFIED = 304


def cached_result_payload() -> dict[str, Any]:
    """Success body synthesized for a "304 Not Modified" call without a usable body."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "result": {"content": [{"type": "text", "text": MCP_CACHED_RESULT_TEXT}]},
    }


def _decode_body(response: httpx.Response) -> dict[str, Any] | None:
    """Parse a JSON-RPC body, accepting both plain JSON and single-event SSE framing."""
    if not response.content:
        return None
    text = response.text
    if response.headers.get("content-type", "").startswith("text/event-stream"):
        data_lines = [line[5:].strip() for line in text.splitlines() if line.startswith("data:")]
        text = "\n".join(data_lines)
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return None
    return body if isinstance(body, dict) else None


class MCPHttpClient:
    """JSON-RPC over HTTP POST for a single configured tool server."""

    def __init__(
        self,
        server: MCPServerSettings,
        http_client: httpx.AsyncClient,
        request_timeout: float,
    ):
        self.server = server
        self._http = http_client
        self._timeout = request_timeout
        self._ids = itertools.count(1)

    @property
    def name(self) -> str:
        return self.server.name

    @property
    def endpoint(self) -> str:
        return f"{self.server.url.rstrip('/')}/{MCP_ENDPOINT_PATH}"

    def _headers(self, session_id: str | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self.server.auth_token:
            headers["Authorization"] = f"Bearer {self.server.auth_token}"
        if session_id and session_id != MCP_NO_SESSION:
            headers[MCP_SESSION_HEADER] = session_id
        return headers

    def _request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": next(self._ids), "method": method}
        if params is not None:
            body["params"] = params
        return body

    async def _post(self, payload: dict[str, Any], session_id: str | None = None) -> httpx.Response:
        method = payload.get("method")
        try:
            return await self._http.post(
                self.endpoint,
                json=payload,
                headers=self._headers(session_id),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ExternalServiceError(self.name, f"{method} timed out after {self._timeout}s", cause=e) from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(self.name, f"{method} failed: {e}", cause=e) from e

    async def initialize(self) -> str:
        """Open a session and return its id, or the no-session marker."""
        response = await self._post(
            self._request(
                "initialize",
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": {"name": MCP_CLIENT_NAME, "version": MCP_CLIENT_VERSION},
                },
            )
        )
        if not response.is_success:
            raise ExternalServiceError(self.name, f"initialize returned HTTP {response.status_code}")

        session_id = response.headers.get(MCP_SESSION_HEADER)
        if not session_id:
            body = _decode_body(response) or {}
            result = body.get("result")
            session_id = result.get("sessionId") if isinstance(result, dict) else None
        session_id = session_id or MCP_NO_SESSION

        await self._notify_initialized(session_id)
        logger.debug(f"{self.name}: session {session_id}")
        return session_id

    async def _notify_initialized(self, session_id: str) -> None:
        # Notifications carry no id and expect no result body
        notification = {"jsonrpc": JSONRPC_VERSION, "method": "notifications/initialized"}
        try:
            response = await self._post(notification, session_id)
        except ExternalServiceError as e:
            logger.warning(f"{self.name}: initialized notification failed: {e.message}")
            return
        if not response.is_success:
            logger.warning(f"{self.name}: initialized notification returned HTTP {response.status_code}")

    async def list_tools(self) -> list[dict[str, Any]]:
        """Return the raw tool entries from ``tools/list``."""
        session_id = await self.initialize()
        response = await self._post(self._request("tools/list", {}), session_id)
        if not response.is_success:
            raise ExternalServiceError(self.name, f"tools/list returned HTTP {response.status_code}")

        body = _decode_body(response)
        if body is None:
            raise ExternalServiceError(self.name, "tools/list returned an unparsable body")
        if "error" in body:
            raise ExternalServiceError(self.name, f"tools/list error: {body['error']}")

        result = body.get("result") or {}
        tools = result.get("tools", []) if isinstance(result, dict) else []
        return [t for t in tools if isinstance(t, dict) and t.get("name")]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        """Invoke a tool and return ``(response body, cached)``.

        A 304 counts as success: its body is used when it carries a ``result``,
        otherwise a cache-hit result is synthesized.

        Raises:
            ToolExecutionError: non-2xx status, JSON-RPC error, timeout or transport failure
        """
        try:
            session_id = await self.initialize()
            response = await self._post(
                self._request("tools/call", {"name": tool_name, "arguments": arguments}),
                session_id,
            )
        except ExternalServiceError as e:
            raise ToolExecutionError(tool_name, e.message, cause=e) from e

        body = _decode_body(response)

        if response.status_code == HTTP_NOT_MODIFIED:
            logger.info(f"Tool '{tool_name}' on {self.name} returned HTTP 304 - treating as success")
            if body is not None and "result" in body:
                return body, True
            return cached_result_payload(), True

        if not response.is_success:
            raise ToolExecutionError(tool_name, f"HTTP {response.status_code} from {self.name}")
        if body is None:
            raise ToolExecutionError(tool_name, f"Invalid response from {self.name}")
        if "error" in body:
            raise ToolExecutionError(tool_name, f"Tool error: {body['error']}")
        if "result" not in body:
            raise ToolExecutionError(tool_name, f"Invalid response from {self.name}")
        return body, False


__all__ = ["HTTP_NOT_MODIFIED", "MCPHttpClient", "cached_result_payload"]
