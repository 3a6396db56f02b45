from __future__ import annotations

import json

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from api.middleware.exception_handlers import ExternalServiceError, ToolExecutionError
from core.constants import MCP_CACHED_RESULT_TEXT, MCPServerSettings
from integrations.mcp_http_client import MCPHttpClient

Handler = Callable[[dict[str, Any]], httpx.Response]


def _client(tool_handler: Handler, auth_token: str | None = None, seen: list[httpx.Request] | None = None) -> MCPHttpClient:
    """Client whose initialize succeeds and whose other calls go to ``tool_handler``."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        body = json.loads(request.content)
        if body["method"] == "initialize":
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {}}, headers={"Mcp-Session-Id": "sess-1"})
        if body["method"] == "notifications/initialized":
            return httpx.Response(202)
        return tool_handler(body)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    server = MCPServerSettings(name="web", url="http://web:8080/", auth_token=auth_token)
    return MCPHttpClient(server, http, request_timeout=5.0)


@pytest.mark.asyncio
async def test_list_tools_filters_nameless_entries() -> None:
    client = _client(
        lambda body: httpx.Response(
            200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"tools": [{"name": "search"}, {"description": "x"}]}}
        )
    )
    tools = await client.list_tools()
    assert tools == [{"name": "search"}]


@pytest.mark.asyncio
async def test_requests_target_mcp_endpoint_with_session_and_auth() -> None:
    seen: list[httpx.Request] = []
    client = _client(
        lambda body: httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"tools": []}}),
        auth_token="secret",
        seen=seen,
    )
    await client.list_tools()

    assert all(str(r.url) == "http://web:8080/mcp" for r in seen)
    assert seen[-1].headers["Mcp-Session-Id"] == "sess-1"
    assert seen[-1].headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_list_tools_accepts_event_stream_body() -> None:
    payload = json.dumps({"jsonrpc": "2.0", "id": 2, "result": {"tools": [{"name": "echo"}]}})
    client = _client(
        lambda body: httpx.Response(
            200, content=f"event: message\ndata: {payload}\n\n", headers={"content-type": "text/event-stream"}
        )
    )
    assert await client.list_tools() == [{"name": "echo"}]


@pytest.mark.asyncio
async def test_list_tools_http_error() -> None:
    client = _client(lambda body: httpx.Response(500))
    with pytest.raises(ExternalServiceError):
        await client.list_tools()


@pytest.mark.asyncio
async def test_call_tool_success() -> None:
    client = _client(
        lambda body: httpx.Response(
            200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"content": [{"type": "text", "text": body["params"]["arguments"]["q"]}]}}
        )
    )
    body, cached = await client.call_tool("search", {"q": "tides"})
    assert cached is False
    assert body["result"]["content"][0]["text"] == "tides"


@pytest.mark.asyncio
async def test_call_tool_304_without_body_is_cached_success() -> None:
    client = _client(lambda body: httpx.Response(304))
    body, cached = await client.call_tool("search", {})
    assert cached is True
    assert body["result"]["content"][0]["text"] == MCP_CACHED_RESULT_TEXT


@pytest.mark.asyncio
async def test_call_tool_304_with_result_body_uses_it() -> None:
    client = _client(lambda body: httpx.Response(304, json={"jsonrpc": "2.0", "result": {"content": ["prior"]}}))
    body, cached = await client.call_tool("search", {})
    assert cached is True
    assert body["result"] == {"content": ["prior"]}


@pytest.mark.asyncio
async def test_call_tool_jsonrpc_error() -> None:
    client = _client(lambda body: httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -1}}))
    with pytest.raises(ToolExecutionError) as exc_info:
        await client.call_tool("search", {})
    assert exc_info.value.tool_name == "search"


@pytest.mark.asyncio
async def test_call_tool_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = MCPHttpClient(MCPServerSettings(name="down", url="http://down"), http, request_timeout=1.0)

    with pytest.raises(ToolExecutionError):
        await client.call_tool("search", {})
