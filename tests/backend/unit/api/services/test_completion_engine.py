from __future__ import annotations

import json

from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from openai import APIConnectionError

from api.middleware.exception_handlers import ExternalServiceError
from api.services.completion_engine import CompletionEngine, PendingToolCall, ToolCallAccumulator, tool_result_notice
from api.services.transcript_reconciler import decide
from api.streaming.cancellation import CancellationToken
from core.constants import TOOL_EXECUTION_NOTICE
from models.mcp_models import ToolResult


def _chunk(content: str | None = None, tool_calls: list[Any] | None = None, finish: str | None = None) -> Any:
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta, finish_reason=finish)])


def _tool_delta(index: int, id: str | None = None, name: str | None = None, arguments: str | None = None) -> Any:
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeStream:
    """Async-iterable stand-in for an AsyncStream of chat completion chunks."""

    def __init__(self, chunks: list[Any]):
        self._chunks = chunks
        self.closed = False

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[Any]:
        for chunk in self._chunks:
            yield chunk

    async def close(self) -> None:
        self.closed = True


def _client(*streams: FakeStream) -> Mock:
    client = Mock()
    client.chat.completions.create = AsyncMock(side_effect=list(streams))
    return client


def _registry(results: dict[str, ToolResult] | None = None) -> MagicMock:
    registry = MagicMock()
    registry.openai_tools.return_value = [{"type": "function", "function": {"name": "search"}}]
    registry.get_tools.return_value = [SimpleNamespace(name="search")]

    async def invoke(name: str, arguments: dict[str, Any]) -> ToolResult:
        return (results or {}).get(name) or ToolResult.ok(name, {"jsonrpc": "2.0", "result": {"args": arguments}})

    registry.invoke = AsyncMock(side_effect=invoke)
    return registry


def _tool_call_stream(call_id: str = "call_1", arguments: str = '{"q": "tides"}') -> FakeStream:
    return FakeStream(
        [
            _chunk(tool_calls=[_tool_delta(0, id=call_id, name="sea")]),
            _chunk(tool_calls=[_tool_delta(0, name="rch", arguments=arguments[:5])]),
            _chunk(tool_calls=[_tool_delta(0, arguments=arguments[5:])], finish="tool_calls"),
        ]
    )


async def _collect(engine: CompletionEngine, messages: list[dict[str, Any]], **kwargs: Any) -> list[str]:
    return [token async for token in engine.stream(messages, **kwargs)]


class TestToolCallAccumulator:
    def test_assembles_by_index(self) -> None:
        acc = ToolCallAccumulator()
        acc.add([_tool_delta(1, id="b", name="two"), _tool_delta(0, id="a", name="one")])
        acc.add([_tool_delta(0, arguments='{"x"'), _tool_delta(0, arguments=": 1}")])

        calls = acc.complete_calls()

        assert [c.id for c in calls] == ["a", "b"]
        assert calls[0].parsed_arguments() == {"x": 1}

    def test_id_is_set_once(self) -> None:
        acc = ToolCallAccumulator()
        acc.add([_tool_delta(0, id="first", name="t")])
        acc.add([_tool_delta(0, id="second")])
        assert acc.complete_calls()[0].id == "first"

    def test_incomplete_calls_are_skipped(self) -> None:
        acc = ToolCallAccumulator()
        acc.add([_tool_delta(0, arguments="{}")])
        assert acc.complete_calls() == []

    def test_malformed_arguments_become_empty(self) -> None:
        assert PendingToolCall(index=0, id="c", name="t", arguments="{not json").parsed_arguments() == {}
        assert PendingToolCall(index=0, id="c", name="t", arguments="[1, 2]").parsed_arguments() == {}


class TestCompletionEngine:
    def test_rejects_zero_iterations(self) -> None:
        with pytest.raises(ValueError):
            CompletionEngine(Mock(), None, max_tool_iterations=0, default_model="m")

    @pytest.mark.asyncio
    async def test_plain_answer_streams_tokens(self) -> None:
        client = _client(FakeStream([_chunk("Hel"), _chunk("lo"), _chunk(finish="stop")]))
        engine = CompletionEngine(client, _registry(), max_tool_iterations=3, default_model="gpt-4o")

        tokens = await _collect(engine, [{"role": "user", "content": "hi"}])

        assert tokens == ["Hel", "lo"]
        request = client.chat.completions.create.await_args.kwargs
        assert request["model"] == "gpt-4o"
        assert request["stream"] is True
        assert request["tools"][0]["function"]["name"] == "search"

    @pytest.mark.asyncio
    async def test_tools_not_offered_when_disabled(self) -> None:
        client = _client(FakeStream([_chunk("ok", finish="stop")]))
        engine = CompletionEngine(client, _registry(), max_tool_iterations=3, default_model="m")

        await _collect(engine, [], offer_tools=False, model="other")

        request = client.chat.completions.create.await_args.kwargs
        assert "tools" not in request
        assert request["model"] == "other"

    @pytest.mark.asyncio
    async def test_tool_loop_executes_and_resubmits(self) -> None:
        client = _client(_tool_call_stream(), FakeStream([_chunk("Low tide at 6."), _chunk(finish="stop")]))
        registry = _registry()
        engine = CompletionEngine(client, registry, max_tool_iterations=5, default_model="m")
        messages: list[dict[str, Any]] = [{"role": "user", "content": "tides?"}]

        tokens = await _collect(engine, messages)

        registry.invoke.assert_awaited_once_with("search", {"q": "tides"})
        assert tokens[0] == TOOL_EXECUTION_NOTICE
        assert tokens[1].startswith("[Tool search executed. Result (preview): ")
        assert tokens[-1] == "Low tide at 6."

        assistant, tool = messages[1], messages[2]
        assert assistant["role"] == "assistant"
        assert assistant["tool_calls"][0]["id"] == "call_1"
        assert assistant["tool_calls"][0]["function"] == {"name": "search", "arguments": '{"q": "tides"}'}
        assert tool["role"] == "tool"
        assert tool["tool_call_id"] == "call_1"
        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_iteration_cap_stops_without_executing(self) -> None:
        client = _client(_tool_call_stream("c1"), _tool_call_stream("c2"))
        registry = _registry()
        engine = CompletionEngine(client, registry, max_tool_iterations=2, default_model="m")

        tokens = await _collect(engine, [{"role": "user", "content": "loop"}])

        assert client.chat.completions.create.await_count == 2
        assert registry.invoke.await_count == 1
        assert tokens.count(TOOL_EXECUTION_NOTICE) == 1

    @pytest.mark.asyncio
    async def test_cap_of_one_means_no_tool_execution(self) -> None:
        client = _client(_tool_call_stream())
        registry = _registry()
        engine = CompletionEngine(client, registry, max_tool_iterations=1, default_model="m")

        assert await _collect(engine, []) == []
        registry.invoke.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_arguments_invoke_with_empty_object(self) -> None:
        client = _client(_tool_call_stream(arguments="{oops"), FakeStream([_chunk("done", finish="stop")]))
        registry = _registry()
        engine = CompletionEngine(client, registry, max_tool_iterations=3, default_model="m")

        await _collect(engine, [])

        registry.invoke.assert_awaited_once_with("search", {})

    @pytest.mark.asyncio
    async def test_failed_tool_is_fed_back_to_model(self) -> None:
        client = _client(_tool_call_stream(), FakeStream([_chunk("Sorry.", finish="stop")]))
        registry = _registry({"search": ToolResult.failure("search", "HTTP 500 from web")})
        engine = CompletionEngine(client, registry, max_tool_iterations=3, default_model="m")
        messages: list[dict[str, Any]] = []

        tokens = await _collect(engine, messages)

        assert '"error": "HTTP 500 from web"' in messages[1]["content"]
        assert tokens[-1] == "Sorry."

    @pytest.mark.asyncio
    async def test_cached_tool_result_counts_as_success(self) -> None:
        cached = ToolResult.ok("search", {"jsonrpc": "2.0", "result": {"content": ["cached"]}}, cached=True)
        client = _client(_tool_call_stream(), FakeStream([_chunk("ok", finish="stop")]))
        engine = CompletionEngine(client, _registry({"search": cached}), max_tool_iterations=3, default_model="m")
        messages: list[dict[str, Any]] = []

        await _collect(engine, messages)

        assert "error" not in messages[1]["content"]
        assert "cached" in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_cancellation_stops_and_closes_stream(self) -> None:
        stream = FakeStream([_chunk("a"), _chunk("b"), _chunk("c")])
        engine = CompletionEngine(_client(stream), _registry(), max_tool_iterations=3, default_model="m")
        token = CancellationToken()

        received: list[str] = []
        async for piece in engine.stream([], cancel_token=token):
            received.append(piece)
            await token.cancel("user")

        assert received == ["a"]
        assert stream.closed

    @pytest.mark.asyncio
    async def test_backend_error_is_wrapped(self) -> None:
        client = Mock()
        client.chat.completions.create = AsyncMock(side_effect=APIConnectionError(request=Mock()))
        engine = CompletionEngine(client, _registry(), max_tool_iterations=3, default_model="m")

        with pytest.raises(ExternalServiceError):
            await _collect(engine, [])

    @pytest.mark.asyncio
    async def test_without_registry_tools_are_unavailable(self) -> None:
        client = _client(_tool_call_stream(), FakeStream([_chunk("fine", finish="stop")]))
        engine = CompletionEngine(client, None, max_tool_iterations=3, default_model="m")
        messages: list[dict[str, Any]] = []

        await _collect(engine, messages)

        assert "not available" in messages[1]["content"]
        assert engine.tool_names() == []

    @pytest.mark.asyncio
    async def test_consumer_stopping_early_closes_stream(self) -> None:
        stream = FakeStream([_chunk("a"), _chunk("b"), _chunk("c")])
        engine = CompletionEngine(_client(stream), _registry(), max_tool_iterations=3, default_model="m")

        tokens = engine.stream([])
        assert await tokens.__anext__() == "a"
        await tokens.aclose()

        assert stream.closed

    @pytest.mark.asyncio
    async def test_cancel_during_tool_execution_skips_next_request(self) -> None:
        token = CancellationToken()
        registry = _registry()

        async def invoke(name: str, arguments: dict[str, Any]) -> ToolResult:
            await token.cancel("user")
            return ToolResult.ok(name, {"jsonrpc": "2.0", "result": {}})

        registry.invoke = AsyncMock(side_effect=invoke)
        client = _client(_tool_call_stream(), FakeStream([_chunk("late", finish="stop")]))
        engine = CompletionEngine(client, registry, max_tool_iterations=5, default_model="m")

        tokens = await _collect(engine, [], cancel_token=token)

        assert client.chat.completions.create.await_count == 1
        assert "late" not in tokens


class TestToolResultNotice:
    def test_brackets_in_preview_become_parentheses(self) -> None:
        notice = tool_result_notice("search", '{"items": [1, 2]}')
        assert notice == '[Tool search executed. Result (preview): {"items": (1, 2)}]\n'

    def test_notice_for_mcp_result_is_removed_whole(self) -> None:
        content = json.dumps({"jsonrpc": "2.0", "id": 3, "result": {"content": [{"type": "text", "text": "sunny"}]}})
        raw = TOOL_EXECUTION_NOTICE + tool_result_notice("weather", content) + "It is sunny."

        assert decide(raw).sanitized == "It is sunny."
