"""
Streaming completion engine.

Drives one chat-completions stream, forwards text tokens as they arrive,
assembles tool calls from the streamed deltas, executes them through the
Tool Registry and resubmits until the model answers without tool calls or
the iteration cap is reached.
"""

from __future__ import annotations

import json
import time

from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from api.middleware.exception_handlers import ExternalServiceError
from api.streaming.cancellation import CancellationToken
from core.constants import TOOL_EXECUTION_NOTICE, TOOL_RESULT_PREVIEW_LENGTH
from integrations.mcp_registry import ToolRegistry
from models.mcp_models import ToolResult
from utils.logger import logger
from utils.metrics import completion_duration_seconds, completions_total, tool_loop_iterations

FINISH_REASON_TOOL_CALLS = "tool_calls"


@dataclass
class PendingToolCall:
    """A tool call being assembled from stream deltas."""

    index: int
    id: str | None = None
    name: str = ""
    arguments: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.id and self.name)

    def parsed_arguments(self) -> dict[str, Any]:
        if not self.arguments.strip():
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError:
            logger.warning(f"Malformed arguments for tool {self.name}, using {{}}: {self.arguments[:100]}")
            return {}
        if not isinstance(parsed, dict):
            logger.warning(f"Tool {self.name} arguments are not an object, using {{}}")
            return {}
        return parsed

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


_BRACKETS_TO_PARENS = str.maketrans("[]", "()")


class ToolCallAccumulator:
    """Collects tool-call deltas by index. The id is set once; name and arguments append."""

    def __init__(self) -> None:
        self._calls: dict[int, PendingToolCall] = {}

    def add(self, deltas: Any) -> None:
        for delta in deltas:
            call = self._calls.setdefault(delta.index, PendingToolCall(index=delta.index))
            if delta.id and not call.id:
                call.id = delta.id
            function = getattr(delta, "function", None)
            if function is not None:
                if function.name:
                    call.name += function.name
                if function.arguments:
                    call.arguments += function.arguments

    def complete_calls(self) -> list[PendingToolCall]:
        return [self._calls[i] for i in sorted(self._calls) if self._calls[i].is_complete]


def tool_result_notice(tool_name: str, model_content: str) -> str:
    # Brackets in the preview would end the notice early for the sanitizer
    preview = model_content[:TOOL_RESULT_PREVIEW_LENGTH].translate(_BRACKETS_TO_PARENS)
    return f"[Tool {tool_name} executed. Result (preview): {preview}]\n"


@dataclass
class CompletionStats:
    iterations: int = 0
    tool_calls: int = 0
    outcome: str = "success"
    content: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.content)


class CompletionEngine:
    """Runs the tool-execution loop for one conversation at a time per call.

    Independent calls share nothing but the client and the registry, so
    conversations stream concurrently.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        registry: ToolRegistry | None,
        max_tool_iterations: int,
        default_model: str,
    ):
        if max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be at least 1")
        self.client = client
        self.registry = registry
        self.max_tool_iterations = max_tool_iterations
        self.default_model = default_model

    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.registry.get_tools()] if self.registry else []

    async def _invoke(self, call: PendingToolCall) -> ToolResult:
        if self.registry is None:
            return ToolResult.not_available(call.name)
        return await self.registry.invoke(call.name, call.parsed_arguments())

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        offer_tools: bool = True,
        cancel_token: CancellationToken | None = None,
        chat_id: str | None = None,
        user_input: str = "",
    ) -> AsyncIterator[str]:
        """Yield text tokens, tool notices and tool result previews.

        ``messages`` is extended in place with the assistant tool-call turns
        and tool result turns of each iteration.

        Raises:
            ExternalServiceError: The LLM backend failed
        """
        model = model or self.default_model
        stats = CompletionStats()
        start = time.perf_counter()

        run = self._run(messages, model, offer_tools, cancel_token, stats)
        try:
            async for token in run:
                stats.content.append(token)
                yield token
        except OpenAIError as e:
            stats.outcome = "error"
            logger.error(f"LLM backend error: {e}", chat_id=chat_id, model=model)
            raise ExternalServiceError("LLM backend", str(e), cause=e) from e
        except Exception:
            stats.outcome = "error"
            raise
        finally:
            await run.aclose()
            duration = time.perf_counter() - start
            completions_total.labels(outcome=stats.outcome).inc()
            completion_duration_seconds.observe(duration)
            tool_loop_iterations.observe(stats.iterations)
            logger.log_completion(
                chat_id=chat_id,
                model=model,
                user_input=user_input,
                response=stats.text,
                tool_calls=stats.tool_calls,
                iterations=stats.iterations,
                duration_ms=duration * 1000,
                outcome=stats.outcome,
            )

    async def _run(
        self,
        messages: list[dict[str, Any]],
        model: str,
        offer_tools: bool,
        cancel_token: CancellationToken | None,
        stats: CompletionStats,
    ) -> AsyncGenerator[str, None]:
        def cancelled() -> bool:
            return cancel_token is not None and cancel_token.is_cancelled

        while True:
            if cancelled():
                stats.outcome = "cancelled"
                logger.info(f"Completion cancelled: {cancel_token.cancel_reason if cancel_token else ''}")
                return
            stats.iterations += 1

            request: dict[str, Any] = {"model": model, "messages": messages, "stream": True}
            tools = self.registry.openai_tools() if (offer_tools and self.registry) else []
            if tools:
                request["tools"] = tools

            response = await self.client.chat.completions.create(**request)

            accumulator = ToolCallAccumulator()
            content_parts: list[str] = []
            finish_reason: str | None = None

            # Closed on every exit, including a consumer that stops iterating early
            try:
                async for chunk in response:
                    if cancelled():
                        break
                    if not chunk.choices:
                        continue
                    choice = chunk.choices[0]
                    delta = choice.delta
                    if delta is not None:
                        if delta.content:
                            content_parts.append(delta.content)
                            yield delta.content
                        if delta.tool_calls:
                            accumulator.add(delta.tool_calls)
                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
            finally:
                await response.close()

            if cancelled():
                stats.outcome = "cancelled"
                logger.info(f"Completion cancelled: {cancel_token.cancel_reason if cancel_token else ''}")
                return

            calls = accumulator.complete_calls()
            if finish_reason != FINISH_REASON_TOOL_CALLS or not calls:
                return

            if stats.iterations >= self.max_tool_iterations:
                stats.outcome = "iteration_cap"
                logger.warning(
                    f"Tool loop stopped after {stats.iterations} iterations "
                    f"({len(calls)} pending tool calls not executed)"
                )
                return

            messages.append(
                {
                    "role": "assistant",
                    "content": "".join(content_parts) or None,
                    "tool_calls": [call.to_wire() for call in calls],
                }
            )
            yield TOOL_EXECUTION_NOTICE

            # Sequential within one conversation; each result may inform the next call
            for call in calls:
                result = await self._invoke(call)
                stats.tool_calls += 1
                model_content = result.to_model_content(call.id or "")
                messages.append({"role": "tool", "tool_call_id": call.id, "content": model_content})
                yield tool_result_notice(call.name, model_content)


__all__ = [
    "CompletionEngine",
    "PendingToolCall",
    "ToolCallAccumulator",
    "tool_result_notice",
]
