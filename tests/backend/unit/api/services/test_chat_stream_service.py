from __future__ import annotations

import json

from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, Mock

import asyncpg
import pytest

from api.middleware.exception_handlers import ChatNotFoundError, ExternalServiceError
from api.services.chat_service import AppendResult
from api.services.chat_stream_service import ChatStreamService
from api.services.conversation_preparer import ConversationPreparer
from api.streaming.broadcaster import Broadcaster
from models.chat_models import Chat
from models.turn_models import Role, Turn

NOW = datetime(2025, 1, 1, tzinfo=UTC)


class FakeEngine:
    def __init__(self, chunks: list[str], error: Exception | None = None):
        self.chunks = chunks
        self.error = error
        self.kwargs: dict[str, Any] = {}

    async def stream(self, messages: list[dict[str, Any]], **kwargs: Any) -> AsyncIterator[str]:
        self.kwargs = kwargs
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


def _chats(history: list[Turn] | None = None) -> Mock:
    chats = Mock()
    chat = Chat(id="chat-1", title="t", created_at=NOW, updated_at=NOW, turns=history or [])
    chats.get_chat = AsyncMock(return_value=chat)
    stored = Turn.text(Role.ASSISTANT, "stored", id="m-9")
    chats.add_turn = AsyncMock(return_value=AppendResult(chat=chat, turn=stored))
    chats.update_raw_content = AsyncMock()
    return chats


async def _lines(service: ChatStreamService, message: str = "hi", **kwargs: Any) -> list[dict[str, Any]]:
    stream = await service.open_stream("chat-1", message, **kwargs)
    return [json.loads(line) async for line in stream]


@pytest.mark.asyncio
async def test_streams_content_lines_and_persists() -> None:
    chats = _chats([Turn.text(Role.USER, "hi")])
    service = ChatStreamService(chats, ConversationPreparer(), FakeEngine(["Hel", "lo"]))  # type: ignore[arg-type]

    lines = await _lines(service)

    assert lines == [{"content": "Hel"}, {"content": "lo"}]
    _, turn = chats.add_turn.await_args.args
    assert turn.role == Role.ASSISTANT
    assert turn.text_content == "Hello"
    chats.update_raw_content.assert_awaited_once_with("m-9", "Hello")


@pytest.mark.asyncio
async def test_unknown_chat_fails_before_streaming() -> None:
    chats = _chats()
    chats.get_chat.side_effect = ChatNotFoundError("nope")
    service = ChatStreamService(chats, ConversationPreparer(), FakeEngine([]))  # type: ignore[arg-type]

    with pytest.raises(ChatNotFoundError):
        await service.open_stream("nope", "hi")


@pytest.mark.asyncio
async def test_backend_failure_becomes_error_line() -> None:
    engine = FakeEngine(["partial"], error=ExternalServiceError("LLM backend", "connection reset"))
    chats = _chats([Turn.text(Role.USER, "hi")])
    service = ChatStreamService(chats, ConversationPreparer(), engine)  # type: ignore[arg-type]

    lines = await _lines(service)

    assert lines == [
        {"content": "partial"},
        {"error": "Error processing your request: LLM backend: connection reset"},
    ]
    chats.add_turn.assert_not_awaited()


@pytest.mark.asyncio
async def test_filtered_answer_yields_error_line() -> None:
    chats = _chats([Turn.text(Role.USER, "hi")])
    service = ChatStreamService(chats, ConversationPreparer(), FakeEngine(["<think>x</think>"]))  # type: ignore[arg-type]

    lines = await _lines(service)

    assert lines[-1] == {"error": "AI response was empty after filtering tool-related content."}
    chats.add_turn.assert_not_awaited()


@pytest.mark.asyncio
async def test_auto_save_disabled() -> None:
    chats = _chats([Turn.text(Role.USER, "hi")])
    service = ChatStreamService(chats, ConversationPreparer(), FakeEngine(["ok"]))  # type: ignore[arg-type]

    await _lines(service, auto_save=False)

    chats.add_turn.assert_not_awaited()


@pytest.mark.asyncio
async def test_save_failure_after_stream_is_logged_only() -> None:
    chats = _chats([Turn.text(Role.USER, "hi")])
    chats.add_turn.side_effect = asyncpg.PostgresError("db gone")
    service = ChatStreamService(chats, ConversationPreparer(), FakeEngine(["ok"]))  # type: ignore[arg-type]

    lines = await _lines(service)

    assert lines == [{"content": "ok"}]


@pytest.mark.asyncio
async def test_missing_user_message_is_saved() -> None:
    chats = _chats([])
    preparer = ConversationPreparer()
    service = ChatStreamService(chats, preparer, FakeEngine(["answer"]), None)  # type: ignore[arg-type]

    await _lines(service, message="new question", auto_save=False)
    await preparer.drain()

    _, saved = chats.add_turn.await_args.args
    assert saved.role == Role.USER
    assert saved.text_content == "new question"


@pytest.mark.asyncio
async def test_model_and_chat_passed_to_engine() -> None:
    engine = FakeEngine(["ok"])
    service = ChatStreamService(_chats([Turn.text(Role.USER, "hi")]), ConversationPreparer(), engine)  # type: ignore[arg-type]

    await _lines(service, llm_id="gpt-4o-mini", auto_save=False)

    assert engine.kwargs["model"] == "gpt-4o-mini"
    assert engine.kwargs["chat_id"] == "chat-1"
    assert engine.kwargs["offer_tools"] is True


@pytest.mark.asyncio
async def test_persisted_answer_is_pushed_to_chat_channel() -> None:
    broadcaster = Broadcaster()
    channel = await broadcaster.subscribe("chat-1")
    service = ChatStreamService(
        _chats([Turn.text(Role.USER, "hi")]),
        ConversationPreparer(),
        FakeEngine(["ok"]),  # type: ignore[arg-type]
        broadcaster,
    )

    await _lines(service)
    channel.close()

    events = [json.loads(e["data"]) async for e in channel.events()]
    assert events[0]["result"]["messageId"] == "m-9"
    assert events[0]["result"]["chatId"] == "chat-1"
