"""
Conversation preparation.

Turns stored history into chat-completions wire messages: a fresh system
message first, multimodal history reduced to text, and the caller's current
message appended (and saved in the background) when the history lacks it.
"""

from __future__ import annotations

import asyncio
import json

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from core.constants import IMAGE_OMITTED_PLACEHOLDER
from core.prompts import build_system_prompt
from models.turn_models import MultimodalContent, Role, TextContent, Turn, content_text
from utils.logger import logger

PersistTurn = Callable[[Turn], Awaitable[Any]]


def _local_now() -> datetime:
    return datetime.now().astimezone()


@dataclass
class PreparedConversation:
    """Wire messages for one completion request.

    ``has_multimodal`` is True when a message still carries a part list; tools
    are not offered to the model in that case.
    """

    messages: list[dict[str, Any]]
    has_multimodal: bool = False
    appended_turn: Turn | None = None


def turn_contains_message(turn: Turn, message: str) -> bool:
    """True if ``turn`` is the user's ``message``.

    Matches exact text, or a multimodal payload with a text part equal to the
    message or containing its serialized ``"text"`` fragment.
    """
    if turn.role != Role.USER or turn.content is None:
        return False
    if isinstance(turn.content, TextContent):
        return turn.content.text == message
    if message in turn.content.text_fragments():
        return True
    stored = turn.content.to_storage()
    encoded = json.dumps(message)
    return f'"text":{encoded}' in stored or f'"text": {encoded}' in stored


def is_user_message_missing(history: Sequence[Turn], message: str | None) -> bool:
    if not message:
        return False
    return not history or not turn_contains_message(history[-1], message)


def text_only(turn: Turn) -> str:
    """Text projection of a turn for LLM input; never written back to storage."""
    if isinstance(turn.content, MultimodalContent):
        text = content_text(turn.content, separator="\n")
        return text or IMAGE_OMITTED_PLACEHOLDER
    return turn.text_content


def to_wire_message(turn: Turn, content: Any) -> dict[str, Any]:
    if turn.role == Role.TOOL:
        return {"role": "tool", "tool_call_id": turn.tool_call_id, "content": content or ""}
    message: dict[str, Any] = {"role": turn.role.value, "content": content}
    if turn.role == Role.ASSISTANT and turn.tool_calls:
        message["tool_calls"] = turn.tool_calls
    return message


class ConversationPreparer:
    def __init__(
        self,
        tool_names: Callable[[], list[str]] | None = None,
        clock: Callable[[], datetime] = _local_now,
    ):
        self._tool_names = tool_names
        self._clock = clock
        self._background: set[asyncio.Task[None]] = set()

    def system_message(self) -> dict[str, Any]:
        # Rendered per request so the model always sees the current time
        names = self._tool_names() if self._tool_names else None
        return {"role": "system", "content": build_system_prompt(self._clock(), names)}

    def _save_in_background(self, turn: Turn, persist: PersistTurn) -> None:
        async def _save() -> None:
            try:
                await persist(turn)
            except Exception as e:
                logger.error(f"Failed to save missing user message: {e}")

        task = asyncio.create_task(_save())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def prepare(
        self,
        history: Sequence[Turn],
        current_message: str | None = None,
        persist: PersistTurn | None = None,
    ) -> PreparedConversation:
        """Build wire messages for ``history``.

        Args:
            history: Stored turns, oldest first
            current_message: Text the caller is asking about right now
            persist: Saves a synthesized user turn; failures are logged only
        """
        turns = list(history)
        appended: Turn | None = None

        if is_user_message_missing(turns, current_message):
            appended = Turn.text(Role.USER, current_message or "")
            turns.append(appended)
            logger.info("Current message missing from history, appending it")
            if persist is not None:
                self._save_in_background(appended, persist)

        messages = [self.system_message()]
        has_multimodal = False

        if not any(t.is_multimodal for t in turns):
            messages.extend(to_wire_message(t, t.wire_content()) for t in turns)
            return PreparedConversation(messages=messages, appended_turn=appended)

        last_index = len(turns) - 1
        for index, turn in enumerate(turns):
            # Only the in-flight user message keeps its images
            if index == last_index and turn.role == Role.USER and turn.is_multimodal:
                messages.append(to_wire_message(turn, turn.wire_content()))
                has_multimodal = True
            else:
                messages.append(to_wire_message(turn, text_only(turn)))

        return PreparedConversation(messages=messages, has_multimodal=has_multimodal, appended_turn=appended)

    async def drain(self) -> None:
        """Wait for pending background saves (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


__all__ = [
    "ConversationPreparer",
    "PreparedConversation",
    "is_user_message_missing",
    "text_only",
    "to_wire_message",
    "turn_contains_message",
]
