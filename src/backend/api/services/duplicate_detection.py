"""Duplicate-submission heuristics.

Clients sometimes resend the same user message (double submit, multimodal
uploads that create a chat twice) or save a finished answer again. These
functions decide when an incoming turn is a repeat of something stored.

The assistant containment rule (one answer's text inside the other's) is a
heuristic kept for compatibility. It can misfire on legitimately similar
answers.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from core.constants import (
    ASSISTANT_CONTAINMENT_MIN_LENGTH,
    CONTENT_TYPE_MULTIPART,
    CONTENT_TYPE_TEXT,
    EMBEDDED_TEXT_DUPLICATE_WINDOW_SECONDS,
    MULTIPART_DUPLICATE_WINDOW_SECONDS,
)
from models.chat_models import Chat
from models.turn_models import MultimodalContent, Role, TextContent, Turn


def is_duplicate_turn(existing: Turn, candidate: Turn) -> bool:
    """Append-time check of ``candidate`` against one stored turn.

    Role and content type must match. Multipart content must be identical.
    Text must be identical, except that assistant texts longer than the
    containment threshold also match when one contains the other.
    """
    if existing.role != candidate.role or existing.content_type != candidate.content_type:
        return False

    old, new = existing.content, candidate.content
    if old is None or new is None:
        return old is None and new is None

    if CONTENT_TYPE_MULTIPART in (existing.content_type, candidate.content_type):
        return old.to_storage() == new.to_storage()

    if isinstance(old, TextContent) and isinstance(new, TextContent):
        if old.text == new.text:
            return True
        return (
            candidate.role == Role.ASSISTANT
            and len(old.text) > ASSISTANT_CONTAINMENT_MIN_LENGTH
            and len(new.text) > ASSISTANT_CONTAINMENT_MIN_LENGTH
            and (new.text in old.text or old.text in new.text)
        )

    return old.to_storage() == new.to_storage()


def find_duplicate_turn(existing_turns: Iterable[Turn], candidate: Turn) -> Turn | None:
    """Return the first stored turn that ``candidate`` duplicates, if any."""
    return next((turn for turn in existing_turns if is_duplicate_turn(turn, candidate)), None)


def _text_part_equals(content: MultimodalContent, text: str) -> bool:
    return any(fragment == text for fragment in content.text_fragments())


def is_duplicate_submission(chat: Chat, candidate: Turn, now: datetime | None = None) -> bool:
    """Create-time check: would ``candidate`` start the same chat as ``chat``?

    Compares against the chat's first turn, which must be a user turn:
    identical text; any multipart submission within the short window; or
    plain text equal to a text part of a multipart first turn within the
    longer window.
    """
    first = chat.first_turn
    if first is None or first.role != Role.USER or candidate.role != Role.USER:
        return False

    age = ((now or datetime.now(UTC)) - chat.created_at).total_seconds()
    types_match = first.content_type == candidate.content_type

    if types_match and candidate.content_type == CONTENT_TYPE_MULTIPART:
        return age < MULTIPART_DUPLICATE_WINDOW_SECONDS

    if types_match and isinstance(first.content, TextContent) and isinstance(candidate.content, TextContent):
        return first.content.text == candidate.content.text

    if (
        candidate.content_type == CONTENT_TYPE_TEXT
        and first.content_type == CONTENT_TYPE_MULTIPART
        and isinstance(first.content, MultimodalContent)
        and isinstance(candidate.content, TextContent)
    ):
        return _text_part_equals(first.content, candidate.content.text) and age < EMBEDDED_TEXT_DUPLICATE_WINDOW_SECONDS

    return False


def find_duplicate_chat(recent_chats: Iterable[Chat], candidate: Turn, now: datetime | None = None) -> Chat | None:
    """Return the most recent chat that ``candidate`` would duplicate."""
    return next((chat for chat in recent_chats if is_duplicate_submission(chat, candidate, now)), None)


__all__ = [
    "find_duplicate_chat",
    "find_duplicate_turn",
    "is_duplicate_submission",
    "is_duplicate_turn",
]
