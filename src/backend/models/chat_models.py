"""
Chat session model and title derivation.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from core.constants import TITLE_ELLIPSIS, TITLE_MAX_LENGTH, TITLE_PREFIX_LENGTH
from models.turn_models import Role, Turn


def derive_title(turns: list[Turn], created_at: datetime) -> str:
    """Title from the first user turn's text.

    Multimodal content contributes its text fragments joined by a space.
    Text longer than the limit keeps a fixed prefix plus an ellipsis; no
    usable text falls back to ``"Chat <created_at>"``.
    """
    first_user = next((t for t in turns if t.role == Role.USER), None)
    text = first_user.text_content.strip() if first_user else ""
    if not text:
        return f"Chat {created_at.isoformat()}"
    if len(text) <= TITLE_MAX_LENGTH:
        return text
    return text[:TITLE_PREFIX_LENGTH] + TITLE_ELLIPSIS


class Chat(BaseModel):
    """A conversation session owning an ordered list of turns."""

    id: str
    title: str = ""
    created_at: datetime
    updated_at: datetime
    turns: list[Turn] = Field(default_factory=list)

    @property
    def first_turn(self) -> Turn | None:
        return self.turns[0] if self.turns else None


__all__ = ["Chat", "derive_title"]
