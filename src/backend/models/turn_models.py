"""
Conversation turn models.

A Turn's role is a closed enum and its content is a tagged union of plain
text or a multimodal part list, so callers branch on ``content.kind`` instead
of sniffing strings.
"""

from __future__ import annotations

import json

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from core.constants import CONTENT_TYPE_MULTIPART, CONTENT_TYPE_TEXT

#: Part types carrying text inside a multimodal payload
TEXT_PART_TYPES = ("text", "input_text")


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: str | Role) -> Role:
        """Parse a stored or wire role. ``agent`` is the legacy name for assistant."""
        if isinstance(value, Role):
            return value
        normalized = value.strip().lower()
        if normalized == "agent":
            return cls.ASSISTANT
        return cls(normalized)


class TextContent(BaseModel):
    kind: Literal["text"] = "text"
    text: str

    def text_fragments(self) -> list[str]:
        return [self.text]

    def to_storage(self) -> str:
        return self.text


class MultimodalContent(BaseModel):
    """Ordered content parts, e.g. ``[{"type": "text", "text": ...}, {"type": "image_url", ...}]``."""

    kind: Literal["multimodal"] = "multimodal"
    parts: list[dict[str, Any]]

    def text_fragments(self) -> list[str]:
        return [
            part["text"]
            for part in self.parts
            if part.get("type") in TEXT_PART_TYPES and isinstance(part.get("text"), str)
        ]

    def has_non_text_parts(self) -> bool:
        return any(part.get("type") not in TEXT_PART_TYPES for part in self.parts)

    def to_storage(self) -> str:
        return json.dumps(self.parts, separators=(",", ":"))


TurnContent = Annotated[TextContent | MultimodalContent, Field(discriminator="kind")]


def parse_content(value: Any, content_type: str | None = None) -> TextContent | MultimodalContent | None:
    """Build turn content from a wire or storage value.

    Lists become multimodal. A string stored with a multipart content type is
    decoded as a JSON part list; anything that fails to decode stays text.
    """
    if value is None:
        return None
    if isinstance(value, (TextContent, MultimodalContent)):
        return value
    if isinstance(value, list):
        return MultimodalContent(parts=value)
    if isinstance(value, dict):
        return MultimodalContent(parts=[value])
    text = str(value)
    if content_type == CONTENT_TYPE_MULTIPART or text.lstrip().startswith("[{"):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            return TextContent(text=text)
        if isinstance(decoded, list) and all(isinstance(p, dict) for p in decoded):
            return MultimodalContent(parts=decoded)
    return TextContent(text=text)


def content_text(content: TextContent | MultimodalContent | None, separator: str = " ") -> str:
    """Plain text of a content value; multimodal fragments are joined with ``separator``."""
    if content is None:
        return ""
    return separator.join(content.text_fragments())


def default_content_type(content: TextContent | MultimodalContent | None) -> str:
    if isinstance(content, MultimodalContent):
        return CONTENT_TYPE_MULTIPART
    return CONTENT_TYPE_TEXT


class Turn(BaseModel):
    """One message in a conversation.

    ``raw_content`` holds the unsanitized model output and may be patched in
    after the turn has been stored. ``tool_calls`` is only set on in-flight
    assistant turns that requested tools and is never persisted.
    """

    id: str | None = None
    role: Role
    content: TurnContent | None = None
    content_type: str = CONTENT_TYPE_TEXT
    raw_content: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    tool_call_id: str | None = None
    llm_id: str | None = None
    is_read: bool = False
    tool_calls: list[dict[str, Any]] | None = Field(default=None, exclude=True)

    @classmethod
    def text(cls, role: Role, text: str, **kwargs: Any) -> Turn:
        return cls(role=role, content=TextContent(text=text), content_type=CONTENT_TYPE_TEXT, **kwargs)

    @classmethod
    def build(cls, role: Role | str, value: Any, content_type: str | None = None, **kwargs: Any) -> Turn:
        """Create a turn from loosely typed input (API bodies, database rows)."""
        content = parse_content(value, content_type)
        return cls(
            role=Role.parse(role),
            content=content,
            content_type=content_type or default_content_type(content),
            **kwargs,
        )

    @property
    def is_multimodal(self) -> bool:
        return isinstance(self.content, MultimodalContent)

    @property
    def text_content(self) -> str:
        return content_text(self.content)

    def storage_content(self) -> str | None:
        return self.content.to_storage() if self.content is not None else None

    def wire_content(self) -> str | list[dict[str, Any]] | None:
        """Content as the API and LLM backend see it: a string or a part list."""
        if self.content is None:
            return None
        if isinstance(self.content, MultimodalContent):
            return self.content.parts
        return self.content.text


__all__ = [
    "TEXT_PART_TYPES",
    "MultimodalContent",
    "Role",
    "TextContent",
    "Turn",
    "TurnContent",
    "content_text",
    "default_content_type",
    "parse_content",
]
