"""
Chat API schemas.

Request bodies use camelCase on the wire; responses are wrapped as
``{"result": ...}``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models.chat_models import Chat
from models.turn_models import Role, Turn


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Request Models
# =============================================================================


class MessageRequest(_CamelModel):
    """A message as clients submit it: plain text or a multimodal part list."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "role": "user",
                "contentType": "text/plain",
                "content": "What changed in the 2024 EU AI Act?",
            }
        },
    )

    role: str = Field(default="user", description="user, assistant (or agent), tool or system")
    content_type: str | None = Field(default=None, description="text/plain or multipart/mixed")
    content: str | list[dict[str, Any]] | None = Field(default=None, description="Text or content parts")
    tool_call_id: str | None = Field(default=None, description="Correlates a tool result with its call")
    llm_id: str | None = Field(default=None, description="Model that produced an assistant message")

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        try:
            return Role.parse(v).value
        except ValueError as e:
            raise ValueError(f"Unknown role '{v}'") from e

    def is_empty(self) -> bool:
        if self.content is None:
            return True
        if isinstance(self.content, str):
            return not self.content.strip()
        return len(self.content) == 0

    def to_turn(self) -> Turn:
        return Turn.build(
            self.role,
            self.content,
            self.content_type,
            tool_call_id=self.tool_call_id,
            llm_id=self.llm_id,
        )


class StreamMessageRequest(_CamelModel):
    """JSON body for ``POST /chats/{id}/message/stream``."""

    message: str = Field(..., description="The user's message")
    llm_id: str | None = Field(default=None, description="Model to use (defaults to settings)")
    auto_save_response: bool = Field(default=True, description="Persist the answer after streaming")


class UpdateTitleRequest(BaseModel):
    title: str = Field(..., max_length=200, description="New chat title")


# =============================================================================
# Response Models
# =============================================================================


def turn_to_api(turn: Turn) -> dict[str, Any]:
    return {
        "id": turn.id,
        "role": turn.role.value,
        "contentType": turn.content_type,
        "content": turn.wire_content(),
        "toolCallId": turn.tool_call_id,
        "llmId": turn.llm_id,
        "isRead": turn.is_read,
        "createdAt": turn.created_at.isoformat(),
    }


def chat_to_api(chat: Chat, include_messages: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": chat.id,
        "title": chat.title,
        "createdAt": chat.created_at.isoformat(),
        "updatedAt": chat.updated_at.isoformat(),
    }
    if include_messages:
        data["messages"] = [turn_to_api(t) for t in chat.turns]
    return data


class RawContentResponse(_CamelModel):
    message_id: str
    raw_content: str | None
    filtered_content: str | None
    has_raw_content: bool

    @classmethod
    def from_turn(cls, turn: Turn) -> RawContentResponse:
        filtered = turn.storage_content()
        return cls(
            message_id=turn.id or "",
            raw_content=turn.raw_content if turn.raw_content is not None else filtered,
            filtered_content=filtered,
            has_raw_content=turn.raw_content is not None,
        )


__all__ = [
    "MessageRequest",
    "RawContentResponse",
    "StreamMessageRequest",
    "UpdateTitleRequest",
    "chat_to_api",
    "turn_to_api",
]
