"""
Task and push-subscription API schemas.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.schemas.chats import MessageRequest


class SendMessageRequest(BaseModel):
    """``POST /message/send``: append a message to a task."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: str = Field(..., description="Target task")
    message: MessageRequest


class ResubscribeRequest(BaseModel):
    """``POST /tasks/resubscribe``: reopen the push channel for a task."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: str
    id: str | int | None = Field(default=None, description="JSON-RPC id, echoed as correlationId")


class StreamParams(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    task_id: str
    message: MessageRequest


class StreamMessageRpcRequest(BaseModel):
    """``POST /message/stream``: JSON-RPC request that appends and processes a message."""

    jsonrpc: str | None = None
    id: str | int | None = None
    method: str | None = None
    params: StreamParams


def result_envelope(result: Any) -> dict[str, Any]:
    return {"result": result}


__all__ = [
    "ResubscribeRequest",
    "SendMessageRequest",
    "StreamMessageRpcRequest",
    "StreamParams",
    "result_envelope",
]
