"""
Task models.

A Task is a unit of work with the same turn history as a chat plus an
explicit status and a list of artifacts. Serialized in camelCase for the
task API and push events.
"""

from __future__ import annotations

import uuid

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.constants import (
    CONTENT_TYPE_TEXT,
    TASK_CANCELLED_MESSAGE,
    TASK_COMPLETED_MESSAGE,
    TASK_CREATED_MESSAGE,
    TASK_FAILED_PREFIX,
    TASK_PROCESSING_MESSAGE,
)
from models.turn_models import Turn

_ONE_MICROSECOND = timedelta(microseconds=1)


def _now() -> datetime:
    return datetime.now(UTC)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TaskState(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED)


class TaskStatus(CamelModel):
    state: TaskState
    message: str

    @classmethod
    def pending(cls) -> TaskStatus:
        return cls(state=TaskState.PENDING, message=TASK_CREATED_MESSAGE)

    @classmethod
    def processing(cls) -> TaskStatus:
        return cls(state=TaskState.PROCESSING, message=TASK_PROCESSING_MESSAGE)

    @classmethod
    def completed(cls) -> TaskStatus:
        return cls(state=TaskState.COMPLETED, message=TASK_COMPLETED_MESSAGE)

    @classmethod
    def failed(cls, reason: str) -> TaskStatus:
        return cls(state=TaskState.FAILED, message=f"{TASK_FAILED_PREFIX}{reason}")

    @classmethod
    def cancelled(cls) -> TaskStatus:
        return cls(state=TaskState.CANCELLED, message=TASK_CANCELLED_MESSAGE)


class Artifact(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    content_type: str = CONTENT_TYPE_TEXT
    content: str
    created_at: datetime = Field(default_factory=_now)


class TaskMessage(CamelModel):
    """A task turn as it appears on the wire."""

    role: str
    content_type: str
    content: Any
    timestamp: datetime

    @classmethod
    def from_turn(cls, turn: Turn) -> TaskMessage:
        return cls(
            role=turn.role.value,
            content_type=turn.content_type,
            content=turn.wire_content(),
            timestamp=turn.created_at,
        )


class Task(BaseModel):
    """In-memory task record. Mutators keep ``updated_at`` current."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    context_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: TaskStatus = Field(default_factory=TaskStatus.pending)
    turns: list[Turn] = Field(default_factory=list)
    artifacts: list[Artifact] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def _touch(self) -> None:
        now = _now()
        # Strictly increasing even when the clock has not moved
        if now <= self.updated_at:
            now = self.updated_at + _ONE_MICROSECOND
        self.updated_at = now

    def set_status(self, status: TaskStatus) -> None:
        self.status = status
        self._touch()

    def add_turn(self, turn: Turn) -> None:
        self.turns.append(turn)
        self._touch()

    def add_artifact(self, artifact: Artifact) -> None:
        self.artifacts.append(artifact)
        self._touch()

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "contextId": self.context_id,
            "status": self.status.to_wire(),
            "messages": [TaskMessage.from_turn(t).to_wire() for t in self.turns],
            "artifacts": [a.to_wire() for a in self.artifacts],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


__all__ = [
    "Artifact",
    "CamelModel",
    "Task",
    "TaskMessage",
    "TaskState",
    "TaskStatus",
]
