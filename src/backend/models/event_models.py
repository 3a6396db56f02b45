"""
Push event envelopes.

Every event delivered over a push channel is framed as
``{"jsonrpc": "2.0", "protocolVersion": "2.0", "correlationId": ..., "result": payload}``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from core.constants import (
    DEFAULT_CORRELATION_ID,
    JSONRPC_VERSION,
    KIND_ARTIFACT_UPDATE,
    KIND_STATUS_UPDATE,
    PUSH_PROTOCOL_VERSION,
)
from models.task_models import Artifact, Task, TaskStatus


def build_envelope(payload: Any, correlation_id: str | None = None) -> dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "protocolVersion": PUSH_PROTOCOL_VERSION,
        "correlationId": correlation_id or DEFAULT_CORRELATION_ID,
        "result": payload,
    }


def status_update_payload(update: Task | TaskStatus | Mapping[str, Any] | Any) -> dict[str, Any]:
    """Normalize a task, a structured status or a raw map into one status-update shape.

    A raw map is merged in as-is. Anything else yields ``{"status": "UNKNOWN"}``.
    """
    if isinstance(update, Task):
        return {
            "taskId": update.id,
            "contextId": update.context_id,
            "status": update.status.to_wire(),
            "kind": KIND_STATUS_UPDATE,
        }
    payload: dict[str, Any] = {"kind": KIND_STATUS_UPDATE}
    if isinstance(update, TaskStatus):
        payload["status"] = update.to_wire()
    elif isinstance(update, Mapping):
        payload.update(update)
    else:
        payload["status"] = "UNKNOWN"
    return payload


def artifact_update_payload(
    task_id: str,
    artifact: Artifact | Mapping[str, Any],
    append: bool = False,
    last_chunk: bool = False,
) -> dict[str, Any]:
    return {
        "taskId": task_id,
        "artifact": artifact.to_wire() if isinstance(artifact, Artifact) else dict(artifact),
        "kind": KIND_ARTIFACT_UPDATE,
        "append": append,
        "lastChunk": last_chunk,
    }


__all__ = [
    "artifact_update_payload",
    "build_envelope",
    "status_update_payload",
]
