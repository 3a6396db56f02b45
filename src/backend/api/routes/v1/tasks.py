"""
Task endpoints (v1).

In-memory tasks with JSON-RPC style ``{"result": ...}`` responses and push
channels delivered as Server-Sent Events.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Path, status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from api.dependencies import AppSettings, Broadcaster, Tasks
from api.middleware.exception_handlers import ValidationException
from api.middleware.request_context import get_request_id
from core.constants import EVENT_TASK_STATUS_UPDATE
from models.event_models import status_update_payload
from models.schemas.chats import MessageRequest
from models.schemas.tasks import ResubscribeRequest, SendMessageRequest, StreamMessageRpcRequest, result_envelope

router = APIRouter()

TaskIdPath = Annotated[str, Path(..., description="Task identifier", min_length=1, max_length=100)]


def _correlation_id(rpc_id: str | int | None) -> str | None:
    """JSON-RPC id when the client sent one, otherwise the request id."""
    if rpc_id is not None:
        return str(rpc_id)
    return get_request_id()


def _require_content(message: MessageRequest) -> None:
    if message.is_empty():
        raise ValidationException("Message content cannot be empty")


@router.post("/tasks/create", status_code=status.HTTP_201_CREATED, summary="Create task")
async def create_task(body: MessageRequest, tasks: Tasks) -> JSONResponse:
    """Create a PENDING task and schedule its processing."""
    _require_content(body)
    task = await tasks.create_task(body.to_turn())
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=result_envelope(task.to_wire()))


@router.get("/tasks/{task_id}/get", summary="Get task")
async def get_task(task_id: TaskIdPath, tasks: Tasks) -> dict[str, Any]:
    task = await tasks.get_task(task_id)
    return result_envelope(task.to_wire())


@router.post("/message/send", summary="Append message to task")
async def send_message(body: SendMessageRequest, tasks: Tasks) -> dict[str, Any]:
    _require_content(body.message)
    task = await tasks.send_message(body.task_id, body.message.to_turn())
    return result_envelope(task.to_wire())


@router.post("/tasks/{task_id}/cancel", summary="Cancel task")
async def cancel_task(task_id: TaskIdPath, tasks: Tasks) -> dict[str, Any]:
    task = await tasks.cancel_task(task_id)
    return result_envelope(task.to_wire())


@router.post("/tasks/resubscribe", summary="Resubscribe to task updates")
async def resubscribe(
    body: ResubscribeRequest,
    tasks: Tasks,
    broadcaster: Broadcaster,
    settings: AppSettings,
) -> EventSourceResponse:
    """Replace any channel for the task and send its current status first."""
    task = await tasks.get_task(body.task_id)
    channel = await broadcaster.subscribe(task.id, correlation_id=_correlation_id(body.id))
    channel.send(EVENT_TASK_STATUS_UPDATE, status_update_payload(task))
    return EventSourceResponse(broadcaster.stream(channel), ping=settings.push_ping_interval)


@router.post("/message/stream", summary="Send message and stream task updates")
async def stream_message(
    body: StreamMessageRpcRequest,
    tasks: Tasks,
    broadcaster: Broadcaster,
    settings: AppSettings,
) -> EventSourceResponse:
    """Append the message, start processing and return the task's push channel."""
    _require_content(body.params.message)
    task = await tasks.get_task(body.params.task_id)

    # Subscribe before processing starts so no status update is missed
    channel = await broadcaster.subscribe(task.id, correlation_id=_correlation_id(body.id))
    await tasks.stream_message(task.id, body.params.message.to_turn())
    return EventSourceResponse(broadcaster.stream(channel), ping=settings.push_ping_interval)
