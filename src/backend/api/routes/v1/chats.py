"""
Chat endpoints (v1).

Chat CRUD, completion streaming as newline-delimited JSON, and a Server-Sent
Events feed of persisted messages.
"""

from __future__ import annotations

import json

from typing import Annotated, Any

from fastapi import APIRouter, Path, Request, Response, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse

from api.dependencies import AppSettings, Broadcaster, Chats, ChatStreams
from api.middleware.exception_handlers import ValidationException
from api.middleware.request_context import get_request_id
from api.services.duplicate_detection import find_duplicate_chat
from api.services.transcript_reconciler import TranscriptReconciler
from core.constants import CONTENT_TYPE_JSON, NDJSON_MEDIA_TYPE
from models.schemas.chats import (
    MessageRequest,
    RawContentResponse,
    StreamMessageRequest,
    UpdateTitleRequest,
    chat_to_api,
    turn_to_api,
)
from models.turn_models import TextContent, Turn
from utils.logger import logger
from utils.sanitizer import sanitize

router = APIRouter()

ChatIdPath = Annotated[str, Path(..., description="Chat identifier", min_length=1, max_length=100)]
MessageIdPath = Annotated[str, Path(..., description="Message identifier", min_length=1, max_length=100)]


def _sanitized_turn(body: MessageRequest) -> tuple[Turn, str | None]:
    """Turn to store plus the unfiltered text when sanitizing changed it."""
    if body.is_empty():
        raise ValidationException("Message content cannot be empty")

    turn = body.to_turn()
    if not isinstance(turn.content, TextContent):
        return turn, None

    original = turn.content.text
    filtered = sanitize(original)
    if not filtered:
        raise ValidationException("Message content is empty after filtering")
    turn.content = TextContent(text=filtered)
    return turn, original if original != filtered else None


@router.get("", summary="List chats")
async def list_chats(chats: Chats) -> dict[str, Any]:
    """All chats, most recently updated first."""
    return {"result": [chat_to_api(c, include_messages=False) for c in await chats.list_chats()]}


@router.post(
    "/create",
    summary="Create chat",
    description=(
        "Create a chat from its first message. A resubmission of a recent first "
        "message returns the existing chat with 200 instead of creating a new one."
    ),
    responses={200: {"description": "Duplicate submission, existing chat returned"}, 201: {"description": "Created"}},
)
async def create_chat(body: MessageRequest, chats: Chats) -> JSONResponse:
    turn, original = _sanitized_turn(body)

    duplicate = find_duplicate_chat(await chats.get_recent_chats(), turn)
    if duplicate is not None:
        logger.info(f"Duplicate chat submission, returning chat {duplicate.id}", chat_id=duplicate.id)
        existing = await chats.get_chat(duplicate.id)
        return JSONResponse(status_code=status.HTTP_200_OK, content={"result": chat_to_api(existing)})

    chat = await chats.create_chat(turn)
    if original is not None and chat.first_turn is not None:
        await TranscriptReconciler(chats).backfill_raw(chat.first_turn.id, original)

    return JSONResponse(status_code=status.HTTP_201_CREATED, content={"result": chat_to_api(chat)})


@router.get("/{chat_id}", summary="Get chat")
async def get_chat(chat_id: ChatIdPath, chats: Chats) -> dict[str, Any]:
    return {"result": chat_to_api(await chats.get_chat(chat_id))}


@router.post("/{chat_id}/messages", summary="Save message")
async def add_message(chat_id: ChatIdPath, body: MessageRequest, chats: Chats) -> dict[str, Any]:
    """Explicitly save a message. Storage failures surface as errors."""
    turn, original = _sanitized_turn(body)
    result = await chats.add_turn(chat_id, turn)
    if original is not None and not result.duplicate:
        await TranscriptReconciler(chats).backfill_raw(result.turn.id, original)
    return {"result": chat_to_api(result.chat)}


@router.get("/{chat_id}/messages", summary="Get messages")
async def get_messages(chat_id: ChatIdPath, chats: Chats) -> dict[str, Any]:
    """Messages in order; marks them read."""
    return {"result": [turn_to_api(t) for t in await chats.get_messages(chat_id)]}


@router.get("/{chat_id}/messages/{message_id}/raw", summary="Get raw message content")
async def get_raw_content(chat_id: ChatIdPath, message_id: MessageIdPath, chats: Chats) -> dict[str, Any]:
    turn = await chats.get_message(chat_id, message_id)
    return {"result": RawContentResponse.from_turn(turn).model_dump(by_alias=True)}


async def _read_stream_request(request: Request) -> StreamMessageRequest:
    """Accept a text/plain body or JSON ``{message, llmId?, autoSaveResponse?}``."""
    try:
        raw = (await request.body()).decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationException("Invalid stream request: body is not valid UTF-8") from e
    if request.headers.get("content-type", "").startswith(CONTENT_TYPE_JSON):
        try:
            body = StreamMessageRequest.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ValidationException(f"Invalid stream request: {e}") from e
    else:
        body = StreamMessageRequest(message=raw)

    if not body.message.strip():
        raise ValidationException("Message content cannot be empty")
    return body


@router.post(
    "/{chat_id}/message/stream",
    summary="Stream completion",
    description="Stream the answer as newline-delimited JSON lines of {content} or a single {error}.",
    response_class=StreamingResponse,
)
async def stream_message(chat_id: ChatIdPath, request: Request, streams: ChatStreams) -> StreamingResponse:
    body = await _read_stream_request(request)
    lines = await streams.open_stream(
        chat_id,
        body.message,
        llm_id=body.llm_id,
        auto_save=body.auto_save_response,
    )
    return StreamingResponse(lines, media_type=NDJSON_MEDIA_TYPE)


@router.put("/{chat_id}/title", summary="Update title")
async def update_title(chat_id: ChatIdPath, body: UpdateTitleRequest, chats: Chats) -> dict[str, Any]:
    if not body.title.strip():
        raise ValidationException("Title cannot be empty")
    chat = await chats.update_title(chat_id, body.title.strip())
    return {"result": chat_to_api(chat, include_messages=False)}


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete chat")
async def delete_chat(chat_id: ChatIdPath, chats: Chats) -> Response:
    await chats.delete_chat(chat_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{chat_id}/events", summary="Subscribe to chat updates")
async def chat_events(
    chat_id: ChatIdPath,
    chats: Chats,
    broadcaster: Broadcaster,
    settings: AppSettings,
) -> EventSourceResponse:
    """Server-Sent Events feed; a ``message_update`` follows each persisted answer."""
    await chats.get_chat(chat_id)
    channel = await broadcaster.subscribe(chat_id, correlation_id=get_request_id())
    return EventSourceResponse(broadcaster.stream(channel), ping=settings.push_ping_interval)
