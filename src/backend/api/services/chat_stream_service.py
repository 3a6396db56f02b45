"""
Chat completion streaming.

Wires the preparer, the completion engine and the reconciler together for
one chat and renders the result as newline-delimited JSON. Once the first
line is out, failures become error lines instead of HTTP errors.
"""

from __future__ import annotations

import json

from collections.abc import AsyncIterator
from typing import Any

import asyncpg

from api.middleware.exception_handlers import AppException, ContentFilteredError
from api.services.chat_service import ChatService
from api.services.completion_engine import CompletionEngine
from api.services.conversation_preparer import ConversationPreparer, PreparedConversation
from api.services.transcript_reconciler import TranscriptReconciler
from api.streaming.broadcaster import Broadcaster
from api.streaming.cancellation import CancellationToken
from core.constants import STREAM_ERROR_PREFIX
from models.turn_models import Turn
from utils.logger import logger


def ndjson_line(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False) + "\n"


def error_line(message: str) -> str:
    return ndjson_line({"error": message})


class ChatStreamService:
    def __init__(
        self,
        chats: ChatService,
        preparer: ConversationPreparer,
        engine: CompletionEngine,
        broadcaster: Broadcaster | None = None,
    ):
        self.chats = chats
        self.preparer = preparer
        self.engine = engine
        self.broadcaster = broadcaster
        self.reconciler = TranscriptReconciler(chats)

    async def open_stream(
        self,
        chat_id: str,
        message: str,
        llm_id: str | None = None,
        auto_save: bool = True,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """Validate the chat and prepare the request, then hand back the line stream.

        Raises:
            ChatNotFoundError: Before any output, so the route can answer 404
        """
        chat = await self.chats.get_chat(chat_id)

        async def _save_missing(turn: Turn) -> None:
            await self.chats.add_turn(chat_id, turn)

        prepared = self.preparer.prepare(chat.turns, current_message=message, persist=_save_missing)
        return self._lines(chat_id, message, prepared, llm_id, auto_save, cancel_token)

    async def _lines(
        self,
        chat_id: str,
        message: str,
        prepared: PreparedConversation,
        llm_id: str | None,
        auto_save: bool,
        cancel_token: CancellationToken | None,
    ) -> AsyncIterator[str]:
        chunks: list[str] = []
        try:
            async for token in self.engine.stream(
                prepared.messages,
                model=llm_id,
                offer_tools=not prepared.has_multimodal,
                cancel_token=cancel_token,
                chat_id=chat_id,
                user_input=message,
            ):
                chunks.append(token)
                yield ndjson_line({"content": token})
        except AppException as e:
            logger.error(f"Stream failed for chat {chat_id}: {e.message}", chat_id=chat_id)
            yield error_line(f"{STREAM_ERROR_PREFIX}{e.message}")
            return
        except Exception as e:
            logger.error(f"Stream failed for chat {chat_id}: {e}", exc_info=True, chat_id=chat_id)
            yield error_line(f"{STREAM_ERROR_PREFIX}{e}")
            return

        if not auto_save:
            return

        try:
            result = await self.reconciler.reconcile(chat_id, "".join(chunks), llm_id=llm_id)
        except ContentFilteredError as e:
            yield error_line(e.message)
            return
        except (AppException, asyncpg.PostgresError) as e:
            # Auto-save is opportunistic; the client already has the answer
            logger.error(f"Failed to save response for chat {chat_id}: {e}", chat_id=chat_id)
            return

        if result is not None and not result.duplicate and self.broadcaster is not None:
            self.broadcaster.publish_message(
                chat_id,
                {
                    "chatId": chat_id,
                    "messageId": result.turn.id,
                    "role": result.turn.role.value,
                    "contentType": result.turn.content_type,
                    "content": result.turn.wire_content(),
                },
            )


__all__ = ["ChatStreamService", "error_line", "ndjson_line"]
