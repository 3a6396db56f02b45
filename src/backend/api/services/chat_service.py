from __future__ import annotations

import uuid

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import asyncpg

from api.middleware.exception_handlers import ChatNotFoundError, MessageNotFoundError
from api.services.duplicate_detection import find_duplicate_turn
from core.constants import RECENT_CHATS_LIMIT
from models.chat_models import Chat, derive_title
from models.turn_models import Turn
from utils.db_utils import transaction
from utils.logger import logger

_MESSAGE_ORDER = "ORDER BY created_at ASC, position ASC"


@dataclass
class AppendResult:
    """Outcome of ``ChatService.add_turn``.

    On a duplicate, ``turn`` is the already stored turn and the chat is unchanged.
    """

    chat: Chat
    turn: Turn
    duplicate: bool = False


def _parse_id(value: str, not_found: type[ChatNotFoundError] | type[MessageNotFoundError]) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise not_found(str(value)) from e


def _row_to_turn(row: Any) -> Turn:
    return Turn.build(
        row["role"],
        row["content"],
        row["content_type"],
        id=str(row["id"]),
        raw_content=row["raw_content"],
        created_at=row["created_at"],
        tool_call_id=row["tool_call_id"],
        llm_id=row["llm_id"],
        is_read=row["is_read"],
    )


def _row_to_chat(row: Any, message_rows: list[Any] | None = None) -> Chat:
    return Chat(
        id=str(row["id"]),
        title=row["title"] or "",
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        turns=[_row_to_turn(r) for r in message_rows or []],
    )


class ChatService:
    """Chat sessions and their turns, backed by PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def _insert_turn(self, conn: asyncpg.Connection, chat_id: uuid.UUID, turn: Turn) -> Any:
        return await conn.fetchrow(
            """
            INSERT INTO chat_messages (
                id, chat_id, role, content_type, content, raw_content,
                tool_call_id, llm_id, is_read, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            RETURNING *
            """,
            uuid.uuid4(),
            chat_id,
            turn.role.value,
            turn.content_type,
            turn.storage_content(),
            turn.raw_content,
            turn.tool_call_id,
            turn.llm_id,
            turn.is_read,
            turn.created_at,
        )

    async def create_chat(self, turn: Turn) -> Chat:
        """Create a chat whose first turn is ``turn``; the title comes from the first user text."""
        chat_id = uuid.uuid4()
        now = datetime.now(UTC)
        title = derive_title([turn], now)

        async with transaction(self.pool) as conn:
            chat_row = await conn.fetchrow(
                """
                INSERT INTO chats (id, title, created_at, updated_at)
                VALUES ($1, $2, $3, $3)
                RETURNING *
                """,
                chat_id,
                title,
                now,
            )
            message_row = await self._insert_turn(conn, chat_id, turn)

        logger.info(f"Created chat {chat_id}", chat_id=str(chat_id))
        return _row_to_chat(chat_row, [message_row])

    async def get_chat(self, chat_id: str) -> Chat:
        """Get a chat with all of its turns."""
        chat_uuid = _parse_id(chat_id, ChatNotFoundError)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM chats WHERE id = $1", chat_uuid)
            if not row:
                raise ChatNotFoundError(chat_id)
            message_rows = await conn.fetch(
                f"SELECT * FROM chat_messages WHERE chat_id = $1 {_MESSAGE_ORDER}",
                chat_uuid,
            )
        return _row_to_chat(row, message_rows)

    async def list_chats(self) -> list[Chat]:
        """All chats, most recently updated first, without their turns."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM chats ORDER BY updated_at DESC")
        return [_row_to_chat(r) for r in rows]

    async def get_recent_chats(self, limit: int = RECENT_CHATS_LIMIT) -> list[Chat]:
        """Most recently created chats, each carrying only its first turn."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM chats ORDER BY created_at DESC LIMIT $1",
                limit,
            )
            if not rows:
                return []
            first_rows = await conn.fetch(
                """
                SELECT DISTINCT ON (chat_id) *
                FROM chat_messages
                WHERE chat_id = ANY($1::uuid[])
                ORDER BY chat_id, created_at ASC, position ASC
                """,
                [r["id"] for r in rows],
            )

        first_by_chat = {r["chat_id"]: r for r in first_rows}
        return [
            _row_to_chat(r, [first_by_chat[r["id"]]] if r["id"] in first_by_chat else [])
            for r in rows
        ]

    async def add_turn(self, chat_id: str, turn: Turn) -> AppendResult:
        """Append ``turn`` unless it duplicates a stored turn.

        Sets the title when it is still empty and advances ``updated_at``
        strictly, even when two appends land in the same clock tick.
        """
        chat_uuid = _parse_id(chat_id, ChatNotFoundError)

        async with transaction(self.pool) as conn:
            chat_row = await conn.fetchrow("SELECT * FROM chats WHERE id = $1 FOR UPDATE", chat_uuid)
            if not chat_row:
                raise ChatNotFoundError(chat_id)
            message_rows = await conn.fetch(
                f"SELECT * FROM chat_messages WHERE chat_id = $1 {_MESSAGE_ORDER}",
                chat_uuid,
            )
            chat = _row_to_chat(chat_row, message_rows)

            duplicate = find_duplicate_turn(chat.turns, turn)
            if duplicate is not None:
                logger.info(
                    f"Duplicate {turn.role.value} turn not saved",
                    chat_id=chat_id,
                    duplicate_of=duplicate.id,
                )
                return AppendResult(chat=chat, turn=duplicate, duplicate=True)

            message_row = await self._insert_turn(conn, chat_uuid, turn)
            stored = _row_to_turn(message_row)
            turns = [*chat.turns, stored]
            title = chat.title or derive_title(turns, chat.created_at)

            updated_row = await conn.fetchrow(
                """
                UPDATE chats
                SET title = $2,
                    updated_at = GREATEST(now(), updated_at + interval '1 microsecond')
                WHERE id = $1
                RETURNING *
                """,
                chat_uuid,
                title,
            )

        updated = _row_to_chat(updated_row)
        updated.turns = turns
        return AppendResult(chat=updated, turn=stored)

    async def update_raw_content(self, message_id: str, raw_content: str) -> None:
        """Backfill the unsanitized content of a stored turn."""
        message_uuid = _parse_id(message_id, MessageNotFoundError)
        async with self.pool.acquire() as conn:
            result: str = await conn.execute(
                "UPDATE chat_messages SET raw_content = $2 WHERE id = $1",
                message_uuid,
                raw_content,
            )
        if result == "UPDATE 0":
            raise MessageNotFoundError(message_id)

    async def update_title(self, chat_id: str, title: str) -> Chat:
        chat_uuid = _parse_id(chat_id, ChatNotFoundError)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE chats
                SET title = $2, updated_at = GREATEST(now(), updated_at + interval '1 microsecond')
                WHERE id = $1
                RETURNING *
                """,
                chat_uuid,
                title,
            )
        if not row:
            raise ChatNotFoundError(chat_id)
        return _row_to_chat(row)

    async def delete_chat(self, chat_id: str) -> None:
        """Delete a chat; its turns go with it (ON DELETE CASCADE)."""
        chat_uuid = _parse_id(chat_id, ChatNotFoundError)
        async with self.pool.acquire() as conn:
            result: str = await conn.execute("DELETE FROM chats WHERE id = $1", chat_uuid)
        if result == "DELETE 0":
            raise ChatNotFoundError(chat_id)
        logger.info(f"Deleted chat {chat_id}", chat_id=chat_id)

    async def get_messages(self, chat_id: str) -> list[Turn]:
        """All turns of a chat in order; marks them read."""
        chat_uuid = _parse_id(chat_id, ChatNotFoundError)
        async with transaction(self.pool) as conn:
            exists = await conn.fetchval("SELECT 1 FROM chats WHERE id = $1", chat_uuid)
            if not exists:
                raise ChatNotFoundError(chat_id)
            await conn.execute(
                "UPDATE chat_messages SET is_read = TRUE WHERE chat_id = $1 AND is_read = FALSE",
                chat_uuid,
            )
            rows = await conn.fetch(
                f"SELECT * FROM chat_messages WHERE chat_id = $1 {_MESSAGE_ORDER}",
                chat_uuid,
            )
        return [_row_to_turn(r) for r in rows]

    async def get_message(self, chat_id: str, message_id: str) -> Turn:
        chat_uuid = _parse_id(chat_id, ChatNotFoundError)
        message_uuid = _parse_id(message_id, MessageNotFoundError)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM chat_messages WHERE id = $1 AND chat_id = $2",
                message_uuid,
                chat_uuid,
            )
        if not row:
            raise MessageNotFoundError(message_id)
        return _row_to_turn(row)


__all__ = ["AppendResult", "ChatService"]
