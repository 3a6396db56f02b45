from __future__ import annotations

from typing import Annotated

import asyncpg

from fastapi import Depends, Request

from api.services.chat_service import ChatService
from api.services.chat_stream_service import ChatStreamService
from api.services.completion_engine import CompletionEngine
from api.services.conversation_preparer import ConversationPreparer
from api.services.task_service import TaskService
from api.streaming.broadcaster import Broadcaster as LiveBroadcaster
from core.constants import Settings, get_settings
from integrations.mcp_registry import ToolRegistry


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    Settings are validated at startup and cached. With CONFIG_HOT_RELOAD=true
    they are reloaded on each request to pick up .env file changes.

    Usage in routes:
        @router.get("/example")
        async def example(settings: AppSettings):
            return {"debug": settings.debug}
    """
    return get_settings()


async def get_db(request: Request) -> asyncpg.Pool:
    """Get database connection pool from application state."""
    return request.app.state.db_pool


def get_chat_service(db: Annotated[asyncpg.Pool, Depends(get_db)]) -> ChatService:
    """Provide chat service backed by PostgreSQL."""
    return ChatService(db)


def get_task_service(request: Request) -> TaskService:
    return request.app.state.task_service


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def get_broadcaster(request: Request) -> LiveBroadcaster:
    return request.app.state.broadcaster


def get_engine(request: Request) -> CompletionEngine:
    return request.app.state.completion_engine


def get_preparer(request: Request) -> ConversationPreparer:
    return request.app.state.preparer


def get_chat_stream_service(
    chats: Annotated[ChatService, Depends(get_chat_service)],
    preparer: Annotated[ConversationPreparer, Depends(get_preparer)],
    engine: Annotated[CompletionEngine, Depends(get_engine)],
    broadcaster: Annotated[LiveBroadcaster, Depends(get_broadcaster)],
) -> ChatStreamService:
    return ChatStreamService(chats, preparer, engine, broadcaster)


# Type aliases for cleaner route signatures
DB = Annotated[asyncpg.Pool, Depends(get_db)]
Chats = Annotated[ChatService, Depends(get_chat_service)]
ChatStreams = Annotated[ChatStreamService, Depends(get_chat_stream_service)]
Tasks = Annotated[TaskService, Depends(get_task_service)]
Registry = Annotated[ToolRegistry, Depends(get_tool_registry)]
Broadcaster = Annotated[LiveBroadcaster, Depends(get_broadcaster)]
Engine = Annotated[CompletionEngine, Depends(get_engine)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
