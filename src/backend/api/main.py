from __future__ import annotations

import time

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.routes.v1 import router as v1_router
from api.services.completion_engine import CompletionEngine
from api.services.conversation_preparer import ConversationPreparer
from api.services.task_service import TaskService
from api.streaming.broadcaster import Broadcaster
from core.constants import get_settings
from integrations.mcp_registry import ToolRegistry
from utils.client_factory import create_mcp_http_client, create_openai_client_from_settings
from utils.db_utils import check_pool_health, create_database_pool, ensure_schema, graceful_pool_close
from utils.logger import configure_uvicorn_logging, logger

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local) - no manual dotenv loading needed
settings = get_settings()

# Log loaded settings in debug mode
if settings.debug:
    from core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, "
        f"db_pool=[{settings.db_pool_min_size},{settings.db_pool_max_size}], "
        f"tool_servers={[s.name for s in settings.mcp_servers]}"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup in dependency order, shutdown in reverse."""
    app.state.startup_time = datetime.now(UTC)
    app.state.startup_monotonic = time.monotonic()

    # 1. Database pool and schema
    app.state.db_pool = await create_database_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        connection_timeout=settings.db_connection_timeout,
    )
    health = await check_pool_health(app.state.db_pool)
    if not health["healthy"]:
        logger.error("Database health check failed during startup")
        raise RuntimeError("Database connection failed")
    logger.info(f"Database pool healthy: {health}")
    await ensure_schema(app.state.db_pool)

    # 2. LLM client
    openai_client = create_openai_client_from_settings(settings)
    logger.info(f"LLM client configured (provider: {settings.api_provider})")

    # 3. Tool registry; a failed initial discovery only means no tools yet
    registry = ToolRegistry(
        servers=settings.mcp_servers,
        http_client=create_mcp_http_client(settings.mcp_request_timeout, settings.http_request_logging),
        request_timeout=settings.mcp_request_timeout,
        discovery_timeout=settings.mcp_discovery_timeout,
    )
    try:
        await registry.refresh()
    except Exception as e:
        logger.error(f"Initial tool discovery failed: {e}", exc_info=True)
    app.state.tool_registry = registry

    engine = CompletionEngine(
        client=openai_client,
        registry=registry,
        max_tool_iterations=settings.max_tool_iterations,
        default_model=settings.default_model,
    )
    preparer = ConversationPreparer(tool_names=engine.tool_names)
    app.state.completion_engine = engine
    app.state.preparer = preparer

    # 4. Push channels
    broadcaster = Broadcaster(channel_timeout=settings.push_channel_timeout)
    app.state.broadcaster = broadcaster

    # 5. Tasks
    app.state.task_service = TaskService(engine=engine, preparer=preparer, broadcaster=broadcaster)

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        await app.state.task_service.shutdown()
        await broadcaster.shutdown()
        await preparer.drain()

        await registry.aclose()
        logger.info("Tool registry closed")

        await openai_client.close()

        await graceful_pool_close(app.state.db_pool, timeout=settings.shutdown_timeout)


app = FastAPI(
    title="Research Agent API",
    description="""
## Research Agent API

Chat backend that streams LLM completions, executes tools served by remote
tool servers (Model Context Protocol) mid-stream, and stores sanitized
transcripts alongside the raw model output.

### Features
- **Chats**: Create, list, rename and delete chats; duplicate submissions are folded
- **Streaming**: Newline-delimited JSON completion streams with tool execution
- **Tasks**: In-memory tasks with status, artifacts and cancellation
- **Push events**: Server-Sent Events with JSON-RPC framed envelopes
- **Tools**: Discovery, refresh and status of tool servers

### Versioning
API uses URL path versioning: `/api/v1/...`
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints for monitoring and orchestration"},
        {"name": "Metrics", "description": "Prometheus metrics"},
        {"name": "Chats", "description": "Chat sessions, messages and completion streaming"},
        {"name": "Tasks", "description": "Tasks and their push channels"},
        {"name": "Tools", "description": "Tool discovery and status"},
    ],
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Request context middleware (adds request ID tracking)
# Note: Middleware is executed in reverse order of registration
app.add_middleware(RequestContextMiddleware)

# CORS configuration (uses Settings for origin control)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)

# Routes - API v1
app.include_router(v1_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        reload_dirs=["src"],
        log_config=None,
    )
