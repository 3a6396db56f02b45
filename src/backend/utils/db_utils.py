"""Database utilities for connection management and resilience.

Provides:
- Connection pool factory with production configuration
- Schema bootstrap for the chat tables
- Transaction context manager with acquire timeouts
- Health check and graceful shutdown helpers
"""

from __future__ import annotations

import asyncio

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from api.middleware.exception_handlers import DatabaseError
from utils.logger import logger


class ConnectionPoolExhausted(DatabaseError):
    """Raised when connection pool is exhausted and timeout expires."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message=message, cause=cause)


#: Idempotent bootstrap, run at startup. There is no migration framework.
SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS chats (
        id UUID PRIMARY KEY,
        title TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_messages (
        id UUID PRIMARY KEY,
        chat_id UUID NOT NULL REFERENCES chats(id) ON DELETE CASCADE,
        position BIGSERIAL,
        role TEXT NOT NULL,
        content_type TEXT NOT NULL DEFAULT 'text/plain',
        content TEXT,
        raw_content TEXT,
        tool_call_id TEXT,
        llm_id TEXT,
        is_read BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chat_messages_chat_order ON chat_messages (chat_id, created_at, position)",
    "CREATE INDEX IF NOT EXISTS idx_chats_updated_at ON chats (updated_at DESC)",
)


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
    statement_cache_size: int = 100,
    max_inactive_connection_lifetime: float = 300.0,
) -> asyncpg.Pool:
    """Create a production-configured database connection pool.

    Args:
        dsn: PostgreSQL connection string
        min_size: Minimum connections to maintain
        max_size: Maximum connections allowed
        command_timeout: Default query timeout in seconds
        connection_timeout: Timeout for pool creation
        statement_cache_size: Prepared statement cache per connection
        max_inactive_connection_lifetime: Close idle connections after this time

    Raises:
        ConnectionPoolExhausted: If initial connections cannot be established
    """

    async def init_connection(conn: asyncpg.Connection) -> None:
        # Statement and lock timeouts at connection level (milliseconds)
        await conn.execute(f"SET statement_timeout = '{int(command_timeout * 1000)}'")
        await conn.execute(f"SET lock_timeout = '{int(command_timeout * 1000)}'")

    try:
        pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=command_timeout,
                statement_cache_size=statement_cache_size,
                max_inactive_connection_lifetime=max_inactive_connection_lifetime,
                init=init_connection,
            ),
            timeout=connection_timeout,
        )
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"Connection pool creation timed out after {connection_timeout}s", e) from e
    except (OSError, asyncpg.PostgresError) as e:
        raise ConnectionPoolExhausted(f"Failed to create connection pool: {e}", e) from e

    if pool is None:
        raise ConnectionPoolExhausted("Failed to create connection pool")
    return pool


async def ensure_schema(pool: asyncpg.Pool) -> None:
    """Create the chat tables if they do not exist yet."""
    async with pool.acquire() as conn:
        for statement in SCHEMA_STATEMENTS:
            await conn.execute(statement)
    logger.info("Database schema verified", tables=["chats", "chat_messages"])


@asynccontextmanager
async def acquire_connection(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a database connection with timeout and proper error handling.

    Raises:
        ConnectionPoolExhausted: If connection cannot be acquired within timeout
    """
    try:
        async with pool.acquire(timeout=timeout) as conn:
            yield conn
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(
            f"Could not acquire database connection within {timeout}s - pool may be exhausted", e
        ) from e


@asynccontextmanager
async def transaction(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
    isolation: str = "read_committed",
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Execute operations within a database transaction.

    Example:
        async with transaction(pool) as conn:
            await conn.execute("INSERT INTO ...")
            await conn.execute("UPDATE ...")
    """
    async with acquire_connection(pool, timeout=timeout) as conn, conn.transaction(isolation=isolation):
        yield conn


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    """Check database pool health and return statistics."""
    try:
        async with acquire_connection(pool, timeout=5.0) as conn:
            result = await conn.fetchval("SELECT 1")
            is_healthy = result == 1
    except (DatabaseError, OSError, asyncpg.PostgresError) as e:
        logger.warning(f"Database health check failed: {e}")
        is_healthy = False

    return {
        "healthy": is_healthy,
        "pool_size": pool.get_size(),
        "pool_min_size": pool.get_min_size(),
        "pool_max_size": pool.get_max_size(),
        "free_connections": pool.get_idle_size(),
        "used_connections": pool.get_size() - pool.get_idle_size(),
    }


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Wait for active connections to drain, then close the pool."""
    loop = asyncio.get_running_loop()
    start = loop.time()
    while pool.get_size() > pool.get_idle_size():
        if loop.time() - start > timeout:
            logger.warning(
                f"Timeout waiting for connections to drain, "
                f"forcing close ({pool.get_size() - pool.get_idle_size()} active)"
            )
            break
        await asyncio.sleep(0.1)

    await pool.close()
