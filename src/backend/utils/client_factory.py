"""
Client factory utilities.
Centralizes AsyncOpenAI and tool server httpx client creation with consistent configuration.
"""

from __future__ import annotations

from typing import Any

import httpx

from openai import AsyncOpenAI

from utils.http_logger import create_logging_client

# Reasoning models can pause 30+ seconds before producing output,
# so streaming needs a generous read timeout
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0

#: Tool servers share one pooled client; each call also carries its own timeout
MCP_MAX_CONNECTIONS = 20


def create_http_client(
    enable_logging: bool = False,
    read_timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create HTTP client with proper timeouts for LLM streaming.

    Args:
        enable_logging: Enable HTTP request/response logging
        read_timeout: Read timeout in seconds (default: 600s for reasoning models)

    Returns:
        Configured httpx.AsyncClient
    """
    effective_read_timeout = read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=effective_read_timeout,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )

    if enable_logging:
        return create_logging_client(enabled=True, timeout=timeout, label="llm")

    return httpx.AsyncClient(timeout=timeout)


def create_mcp_http_client(
    request_timeout: float,
    enable_logging: bool = False,
) -> httpx.AsyncClient:
    """Create the pooled httpx client used for all tool server traffic.

    Every request is bounded by ``request_timeout``; there is no unbounded wait
    on a tool server.
    """
    timeout = httpx.Timeout(request_timeout)
    limits = httpx.Limits(max_connections=MCP_MAX_CONNECTIONS)

    if enable_logging:
        return create_logging_client(enabled=True, timeout=timeout, label="mcp", limits=limits)

    return httpx.AsyncClient(timeout=timeout, limits=limits)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create AsyncOpenAI client with consistent configuration.

    Args:
        api_key: OpenAI or Azure OpenAI API key
        base_url: Optional base URL for Azure or custom endpoints
        http_client: Optional httpx client for request logging

    Returns:
        Configured AsyncOpenAI client
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)


def create_openai_client_from_settings(settings: Any) -> AsyncOpenAI:
    """Build the LLM client for the configured provider."""
    http_client = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.http_read_timeout,
    )
    if settings.api_provider == "azure":
        return create_openai_client(
            api_key=settings.azure_openai_api_key,
            base_url=settings.azure_endpoint_str,
            http_client=http_client,
        )
    return create_openai_client(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        http_client=http_client,
    )
