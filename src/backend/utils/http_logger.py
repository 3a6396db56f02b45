"""
HTTP request/response logging for debugging LLM backend and tool server traffic.

Captures request payloads and response summaries using httpx event hooks.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from utils.logger import logger

SENSITIVE_HEADERS = ("authorization", "api-key", "x-api-key", "mcp-session-id")


class HTTPLogger:
    """Logs HTTP requests and responses for debugging."""

    def __init__(self, enabled: bool = True, label: str = "http"):
        self.enabled = enabled
        self.label = label
        self._request_data: dict[int, dict[str, Any]] = {}

    async def log_request(self, request: httpx.Request) -> None:
        if not self.enabled:
            return

        try:
            body_str = request.content.decode("utf-8") if request.content else ""
            body_json = json.loads(body_str) if body_str else {}
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            body_json = {"_error": f"Unparsable body: {e!s}"}

        self._request_data[id(request)] = {
            "method": request.method,
            "url": str(request.url),
        }

        logger.info(
            f"{self.label} request: {request.method} {request.url}",
            http_request=True,
            method=request.method,
            url=str(request.url),
            headers=sanitize_headers(dict(request.headers)),
        )
        if body_json:
            logger.debug(f"Request Payload:\n{json.dumps(body_json, indent=2)}")

    async def log_response(self, response: httpx.Response) -> None:
        if not self.enabled:
            return

        request_data = self._request_data.pop(id(response.request), {})

        # Streaming responses can't be read here without consuming the stream
        body: Any
        try:
            body = response.json() if response.content else {}
        except httpx.ResponseNotRead:
            body = {"_note": "streaming response - body not captured"}
        except json.JSONDecodeError as e:
            body = {"_error": f"Invalid JSON: {e!s}"}

        logger.info(
            f"{self.label} response: {response.status_code} "
            f"{request_data.get('method', 'UNKNOWN')} {request_data.get('url', 'UNKNOWN')}",
            http_response=True,
            status_code=response.status_code,
            headers=sanitize_headers(dict(response.headers)),
        )
        logger.debug(f"Response body: {body}")


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Mask sensitive header values, keeping the last 4 characters."""
    sanitized = headers.copy()
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = f"***{value[-4:]}" if len(value) > 4 else "***"
    return sanitized


def create_logging_client(
    enabled: bool = True,
    timeout: httpx.Timeout | None = None,
    label: str = "http",
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """Create an httpx client with request/response logging event hooks."""
    http_logger = HTTPLogger(enabled=enabled, label=label)

    event_hooks: dict[str, list[Any]] = {
        "request": [http_logger.log_request],
        "response": [http_logger.log_response],
    }

    return httpx.AsyncClient(event_hooks=event_hooks, timeout=timeout, **client_kwargs)
