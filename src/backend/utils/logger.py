"""
Logging setup for the research agent backend using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable, colored
- logs/conversations.jsonl: JSON, INFO and above (completions, tool calls)
- logs/errors.jsonl: JSON, ERROR and above
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    LOGGER_INSTANCE_ID_LENGTH,
    PROJECT_ROOT,
    get_settings,
)

# PII Redaction patterns
REDACTION_PATTERNS = [
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b", "[EMAIL]"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "[CARD]"),
    (r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b", "[API_KEY]"),
    (r"\b(password|secret|token)\s*[:=]\s*\S+", "[REDACTED]"),
]


class InfoAndAboveFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Filter to only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Adds colors to log levels and standardizes format.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        level_fmt = f"{color}[{record.levelname}]{self.RESET}" if color else f"[{record.levelname}]"
        record.asctime = self.formatTime(record, "%H:%M:%S")

        # uvicorn.access args: (client_addr, method, full_path, http_version, status_code)
        if record.name == "uvicorn.access" and record.args and len(record.args) == 5:
            client_addr, method, full_path, http_version, status_code = record.args
            status_code_num = int(cast(Any, status_code))
            if status_code_num < 400:
                status_color = self.GREEN
            elif status_code_num < 500:
                status_color = self.YELLOW
            else:
                status_color = self.RED
            message = (
                f'{client_addr} - "\x1b[1m{method}\x1b[0m {full_path} HTTP/{http_version}" '
                f"{status_color}{status_code}{self.RESET}"
            )
            return f"{record.asctime} {level_fmt} {record.name} - {message}"

        message = f"{record.asctime} {level_fmt} {record.name} - {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def configure_uvicorn_logging() -> None:
    """Route uvicorn's access and error loggers through the colored console format."""
    formatter = ColoredConsoleFormatter()

    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        uv_logger.addHandler(handler)
        uv_logger.propagate = False


def setup_logging(name: str = "research-agent", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []

    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    conv_handler = logging.handlers.RotatingFileHandler(
        log_dir / "conversations.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_CONVERSATIONS,
        encoding="utf-8",
    )
    conv_handler.setLevel(logging.INFO)
    conv_handler.addFilter(InfoAndAboveFilter())
    conv_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(message)s %(chat_id)s %(request_id)s %(tool)s",
            timestamp=True,
        )
    )
    logger.addHandler(conv_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class ChatLogger:
    """
    High-level logging interface.
    Wraps standard Python logging; keyword arguments become structured fields.
    """

    def __init__(self, name: str = "research-agent"):
        self.logger = setup_logging(name)
        self.instance_id = str(uuid.uuid4())[:LOGGER_INSTANCE_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Enrich log arguments with request context."""
        kwargs.setdefault("instance_id", self.instance_id)

        if ctx := get_request_context():
            for key, value in ctx.to_log_context().items():
                kwargs.setdefault(key, value)

        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # Settings not loadable (e.g. missing credentials) - hide content
            return False

    def _redact_content(self, text: str) -> str:
        """Redact PII from text using defined patterns."""
        if not text:
            return text

        redacted = text
        for pattern, replacement in REDACTION_PATTERNS:
            redacted = re.sub(pattern, replacement, redacted)
        return redacted

    def _preview(self, text: str) -> str:
        preview = self._redact_content(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        if len(text) > LOG_PREVIEW_LENGTH:
            preview += "..."
        return preview

    def log_completion(
        self,
        chat_id: str | None,
        model: str,
        user_input: str,
        response: str,
        tool_calls: int = 0,
        iterations: int = 1,
        duration_ms: float | None = None,
        outcome: str = "success",
    ) -> None:
        """Log one finished completion stream."""
        if self._should_log_content():
            summary = f"User: {self._preview(user_input)} → AI: {self._preview(response)}"
        else:
            summary = "User: [HIDDEN] → AI: [HIDDEN]"

        parts = [summary, f"[{outcome}]"]
        if tool_calls:
            parts.append(f"[{tool_calls} tool calls]")
        if duration_ms is not None:
            parts.append(f"[{duration_ms:.0f}ms]")

        extra: dict[str, Any] = {
            "completion": True,
            "chat_id": chat_id,
            "model": model,
            "outcome": outcome,
            "chars_input": len(user_input),
            "chars_response": len(response),
            "tool_calls": tool_calls,
            "iterations": iterations,
        }
        if duration_ms is not None:
            extra["ms"] = int(duration_ms)

        self.info(" ".join(parts), **extra)

    def log_tool_call(
        self,
        tool_name: str,
        server_name: str | None,
        arguments: dict[str, Any],
        success: bool,
        duration_ms: float,
    ) -> None:
        """Log a tool invocation; arguments only appear when content logging is enabled."""
        if self._should_log_content():
            args_preview = self._redact_content(str(arguments))[:LOG_PREVIEW_LENGTH]
            message = f"Tool call: {tool_name}({args_preview}) on {server_name} → {'ok' if success else 'failed'}"
        else:
            message = f"Tool call: {tool_name}(...) on {server_name} → {'ok' if success else 'failed'}"

        self.info(
            message,
            tool=tool_name,
            server=server_name,
            success=success,
            ms=int(duration_ms),
        )


# Global logger instance
logger = ChatLogger()
