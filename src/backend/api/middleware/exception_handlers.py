"""
Global exception handlers.

Provides centralized error handling with consistent ``{"error": {code, message}}``
bodies, logging, and request context integration.
"""

from __future__ import annotations

import traceback

from typing import Any

import asyncpg

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from openai import (
    APIError as OpenAIAPIError,
    AuthenticationError as OpenAIAuthError,
    RateLimitError as OpenAIRateLimitError,
)
from pydantic import ValidationError

from api.middleware.request_context import get_request_context, get_request_id
from core.constants import get_settings
from models.error_models import (
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    get_status_code,
)
from utils.logger import logger


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.INVALID_PARAMS,
            message="Message content cannot be empty",
        )
    """

    #: Overrides the status derived from ``code`` when set
    status_code: int | None = None

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Resource not found errors."""

    status_code = 404

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
    ):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(code=code, message=message, details={"resource": resource, "id": resource_id})


class ChatNotFoundError(ResourceNotFoundError):
    def __init__(self, chat_id: str):
        super().__init__(resource="Chat", resource_id=chat_id)


class MessageNotFoundError(ResourceNotFoundError):
    def __init__(self, message_id: str):
        super().__init__(resource="Message", resource_id=message_id)


class TaskNotFoundError(ResourceNotFoundError):
    """Task not found.

    Reported as 404 with INVALID_PARAMS since task ids arrive as JSON-RPC parameters.
    """

    def __init__(self, task_id: str):
        super().__init__(resource="Task", resource_id=task_id, code=ErrorCode.INVALID_PARAMS)
        self.message = f"Task not found with ID: {task_id}"


class ValidationException(AppException):
    """Input errors, rejected before any streaming starts."""

    def __init__(
        self,
        message: str = "Validation error",
        errors: list[ErrorDetail] | None = None,
    ):
        super().__init__(
            code=ErrorCode.INVALID_PARAMS,
            message=message,
            details={"errors": [e.model_dump() for e in errors]} if errors else None,
        )
        self.errors = errors or []


class ExternalServiceError(AppException):
    """LLM backend or tool server unreachable or answering with a failure status."""

    def __init__(
        self,
        service: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(
            code=code,
            message=f"{service}: {message}",
            details={"service": service},
            cause=cause,
        )


class ToolExecutionError(ExternalServiceError):
    """A single tool invocation failed. Folded into the conversation, not raised to clients."""

    def __init__(self, tool_name: str, message: str, cause: Exception | None = None):
        super().__init__(service=f"tool '{tool_name}'", message=message, cause=cause)
        self.tool_name = tool_name
        self.reason = message


class ContentFilteredError(AppException):
    """A complete response sanitized down to nothing.

    Distinct from transport failures so callers can tell "the model said
    nothing useful" from "the network failed".
    """

    def __init__(self, message: str, raw_length: int = 0):
        super().__init__(
            code=ErrorCode.CONTENT_FILTERED,
            message=message,
            details={"raw_length": raw_length},
        )
        self.raw_length = raw_length


class DatabaseError(AppException):
    """Database-related errors."""

    def __init__(
        self,
        message: str = "Database error",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, cause=cause)


def _create_error_response(
    code: ErrorCode,
    message: str,
    request: Request | None = None,
    details: list[ErrorDetail] | None = None,
    debug_info: dict[str, Any] | None = None,
) -> ErrorResponse:
    return ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path if request else None,
        details=details,
        debug=debug_info,
    )


def _log_error(error: Exception, code: ErrorCode, status_code: int) -> None:
    """Log error with appropriate level and context."""
    ctx = get_request_context()
    log_context = ctx.to_log_context() if ctx else {}
    log_context["error_code"] = int(code)
    log_context["status_code"] = status_code

    if status_code >= 500:
        logger.error(f"Server error: {int(code)} - {error}", exc_info=True, **log_context)
    elif status_code >= 400:
        logger.warning(f"Client error: {int(code)} - {error}", **log_context)


def _field_details(errors: list[dict[str, Any]]) -> list[ErrorDetail]:
    return [
        ErrorDetail(
            field=".".join(str(loc) for loc in error["loc"]),
            message=error["msg"],
            code=error["type"],
        )
        for error in errors
    ]


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions."""
    status_code = exc.status_code or get_status_code(exc.code)

    settings = get_settings()
    debug_info = None
    if settings.debug:
        debug_info = {
            "exception_type": type(exc).__name__,
            "cause": str(exc.cause) if exc.cause else None,
        }

    details = None
    if exc.details:
        if "errors" in exc.details:
            details = [ErrorDetail(**e) for e in exc.details["errors"]]
        else:
            details = [ErrorDetail(message=str(v), field=k) for k, v in exc.details.items() if v is not None]

    error_response = _create_error_response(
        code=exc.code,
        message=exc.message,
        request=request,
        details=details or None,
        debug_info=debug_info,
    )

    _log_error(exc, exc.code, status_code)

    return JSONResponse(
        status_code=status_code,
        content=error_response.to_dict(include_debug=settings.debug),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with consistent formatting."""
    status_to_code = {
        400: ErrorCode.INVALID_PARAMS,
        404: ErrorCode.RESOURCE_NOT_FOUND,
        405: ErrorCode.METHOD_NOT_FOUND,
        422: ErrorCode.INVALID_PARAMS,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    }
    code = status_to_code.get(exc.status_code, ErrorCode.SERVER_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    error_response = _create_error_response(code=code, message=message, request=request)
    _log_error(exc, code, exc.status_code)

    return JSONResponse(status_code=exc.status_code, content=error_response.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request shapes are input errors: 400 with INVALID_PARAMS."""
    error_response = _create_error_response(
        code=ErrorCode.INVALID_PARAMS,
        message="Request validation failed",
        request=request,
        details=_field_details(list(exc.errors())),
    )

    _log_error(exc, ErrorCode.INVALID_PARAMS, 400)

    return JSONResponse(status_code=400, content=error_response.to_dict())


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic ValidationError raised while building models from input."""
    error_response = _create_error_response(
        code=ErrorCode.INVALID_PARAMS,
        message="Data validation failed",
        request=request,
        details=_field_details(list(exc.errors())),
    )

    _log_error(exc, ErrorCode.INVALID_PARAMS, 400)

    return JSONResponse(status_code=400, content=error_response.to_dict())


async def openai_exception_handler(request: Request, exc: OpenAIAPIError) -> JSONResponse:
    """Handle LLM backend errors raised before a stream began."""
    if isinstance(exc, OpenAIAuthError):
        message = "LLM backend authentication failed"
    elif isinstance(exc, OpenAIRateLimitError):
        message = "LLM backend rate limit exceeded"
    else:
        message = f"LLM backend error: {exc!s}"
    code = ErrorCode.EXTERNAL_SERVICE_ERROR
    status_code = get_status_code(code)

    settings = get_settings()
    debug_info = None
    if settings.debug:
        debug_info = {
            "openai_error_type": type(exc).__name__,
            "openai_error_code": getattr(exc, "code", None),
        }

    error_response = _create_error_response(code=code, message=message, request=request, debug_info=debug_info)
    _log_error(exc, code, status_code)

    return JSONResponse(
        status_code=status_code,
        content=error_response.to_dict(include_debug=settings.debug),
    )


async def asyncpg_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    """Handle PostgreSQL database errors."""
    settings = get_settings()
    debug_info = None
    if settings.debug:
        debug_info = {
            "pg_error_code": getattr(exc, "sqlstate", None),
            "pg_error_class": type(exc).__name__,
        }

    error_response = _create_error_response(
        code=ErrorCode.DATABASE_ERROR,
        message="Database operation failed",
        request=request,
        debug_info=debug_info,
    )

    _log_error(exc, ErrorCode.DATABASE_ERROR, 500)

    return JSONResponse(
        status_code=500,
        content=error_response.to_dict(include_debug=settings.debug),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking a stack trace to the client."""
    settings = get_settings()

    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        request_id=get_request_id(),
        path=request.url.path,
    )

    debug_info = None
    if settings.debug:
        debug_info = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": traceback.format_exc(),
        }

    error_response = _create_error_response(
        code=ErrorCode.SERVER_ERROR,
        message="An unexpected error occurred",
        request=request,
        debug_info=debug_info,
    )

    return JSONResponse(
        status_code=500,
        content=error_response.to_dict(include_debug=settings.debug),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    # Starlette types handlers as taking Exception; narrower handlers are fine at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, pydantic_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(OpenAIAPIError, openai_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(asyncpg.PostgresError, asyncpg_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "AppException",
    "ChatNotFoundError",
    "ContentFilteredError",
    "DatabaseError",
    "ExternalServiceError",
    "MessageNotFoundError",
    "ResourceNotFoundError",
    "TaskNotFoundError",
    "ToolExecutionError",
    "ValidationException",
    "app_exception_handler",
    "asyncpg_exception_handler",
    "generic_exception_handler",
    "http_exception_handler",
    "openai_exception_handler",
    "pydantic_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
