"""
Standardized error response models.

Error codes are negative integers in the JSON-RPC 2.0 style so REST, NDJSON
and push clients all see the same ``{code, message}`` core.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(IntEnum):
    """Application error codes (JSON-RPC reserved range plus server-defined -32000..-32099)."""

    # JSON-RPC 2.0 reserved codes
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Server-defined codes
    SERVER_ERROR = -32000
    RESOURCE_NOT_FOUND = -32001
    EXTERNAL_SERVICE_ERROR = -32002
    CONTENT_FILTERED = -32003
    DATABASE_ERROR = -32004


class ErrorDetail(BaseModel):
    """Detailed information about a specific validation or sub-error."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Standardized error response model for REST endpoints.

    Example response:
    {
        "error": {
            "code": -32001,
            "message": "Chat '3f1c...' not found",
            "request_id": "req_abc123",
            "timestamp": "2026-01-15T10:30:00Z",
            "path": "/api/v1/chats/3f1c..."
        }
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    path: str | None = None
    # Only included in development mode
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Convert to the ``{"error": {...}}`` JSON body."""
        data = self.model_dump(exclude_none=True)
        data["code"] = int(self.code)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return {"error": data}


ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    ErrorCode.PARSE_ERROR: 400,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.INVALID_PARAMS: 400,
    ErrorCode.METHOD_NOT_FOUND: 404,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.CONTENT_FILTERED: 422,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.SERVER_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
}


def get_status_code(error_code: ErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "get_status_code",
]
