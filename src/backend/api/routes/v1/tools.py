"""
Tool endpoints (v1).

Lists the active tool descriptors and re-runs discovery on demand.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from api.dependencies import AppSettings, Registry
from models.schemas.tools import ToolRefreshResponse, ToolStatusResponse
from utils.logger import logger

router = APIRouter()


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@router.get("", summary="List tools")
async def list_tools(registry: Registry) -> list[dict[str, Any]]:
    """Descriptors from the last successful discovery, with their source server."""
    return [tool.to_api() for tool in registry.get_tools()]


@router.post("/refresh", summary="Refresh tools")
async def refresh_tools(registry: Registry) -> JSONResponse:
    try:
        tools = await registry.refresh()
    except Exception as e:
        logger.error(f"Tool refresh failed: {e}", exc_info=True)
        body = ToolRefreshResponse(status="error", message=f"Failed to refresh tools: {e}", timestamp=_now_iso())
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(by_alias=True, exclude_none=True),
        )

    body = ToolRefreshResponse(
        status="success",
        message="Tools refreshed successfully",
        tool_count=len(tools),
        timestamp=_now_iso(),
    )
    return JSONResponse(content=body.model_dump(by_alias=True))


@router.get("/status", summary="Tool status")
async def tool_status(registry: Registry, settings: AppSettings) -> dict[str, Any]:
    body = ToolStatusResponse(
        available_tools=len(registry.get_tools()),
        timestamp=_now_iso(),
        version=settings.app_version,
    )
    return body.model_dump(by_alias=True)
