"""
Health check endpoints (v1).

Provides health, readiness, and liveness probes with consistent
response patterns and comprehensive OpenAPI documentation.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.dependencies import DB, AppSettings, Broadcaster, Registry
from integrations.mcp_registry import RegistryState
from models.schemas.health import (
    DatabaseHealth,
    HealthResponse,
    LivenessResponse,
    PushHealth,
    ReadinessResponse,
    ToolServerHealth,
)
from utils.db_utils import check_pool_health

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Comprehensive health check with all subsystem statuses.",
    tags=["Health"],
)
async def health_check(
    db: DB,
    registry: Registry,
    broadcaster: Broadcaster,
    settings: AppSettings,
    request: Request,
) -> HealthResponse:
    """Comprehensive health check endpoint."""
    db_health_data = await check_pool_health(db)
    db_healthy = db_health_data.get("healthy", False)

    tools_health = ToolServerHealth(
        state=registry.state.value,
        servers_configured=len(registry.server_names),
        tools_available=len(registry.get_tools()),
        last_refreshed=registry.last_refreshed.isoformat() if registry.last_refreshed else None,
    )
    # No tools is degraded, not down: completions still work without them
    tools_ready = registry.state == RegistryState.READY and (
        tools_health.tools_available > 0 or not registry.server_names
    )

    if db_healthy and tools_ready:
        status = "healthy"
    elif db_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    started = request.app.state.startup_time
    return HealthResponse(
        status=status,
        version=settings.app_version,
        uptime_seconds=round(time.monotonic() - request.app.state.startup_monotonic, 2),
        startup_time=started.isoformat(),
        database=DatabaseHealth(
            healthy=db_healthy,
            pool_size=db_health_data.get("pool_size", 0),
            pool_free=db_health_data.get("free_connections", 0),
            pool_used=db_health_data.get("used_connections", 0),
            error=db_health_data.get("error"),
        ),
        tools=tools_health,
        push=PushHealth(active_channels=broadcaster.active_count),
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Kubernetes-style readiness probe for load balancer integration.",
    responses={
        503: {
            "description": "Service not ready",
            "content": {"application/json": {"example": {"ready": False, "error": "Database unavailable"}}},
        },
    },
    tags=["Health"],
)
async def readiness_check(db: DB) -> ReadinessResponse | JSONResponse:
    """Kubernetes-style readiness probe."""
    try:
        async with db.acquire(timeout=5.0) as conn:
            await conn.fetchval("SELECT 1")
        return ReadinessResponse(ready=True)
    except Exception as e:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "error": str(e)},
        )


@router.get(
    "/health/live",
    response_model=LivenessResponse,
    summary="Liveness probe",
    description="Kubernetes-style liveness probe to confirm process is running.",
    tags=["Health"],
)
async def liveness_check() -> LivenessResponse:
    """Kubernetes-style liveness probe."""
    return LivenessResponse(alive=True)
