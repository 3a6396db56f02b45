"""
Health check API schemas.

Provides response models for health, readiness, and liveness probes
with comprehensive OpenAPI documentation.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DatabaseHealth(BaseModel):
    """Database connection pool health."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "healthy": True,
                "pool_size": 10,
                "pool_free": 8,
                "pool_used": 2,
            }
        }
    )

    healthy: bool = Field(..., description="Database is accessible")
    pool_size: int = Field(default=0, ge=0, description="Total pool size")
    pool_free: int = Field(default=0, ge=0, description="Available connections")
    pool_used: int = Field(default=0, ge=0, description="Active connections")
    error: str | None = Field(default=None, description="Error if unhealthy")


class ToolServerHealth(BaseModel):
    """Tool registry health."""

    state: str = Field(..., description="Registry state: idle, discovering or ready")
    servers_configured: int = Field(default=0, ge=0)
    tools_available: int = Field(default=0, ge=0)
    last_refreshed: str | None = Field(default=None, description="Last successful discovery (ISO 8601)")


class PushHealth(BaseModel):
    """Live update broadcaster health."""

    active_channels: int = Field(default=0, ge=0, description="Open push channels")


class HealthResponse(BaseModel):
    """Comprehensive health check response."""

    status: Literal["healthy", "degraded", "unhealthy"] = Field(
        ...,
        description="Overall system health status",
        json_schema_extra={"example": "healthy"},
    )
    version: str = Field(..., description="Application version")
    uptime_seconds: float = Field(..., description="Seconds since startup")
    startup_time: str = Field(..., description="Startup timestamp (ISO 8601)")
    database: DatabaseHealth = Field(..., description="Database health")
    tools: ToolServerHealth = Field(..., description="Tool registry health")
    push: PushHealth = Field(..., description="Push channel health")


class ReadinessResponse(BaseModel):
    """Kubernetes-style readiness probe response."""

    ready: bool = Field(..., description="Service is ready to accept traffic")
    error: str | None = Field(default=None, description="Error message if not ready")


class LivenessResponse(BaseModel):
    """Kubernetes-style liveness probe response."""

    alive: bool = Field(default=True, description="Process is running")
