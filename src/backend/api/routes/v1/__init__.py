"""
API v1 Router - Aggregates all v1 endpoints.

Usage in main.py:
    from api.routes.v1 import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from api.routes.v1 import chats, health, metrics, tasks, tools

# Create the v1 API router
router = APIRouter()

# Health and metrics endpoints
router.include_router(
    health.router,
    tags=["Health"],
)
router.include_router(
    metrics.router,
    tags=["Metrics"],
)

# Chat sessions, completion streaming and chat push events
router.include_router(
    chats.router,
    prefix="/chats",
    tags=["Chats"],
)

# Tasks and task push channels (paths carry their own /tasks or /message prefix)
router.include_router(
    tasks.router,
    tags=["Tasks"],
)

# Tool discovery
router.include_router(
    tools.router,
    prefix="/tools",
    tags=["Tools"],
)

__all__ = ["router"]
