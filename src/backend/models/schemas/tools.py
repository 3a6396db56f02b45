"""
Tool API schemas.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolRefreshResponse(_CamelResponse):
    status: Literal["success", "error"]
    message: str
    tool_count: int | None = Field(default=None, description="Tools in the active set after refresh")
    timestamp: str


class ToolStatusResponse(_CamelResponse):
    status: Literal["healthy"] = "healthy"
    available_tools: int
    timestamp: str
    version: str


__all__ = ["ToolRefreshResponse", "ToolStatusResponse"]
