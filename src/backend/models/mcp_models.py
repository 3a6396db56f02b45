"""
Pydantic models for tool servers (Model Context Protocol).

These models provide type safety for:
- Tool definitions discovered from a server (ToolDescriptor)
- Tool execution results (ToolResult)
"""

from __future__ import annotations

import json

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

#: Parameter schema offered to the model when a tool declares none
EMPTY_PARAMETERS_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


class ToolDescriptor(BaseModel):
    """One invocable tool and the server that serves it.

    Descriptors are not versioned; a refresh replaces the whole set.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict, alias="inputSchema")
    server_name: str
    server_url: str

    @classmethod
    def from_server(cls, raw: dict[str, Any], server_name: str, server_url: str) -> ToolDescriptor:
        """Build a descriptor from one entry of a ``tools/list`` result."""
        return cls(
            name=raw["name"],
            description=raw.get("description"),
            inputSchema=raw.get("inputSchema") or raw.get("parameters") or {},
            server_name=server_name,
            server_url=server_url,
        )

    def to_openai_tool(self) -> dict[str, Any]:
        """Function tool definition for the chat completions API."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or "",
                "parameters": self.input_schema or dict(EMPTY_PARAMETERS_SCHEMA),
            },
        }

    def to_api(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "sourceMcpServerName": self.server_name,
            "sourceMcpServerUrl": self.server_url,
        }


class ToolResult(BaseModel):
    """Outcome of one tool invocation.

    ``payload`` is the JSON-RPC response body on success. ``cached`` marks a
    "not modified" answer accepted as success.
    """

    tool_name: str
    success: bool
    payload: dict[str, Any] | None = None
    error: str | None = None
    cached: bool = False
    unavailable: bool = False
    server_name: str | None = None

    @classmethod
    def ok(
        cls,
        tool_name: str,
        payload: dict[str, Any],
        cached: bool = False,
        server_name: str | None = None,
    ) -> ToolResult:
        return cls(tool_name=tool_name, success=True, payload=payload, cached=cached, server_name=server_name)

    @classmethod
    def not_available(cls, tool_name: str) -> ToolResult:
        return cls(
            tool_name=tool_name,
            success=False,
            unavailable=True,
            error=f"Tool '{tool_name}' is not available or not enabled for execution.",
        )

    @classmethod
    def failure(cls, tool_name: str, error: str, server_name: str | None = None) -> ToolResult:
        return cls(tool_name=tool_name, success=False, error=error, server_name=server_name)

    def to_model_content(self, tool_call_id: str) -> str:
        """JSON text placed in the ``tool`` turn that answers ``tool_call_id``."""
        if self.success:
            return json.dumps(self.payload)
        if self.unavailable:
            return json.dumps({"error": self.error})
        return json.dumps({"error": self.error, "tool_name": self.tool_name, "tool_call_id": tool_call_id})


__all__ = [
    "EMPTY_PARAMETERS_SCHEMA",
    "ToolDescriptor",
    "ToolResult",
]
