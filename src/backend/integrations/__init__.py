"""
Integrations Module - External System Integrations
===================================================

Provides integrations with remote tool servers speaking the Model Context
Protocol over HTTP.

Modules:
    mcp_http_client: JSON-RPC over HTTP POST for one tool server
    mcp_registry: Discovery across all configured servers and invocation by tool name

Key Components:

MCP HTTP Client (mcp_http_client.py):
    One client per configured server:
    - Session negotiated with ``initialize`` before each discovery or call
    - Plain JSON and single-event SSE response bodies
    - HTTP 304 on ``tools/call`` accepted as a cached success

Tool Registry (mcp_registry.py):
    Process-wide descriptor set:
    - Concurrent discovery; a failing server contributes no tools
    - Atomic replacement of the active set on refresh
    - Invocation failures returned as results, never raised
"""
