"""
Prometheus metrics for the research agent backend.

Defines custom metrics for tool execution, completion streams and push channels.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Use standard Prometheus naming conventions: namespace_subsystem_name_unit
NAMESPACE = "research_agent"


# ============================================================================
# Completion Metrics
# ============================================================================

completions_total = Counter(
    f"{NAMESPACE}_completions_total",
    "Completion streams finished, by outcome",
    ["outcome"],  # "success", "filtered", "error", "iteration_cap"
)

completion_duration_seconds = Histogram(
    f"{NAMESPACE}_completion_duration_seconds",
    "Wall time of a completion stream including tool execution",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

tool_loop_iterations = Histogram(
    f"{NAMESPACE}_tool_loop_iterations",
    "LLM round trips per completion",
    buckets=(1, 2, 3, 5, 8, 10, 15, 20),
)


# ============================================================================
# Tool Server (MCP) Metrics
# ============================================================================

mcp_servers_available = Gauge(
    f"{NAMESPACE}_mcp_servers_available",
    "Tool servers that answered the last discovery",
)

mcp_servers_total = Gauge(
    f"{NAMESPACE}_mcp_servers_total",
    "Configured tool servers",
)

mcp_tools_discovered = Gauge(
    f"{NAMESPACE}_mcp_tools_discovered",
    "Tool descriptors in the active set",
)

mcp_tool_calls_total = Counter(
    f"{NAMESPACE}_mcp_tool_calls_total",
    "Total number of tool calls executed",
    ["tool_name", "status"],  # status: "success", "cached", "error"
)

mcp_tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_mcp_tool_call_duration_seconds",
    "Tool call execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


# ============================================================================
# Push Channel Metrics
# ============================================================================

push_channels_active = Gauge(
    f"{NAMESPACE}_push_channels_active",
    "Number of currently open push channels",
)

push_events_total = Counter(
    f"{NAMESPACE}_push_events_total",
    "Events published to push channels",
    ["event"],
)
