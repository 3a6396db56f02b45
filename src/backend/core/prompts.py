"""
System prompts for the research agent.
Centralizes the instruction text sent ahead of every conversation.
"""

from __future__ import annotations

from datetime import datetime

MAX_TOOLS_IN_PROMPT = 50

#: strftime pattern for the human readable timestamp, e.g.
#: "Saturday, October 17, 2026 at 03:04:05 PM UTC"
HUMAN_TIMESTAMP_FORMAT = "%A, %B %d, %Y at %I:%M:%S %p %Z"

SYSTEM_INSTRUCTIONS = """You are an advanced search and research assistant designed to provide comprehensive, accurate information efficiently. Your primary purpose is to leverage the available research tools to deliver high-quality results.

## Responsibilities

- Analyze each request carefully to determine the most appropriate research approach
- Formulate several different search queries for a topic to capture diverse perspectives
- Follow promising links from initial results to gather in-depth information
- Combine multiple tools when a single approach is insufficient
- Present information in a clear, structured and easily digestible format

## Research Principles

- Never invent or fabricate information; clearly indicate when information is unavailable
- Explicitly state when you are using specific research tools and why
- Acknowledge limitations honestly rather than guessing
- Prioritize authoritative, reliable sources over questionable or biased ones
- Verify critical information through multiple sources whenever possible
- Consider the recency of information relative to the current date below"""


def format_human_timestamp(now: datetime) -> str:
    """Render a timestamp the way a person would read it (never ISO-8601)."""
    rendered = now.strftime(HUMAN_TIMESTAMP_FORMAT)
    # %Z is empty for naive datetimes
    return rendered.rstrip()


def _render_tool_list(tool_names: list[str]) -> str:
    shown = tool_names[:MAX_TOOLS_IN_PROMPT]
    lines = [f"- {name}" for name in shown]
    remaining = len(tool_names) - len(shown)
    if remaining > 0:
        lines.append(f"- ...and {remaining} more tools")
    return "\n".join(lines)


def build_system_prompt(
    now: datetime,
    tool_names: list[str] | None = None,
    base_instructions: str = SYSTEM_INSTRUCTIONS,
) -> str:
    """Build the leading system message for a completion request.

    Args:
        now: Current time; callers pass a fresh value on every request
        tool_names: Names of currently discovered tools, if any
        base_instructions: Instruction text preceding the dynamic sections

    Returns:
        Combined system instructions string
    """
    sections = [base_instructions, f"Current date and time: {format_human_timestamp(now)}"]

    if tool_names:
        sections.append("## Available Tools\n\n" + _render_tool_list(tool_names))

    return "\n\n".join(sections)
