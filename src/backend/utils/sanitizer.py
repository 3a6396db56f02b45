"""Content sanitization for persisted transcripts.

Strips internal reasoning blocks, tool-code blocks and bracketed tool status
phrases from model output before it is stored. The unfiltered text is kept
separately as the message's raw content.
"""

from __future__ import annotations

import re

from core.constants import MAX_CONTENT_LENGTH

#: <think>...</think> and <thinking>...</thinking>, non-greedy so each block goes separately
THINK_BLOCK_PATTERN = re.compile(r"<think(?:ing)?>.*?</think(?:ing)?>", re.IGNORECASE | re.DOTALL)

TOOL_CODE_PATTERN = re.compile(r"<tool_code>.*?</tool_code>", re.IGNORECASE | re.DOTALL)

#: Status phrases the orchestrator or the model may emit around tool execution
TOOL_STATUS_PHRASES = (
    "Calling tool",
    "Executing tools?",
    "Tool execution",
    "Tool result",
    "Tool error",
    "Tool failed",
    "Tool execution failed",
    "Tool completed",
    "Tool completed successfully",
    "Continuing conversation",
    "Step [0-9]+",
    "Using tool",
    "Task complete",
    "Task started",
    "Processing",
    "Tool thinking",
    "Tool output",
    "Result",
    "Executing",
    "Tool execution continues",
    "Tool calls requested by LLM",
    "Tool [^\\]]* executed",
)

TOOL_STATUS_PATTERN = re.compile(
    r"\[(?:" + "|".join(TOOL_STATUS_PHRASES) + r")[^\]]*\]",
    re.IGNORECASE,
)

_WHITESPACE_RUN = re.compile(r"\s{2,}")

_PATTERNS = (THINK_BLOCK_PATTERN, TOOL_CODE_PATTERN, TOOL_STATUS_PATTERN)


def sanitize(text: str | None, max_length: int = MAX_CONTENT_LENGTH) -> str:
    """Remove reasoning and tool-status markup from text.

    Collapses runs of whitespace to a single space and trims. Longer results
    are cut at ``max_length`` and any trailing whitespace left by the cut is
    dropped, so sanitizing twice gives the same text. ``None`` becomes an
    empty string.
    """
    if not text:
        return ""

    # Removing one block can expose another (nested delimiters, collapsed spacing)
    cleaned = text
    previous = None
    while cleaned != previous:
        previous = cleaned
        for pattern in _PATTERNS:
            cleaned = pattern.sub("", cleaned)
        cleaned = _WHITESPACE_RUN.sub(" ", cleaned).strip()

    if len(cleaned) > max_length:
        # A cut landing on whitespace must not leave it trailing
        cleaned = cleaned[:max_length].rstrip()
    return cleaned


def needs_sanitizing(text: str | None) -> bool:
    """Return True when any of the removal patterns would match."""
    if not text:
        return False
    return any(pattern.search(text) for pattern in _PATTERNS)


__all__ = [
    "THINK_BLOCK_PATTERN",
    "TOOL_CODE_PATTERN",
    "TOOL_STATUS_PATTERN",
    "needs_sanitizing",
    "sanitize",
]
