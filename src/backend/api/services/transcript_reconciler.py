"""
Transcript reconciliation.

Runs once per completed stream: stores the sanitized answer as the turn's
content and patches the unfiltered stream in as its raw content.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from api.middleware.exception_handlers import AppException, ContentFilteredError
from api.services.chat_service import AppendResult, ChatService
from core.constants import FILTERED_TO_NOTHING_MESSAGE
from models.turn_models import Role, Turn
from utils.logger import logger
from utils.sanitizer import sanitize


class ReconcileOutcome(str, Enum):
    NOTHING = "nothing"
    FILTERED = "filtered"
    PERSIST = "persist"


@dataclass(frozen=True)
class ReconcileDecision:
    outcome: ReconcileOutcome
    raw: str
    sanitized: str


def decide(raw: str | None) -> ReconcileDecision:
    """Apply the persistence decision table to one accumulated response.

    | raw empty | sanitized empty | outcome  |
    |-----------|-----------------|----------|
    | yes       | yes             | NOTHING  |
    | no        | yes             | FILTERED |
    | no        | no              | PERSIST  |
    """
    raw = raw or ""
    sanitized = sanitize(raw)
    if not raw.strip():
        return ReconcileDecision(ReconcileOutcome.NOTHING, raw, sanitized)
    if not sanitized:
        return ReconcileDecision(ReconcileOutcome.FILTERED, raw, sanitized)
    return ReconcileDecision(ReconcileOutcome.PERSIST, raw, sanitized)


class TranscriptReconciler:
    def __init__(self, chat_service: ChatService):
        self.chat_service = chat_service

    async def backfill_raw(self, message_id: str | None, raw: str) -> None:
        """Patch raw content onto a stored turn. Failures are logged, never raised."""
        if not message_id:
            return
        try:
            await self.chat_service.update_raw_content(message_id, raw)
        except AppException as e:
            logger.warning(f"Raw content backfill failed for message {message_id}: {e.message}")

    async def reconcile(self, chat_id: str, raw: str | None, llm_id: str | None = None) -> AppendResult | None:
        """Persist one completed answer.

        Returns None when the stream produced nothing at all.

        Raises:
            ContentFilteredError: The answer consisted only of filtered markup
        """
        decision = decide(raw)

        if decision.outcome == ReconcileOutcome.NOTHING:
            logger.debug("Empty response, nothing to persist", chat_id=chat_id)
            return None

        if decision.outcome == ReconcileOutcome.FILTERED:
            logger.warning(
                "Response empty after sanitizing, not persisted",
                chat_id=chat_id,
                raw_length=len(decision.raw),
            )
            raise ContentFilteredError(FILTERED_TO_NOTHING_MESSAGE, raw_length=len(decision.raw))

        result = await self.chat_service.add_turn(
            chat_id,
            Turn.text(Role.ASSISTANT, decision.sanitized, llm_id=llm_id),
        )
        if not result.duplicate:
            await self.backfill_raw(result.turn.id, decision.raw)
        return result


__all__ = [
    "ReconcileDecision",
    "ReconcileOutcome",
    "TranscriptReconciler",
    "decide",
]
