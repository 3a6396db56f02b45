from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from api.middleware.exception_handlers import ContentFilteredError, MessageNotFoundError
from api.services.chat_service import AppendResult
from api.services.transcript_reconciler import ReconcileOutcome, TranscriptReconciler, decide
from models.turn_models import Role, Turn


class TestDecide:
    def test_nothing(self) -> None:
        assert decide(None).outcome == ReconcileOutcome.NOTHING
        assert decide("   ").outcome == ReconcileOutcome.NOTHING

    def test_filtered(self) -> None:
        decision = decide("<think>private</think>[Tool result for x: y]")
        assert decision.outcome == ReconcileOutcome.FILTERED
        assert decision.sanitized == ""

    def test_reasoning_and_tool_status_only_is_filtered(self) -> None:
        decision = decide("<thinking>only reasoning</thinking>[Tool completed successfully]")
        assert decision.outcome == ReconcileOutcome.FILTERED

    def test_reasoning_and_tool_status_around_answer_persists(self) -> None:
        decision = decide("<thinking>reasoning</thinking>[Tool completed successfully] 42")
        assert decision.outcome == ReconcileOutcome.PERSIST
        assert decision.sanitized == "42"

    def test_persist(self) -> None:
        decision = decide("<think>hm</think>Low tide is at 6.")
        assert decision.outcome == ReconcileOutcome.PERSIST
        assert decision.sanitized == "Low tide is at 6."
        assert decision.raw == "<think>hm</think>Low tide is at 6."


def _service(duplicate: bool = False) -> Mock:
    service = Mock()
    stored = Turn.text(Role.ASSISTANT, "Low tide is at 6.", id="m-1")
    service.add_turn = AsyncMock(return_value=AppendResult(chat=Mock(), turn=stored, duplicate=duplicate))
    service.update_raw_content = AsyncMock()
    return service


class TestTranscriptReconciler:
    @pytest.mark.asyncio
    async def test_persists_sanitized_and_backfills_raw(self) -> None:
        service = _service()
        reconciler = TranscriptReconciler(service)
        raw = "<think>hm</think>Low tide is at 6."

        result = await reconciler.reconcile("chat-1", raw, llm_id="gpt-4o")

        assert result is not None
        chat_id, turn = service.add_turn.await_args.args
        assert chat_id == "chat-1"
        assert turn.role == Role.ASSISTANT
        assert turn.text_content == "Low tide is at 6."
        assert turn.llm_id == "gpt-4o"
        service.update_raw_content.assert_awaited_once_with("m-1", raw)

    @pytest.mark.asyncio
    async def test_duplicate_skips_backfill(self) -> None:
        service = _service(duplicate=True)
        await TranscriptReconciler(service).reconcile("chat-1", "Low tide is at 6.")
        service.update_raw_content.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_produced(self) -> None:
        service = _service()
        assert await TranscriptReconciler(service).reconcile("chat-1", "") is None
        service.add_turn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_filtered_raises_and_stores_nothing(self) -> None:
        service = _service()
        with pytest.raises(ContentFilteredError) as exc_info:
            await TranscriptReconciler(service).reconcile("chat-1", "<think>only thoughts</think>")
        assert exc_info.value.message == "AI response was empty after filtering tool-related content."
        assert exc_info.value.raw_length == len("<think>only thoughts</think>")
        service.add_turn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backfill_failure_is_logged_not_raised(self) -> None:
        service = _service()
        service.update_raw_content.side_effect = MessageNotFoundError("m-1")

        result = await TranscriptReconciler(service).reconcile("chat-1", "answer text")

        assert result is not None
