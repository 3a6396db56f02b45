"""
Task service.

Tasks live in process memory. Every status change is published to the
task's push channel; processing runs the completion engine in a background
asyncio task that a cancel request stops cooperatively.
"""

from __future__ import annotations

import asyncio

from api.middleware.exception_handlers import AppException, TaskNotFoundError
from api.services.completion_engine import CompletionEngine
from api.services.conversation_preparer import ConversationPreparer
from api.services.transcript_reconciler import ReconcileOutcome, decide
from api.streaming.broadcaster import Broadcaster
from api.streaming.cancellation import CancellationToken
from core.constants import CONTENT_TYPE_TEXT, FILTERED_TO_NOTHING_MESSAGE, TASK_CANCELLED_MESSAGE
from models.task_models import Artifact, Task, TaskMessage, TaskStatus
from models.turn_models import Role, Turn
from utils.logger import logger

RESULT_ARTIFACT_TYPE = "result"


class TaskService:
    def __init__(
        self,
        engine: CompletionEngine,
        preparer: ConversationPreparer,
        broadcaster: Broadcaster,
    ):
        self.engine = engine
        self.preparer = preparer
        self.broadcaster = broadcaster
        self._tasks: dict[str, Task] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._running: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    async def create_task(self, initial: Turn, start: bool = True) -> Task:
        """Register a task in PENDING and, by default, schedule its processing."""
        task = Task()
        task.add_turn(initial)
        async with self._lock:
            self._tasks[task.id] = task
        logger.info(f"Created task {task.id}", task_id=task.id)
        if start:
            await self.start_processing(task.id)
        return task

    async def get_task(self, task_id: str) -> Task:
        async with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def send_message(self, task_id: str, turn: Turn) -> Task:
        """Append a turn without processing it."""
        task = await self.get_task(task_id)
        task.add_turn(turn)
        return task

    async def delete_task(self, task_id: str) -> None:
        """Forget a task; its turns and artifacts go with it."""
        await self.cancel_task(task_id)
        async with self._lock:
            self._tasks.pop(task_id, None)
            self._tokens.pop(task_id, None)
        await self.broadcaster.close(task_id)

    async def cancel_task(self, task_id: str) -> Task:
        """Mark the task CANCELLED, publish it and stop token forwarding.

        A task that already finished keeps its final status.
        """
        task = await self.get_task(task_id)
        if task.status.state.is_terminal:
            return task

        task.set_status(TaskStatus.cancelled())
        self.broadcaster.publish_status(task)

        token = self._tokens.get(task_id)
        if token is not None:
            await token.cancel(TASK_CANCELLED_MESSAGE)
        logger.info(f"Cancelled task {task_id}", task_id=task_id)
        return task

    async def start_processing(self, task_id: str) -> asyncio.Task[None]:
        """Schedule ``process_task`` in the background.

        A job still running for the task is superseded: its token is cancelled
        so it stops forwarding and never writes a final status.
        """
        previous = self._tokens.get(task_id)
        if previous is not None:
            await previous.cancel("Superseded by a newer message")

        token = CancellationToken()
        self._tokens[task_id] = token
        job = asyncio.create_task(self.process_task(task_id, token))
        self._running[task_id] = job
        job.add_done_callback(lambda done: self._forget_job(task_id, done))
        return job

    def _forget_job(self, task_id: str, job: asyncio.Task[None]) -> None:
        if self._running.get(task_id) is job:
            del self._running[task_id]

    async def stream_message(self, task_id: str, turn: Turn) -> Task:
        """Append ``turn`` and start processing; progress goes to the push channel."""
        task = await self.send_message(task_id, turn)
        await self.start_processing(task_id)
        return task

    async def process_task(self, task_id: str, token: CancellationToken | None = None) -> None:
        """PROCESSING -> (message_update, artifact_update) -> COMPLETED, or FAILED."""
        task = await self.get_task(task_id)
        token = token or CancellationToken()
        if token.is_cancelled:
            return

        task.set_status(TaskStatus.processing())
        self.broadcaster.publish_status(task)

        try:
            prepared = self.preparer.prepare(task.turns)
            chunks = [
                chunk
                async for chunk in self.engine.stream(
                    prepared.messages,
                    offer_tools=not prepared.has_multimodal,
                    cancel_token=token,
                    chat_id=task.id,
                    user_input=task.turns[-1].text_content if task.turns else "",
                )
            ]
            if token.is_cancelled or task.status.state.is_terminal:
                return

            decision = decide("".join(chunks))
            if decision.outcome == ReconcileOutcome.FILTERED:
                raise ValueError(FILTERED_TO_NOTHING_MESSAGE)
            if decision.outcome == ReconcileOutcome.NOTHING:
                logger.info(f"Task {task.id} produced no response", task_id=task.id)
                task.set_status(TaskStatus.completed())
                self.broadcaster.publish_status(task)
                return

            answer = Turn.text(Role.ASSISTANT, decision.sanitized, raw_content=decision.raw)
            task.add_turn(answer)
            self.broadcaster.publish_message(task.id, TaskMessage.from_turn(answer).to_wire())

            artifact = Artifact(type=RESULT_ARTIFACT_TYPE, content_type=CONTENT_TYPE_TEXT, content=decision.sanitized)
            task.add_artifact(artifact)
            self.broadcaster.publish_artifact(task.id, artifact)

            task.set_status(TaskStatus.completed())
            self.broadcaster.publish_status(task)
        except asyncio.CancelledError:
            raise
        except (AppException, ValueError) as e:
            reason = e.message if isinstance(e, AppException) else str(e)
            self._fail(task, token, reason)
        except Exception as e:
            logger.error(f"Task {task.id} processing failed: {e}", exc_info=True, task_id=task.id)
            self._fail(task, token, str(e))

    def _fail(self, task: Task, token: CancellationToken, reason: str) -> None:
        if token.is_cancelled or task.status.state.is_terminal:
            return
        logger.warning(f"Task {task.id} failed: {reason}", task_id=task.id)
        task.set_status(TaskStatus.failed(reason))
        self.broadcaster.publish_status(task)

    async def shutdown(self) -> None:
        """Cancel running jobs and wait for them to stop."""
        jobs = list(self._running.values())
        for job in jobs:
            job.cancel()
        if jobs:
            await asyncio.gather(*jobs, return_exceptions=True)
        logger.info(f"Task service shutdown complete ({len(jobs)} running tasks cancelled)")


__all__ = ["RESULT_ARTIFACT_TYPE", "TaskService"]
