from __future__ import annotations

import asyncio
import json

from typing import Any

import pytest

from api.streaming.broadcaster import CHANNEL_QUEUE_SIZE, Broadcaster, PushChannel
from models.task_models import Artifact, Task, TaskStatus


async def _drain(channel: PushChannel) -> list[dict[str, Any]]:
    return [{"event": item["event"], **json.loads(item["data"])} async for item in channel.events()]


@pytest.mark.asyncio
async def test_events_are_framed_in_envelope() -> None:
    broadcaster = Broadcaster()
    channel = await broadcaster.subscribe("task-1", correlation_id="req-7")

    assert broadcaster.publish("task-1", "task_status_update", {"state": "x"})
    channel.close()

    events = await _drain(channel)
    assert events == [
        {
            "event": "task_status_update",
            "jsonrpc": "2.0",
            "protocolVersion": "2.0",
            "correlationId": "req-7",
            "result": {"state": "x"},
        }
    ]


@pytest.mark.asyncio
async def test_publish_without_subscriber_is_dropped() -> None:
    broadcaster = Broadcaster()
    assert broadcaster.publish("nobody", "message_update", {}) is False


@pytest.mark.asyncio
async def test_resubscribe_replaces_and_closes_previous_channel() -> None:
    broadcaster = Broadcaster()
    first = await broadcaster.subscribe("chat-1")
    second = await broadcaster.subscribe("chat-1")

    assert first.is_closed
    assert first.close_reason == "replaced"
    assert broadcaster.get_channel("chat-1") is second
    assert broadcaster.active_count == 1


@pytest.mark.asyncio
async def test_unsubscribe_of_replaced_channel_keeps_new_one() -> None:
    broadcaster = Broadcaster()
    first = await broadcaster.subscribe("chat-1")
    second = await broadcaster.subscribe("chat-1")

    await broadcaster.unsubscribe(first)

    assert broadcaster.get_channel("chat-1") is second


@pytest.mark.asyncio
async def test_publish_status_and_artifact() -> None:
    broadcaster = Broadcaster()
    task = Task()
    channel = await broadcaster.subscribe(task.id)

    broadcaster.publish_status(task, {"final": True})
    broadcaster.publish_artifact(task.id, Artifact(type="result", content="done"), last_chunk=True)
    channel.close()

    status_event, artifact_event = await _drain(channel)
    assert status_event["result"]["taskId"] == task.id
    assert status_event["result"]["final"] is True
    assert status_event["result"]["status"]["state"] == "PENDING"
    assert artifact_event["event"] == "artifact_update"
    assert artifact_event["result"]["lastChunk"] is True


@pytest.mark.asyncio
async def test_publish_status_with_explicit_status() -> None:
    broadcaster = Broadcaster()
    task = Task()
    channel = await broadcaster.subscribe(task.id)

    broadcaster.publish_status(task, TaskStatus.completed())
    channel.close()

    (event,) = await _drain(channel)
    assert event["result"]["status"]["state"] == "COMPLETED"
    assert event["result"]["kind"] == "status-update"


@pytest.mark.asyncio
async def test_overflow_closes_channel() -> None:
    channel = PushChannel("k")
    for i in range(CHANNEL_QUEUE_SIZE):
        assert channel.send("e", {"i": i})

    assert channel.send("e", {"i": "overflow"}) is False
    assert channel.close_reason == "error"


@pytest.mark.asyncio
async def test_idle_channel_times_out() -> None:
    channel = PushChannel("k", timeout=0.01)
    assert await _drain(channel) == []
    assert channel.close_reason == "timeout"


@pytest.mark.asyncio
async def test_stream_deregisters_on_close() -> None:
    broadcaster = Broadcaster()
    channel = await broadcaster.subscribe("chat-1")
    broadcaster.publish_message("chat-1", {"chatId": "chat-1"})

    async def consume() -> list[dict[str, str]]:
        return [item async for item in broadcaster.stream(channel)]

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0)
    channel.close()
    items = await consumer

    assert len(items) == 1
    assert broadcaster.active_count == 0


@pytest.mark.asyncio
async def test_shutdown_closes_everything() -> None:
    broadcaster = Broadcaster()
    a = await broadcaster.subscribe("a")
    b = await broadcaster.subscribe("b")

    await broadcaster.shutdown()

    assert a.close_reason == "shutdown"
    assert b.close_reason == "shutdown"
    assert broadcaster.active_count == 0
