"""
Live update broadcaster.

Keeps at most one push channel per task or chat id and frames every
published payload in the versioned JSON-RPC envelope. Channels are served to
clients as Server-Sent Events.
"""

from __future__ import annotations

import asyncio
import json
import uuid

from collections.abc import AsyncIterator, Mapping
from typing import Any

from core.constants import (
    EVENT_ARTIFACT_UPDATE,
    EVENT_MESSAGE_UPDATE,
    EVENT_TASK_STATUS_UPDATE,
)
from models.event_models import artifact_update_payload, build_envelope, status_update_payload
from models.task_models import Artifact, Task, TaskStatus
from utils.logger import logger
from utils.metrics import push_channels_active, push_events_total

#: Events buffered per channel before a slow subscriber is dropped
CHANNEL_QUEUE_SIZE = 1000

CLOSE_COMPLETED = "completed"
CLOSE_REPLACED = "replaced"
CLOSE_TIMEOUT = "timeout"
CLOSE_ERROR = "error"
CLOSE_SHUTDOWN = "shutdown"

_CLOSE_SENTINEL = None


class PushChannel:
    """One subscriber's event stream: Open -> (publishes) -> Closed."""

    def __init__(self, key: str, correlation_id: str | None = None, timeout: float | None = None):
        self.key = key
        self.channel_id = uuid.uuid4().hex
        self.correlation_id = correlation_id
        self.timeout = timeout
        self.close_reason: str | None = None
        self._queue: asyncio.Queue[tuple[str, dict[str, Any]] | None] = asyncio.Queue(maxsize=CHANNEL_QUEUE_SIZE)

    @property
    def is_closed(self) -> bool:
        return self.close_reason is not None

    def send(self, event: str, payload: Any) -> bool:
        """Queue one framed event. Returns False when the channel can no longer deliver."""
        if self.is_closed:
            return False
        try:
            self._queue.put_nowait((event, build_envelope(payload, self.correlation_id)))
        except asyncio.QueueFull:
            logger.warning(f"Push channel for {self.key} overflowed, closing")
            self.close(CLOSE_ERROR)
            return False
        return True

    def close(self, reason: str = CLOSE_COMPLETED) -> None:
        if self.is_closed:
            return
        self.close_reason = reason
        # Wake the reader even if the queue is full
        while True:
            try:
                self._queue.put_nowait(_CLOSE_SENTINEL)
                break
            except asyncio.QueueFull:
                self._queue.get_nowait()

    async def events(self) -> AsyncIterator[dict[str, str]]:
        """Yield ``{"event", "data"}`` dicts in the shape sse-starlette expects."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self.timeout)
            except asyncio.TimeoutError:
                self.close(CLOSE_TIMEOUT)
                return
            if item is _CLOSE_SENTINEL:
                return
            event, envelope = item
            yield {"event": event, "data": json.dumps(envelope, default=str)}


class Broadcaster:
    """Registry of live push channels keyed by task or chat id.

    Subscribing replaces any existing channel for the id under one lock, so
    there is never more than one channel per id.
    """

    def __init__(self, channel_timeout: float | None = None) -> None:
        self.channel_timeout = channel_timeout
        self._channels: dict[str, PushChannel] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, key: str, correlation_id: str | None = None) -> PushChannel:
        channel = PushChannel(key, correlation_id=correlation_id, timeout=self.channel_timeout)
        async with self._lock:
            previous = self._channels.get(key)
            self._channels[key] = channel
            if previous is not None:
                previous.close(CLOSE_REPLACED)
            push_channels_active.set(len(self._channels))
        if previous is not None:
            logger.info(f"Replaced push channel for {key}")
        else:
            logger.debug(f"Opened push channel for {key}")
        return channel

    async def unsubscribe(self, channel: PushChannel, reason: str = CLOSE_COMPLETED) -> None:
        """Close ``channel`` and drop it, unless it has already been replaced."""
        channel.close(reason)
        async with self._lock:
            if self._channels.get(channel.key) is channel:
                del self._channels[channel.key]
            push_channels_active.set(len(self._channels))

    async def close(self, key: str, reason: str = CLOSE_COMPLETED) -> None:
        async with self._lock:
            channel = self._channels.pop(key, None)
            push_channels_active.set(len(self._channels))
        if channel is not None:
            channel.close(reason)

    def get_channel(self, key: str) -> PushChannel | None:
        return self._channels.get(key)

    @property
    def active_count(self) -> int:
        return len(self._channels)

    def publish(self, key: str, event: str, payload: Any) -> bool:
        """Send ``payload`` to the channel for ``key``. Returns False if nobody listens."""
        channel = self._channels.get(key)
        if channel is None:
            return False
        delivered = channel.send(event, payload)
        if delivered:
            push_events_total.labels(event=event).inc()
        return delivered

    def publish_status(self, task: Task, update: TaskStatus | Mapping[str, Any] | None = None) -> bool:
        """Publish a status-update for ``task``; a raw map is merged into the payload."""
        payload = status_update_payload(task)
        if update is not None:
            extra = status_update_payload(update)
            extra.pop("kind", None)
            payload.update(extra)
        return self.publish(task.id, EVENT_TASK_STATUS_UPDATE, payload)

    def publish_artifact(
        self,
        task_id: str,
        artifact: Artifact | Mapping[str, Any],
        append: bool = False,
        last_chunk: bool = False,
    ) -> bool:
        payload = artifact_update_payload(task_id, artifact, append=append, last_chunk=last_chunk)
        return self.publish(task_id, EVENT_ARTIFACT_UPDATE, payload)

    def publish_message(self, key: str, message: Mapping[str, Any]) -> bool:
        return self.publish(key, EVENT_MESSAGE_UPDATE, dict(message))

    async def stream(self, channel: PushChannel) -> AsyncIterator[dict[str, str]]:
        """Serve a channel until it closes, then always deregister it."""
        reason = CLOSE_COMPLETED
        try:
            async for item in channel.events():
                yield item
            reason = channel.close_reason or CLOSE_COMPLETED
        except asyncio.CancelledError:
            # Client disconnected
            reason = CLOSE_ERROR
            raise
        finally:
            await self.unsubscribe(channel, reason)
            logger.debug(f"Push channel for {channel.key} closed ({channel.close_reason})")

    async def shutdown(self) -> None:
        async with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
            push_channels_active.set(0)
        for channel in channels:
            channel.close(CLOSE_SHUTDOWN)
        logger.info(f"Broadcaster shutdown complete (closed {len(channels)} channels)")


__all__ = [
    "CHANNEL_QUEUE_SIZE",
    "Broadcaster",
    "PushChannel",
]
