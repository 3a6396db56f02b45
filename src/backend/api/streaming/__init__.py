"""Push channels and cooperative cancellation for streaming endpoints."""

from __future__ import annotations

from api.streaming.broadcaster import Broadcaster, PushChannel
from api.streaming.cancellation import CancellationToken

__all__ = [
    "Broadcaster",
    "CancellationToken",
    "PushChannel",
]
