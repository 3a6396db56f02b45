"""
Cancellation token for cooperative stream cancellation.

The completion engine checks the token between tokens and stops forwarding
once it is set. A tool invocation already dispatched is allowed to finish.
"""

from __future__ import annotations

import asyncio

from collections.abc import Callable

from utils.logger import logger


class CancellationToken:
    """Cooperative cancellation token.

    Usage:
        token = CancellationToken()

        # In the controller (e.g. the task cancel endpoint):
        await token.cancel("Task was cancelled by user request")

        # In the worker loop:
        async for chunk in stream:
            if token.is_cancelled:
                break
    """

    __slots__ = ("_callbacks", "_cancel_reason", "_cancelled", "_lock")

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._cancel_reason: str | None = None
        self._lock = asyncio.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> str | None:
        return self._cancel_reason

    async def cancel(self, reason: str | None = None) -> None:
        """Request cancellation and notify all callbacks. Idempotent."""
        async with self._lock:
            if self._cancelled.is_set():
                return

            self._cancel_reason = reason
            self._cancelled.set()

            for callback in self._callbacks:
                self._invoke_callback(callback)

    def _invoke_callback(self, callback: Callable[[], None]) -> None:
        """Invoke a callback, logging any errors."""
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation callback error: {e}")

    async def wait_for_cancellation(self, timeout: float | None = None) -> bool:
        """Wait for cancellation; returns False if ``timeout`` expired first."""
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run on cancellation (immediately if already cancelled)."""
        if self._cancelled.is_set():
            self._invoke_callback(callback)
            return callback

        self._callbacks.append(callback)
        return callback

    def check(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancellation requested")


__all__ = ["CancellationToken"]
