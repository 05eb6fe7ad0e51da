"""Deadline — one expiry/cancellation signal threaded through every probe stage."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

from sslprobe.errors import DeadlineExceeded, ProbeCancelled

T = TypeVar("T")


class Deadline:
    """Absolute expiry on the monotonic clock plus a cancellation flag.

    Created once per probe and passed explicitly into the dialer, every
    negotiation read/write and the handshake. It is never reset between
    stages, so the sum of all stages is bounded by the original timeout.
    ``cancel()`` must be called from the event loop thread.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._expires_at = time.monotonic() + timeout
        self._cancel_event = asyncio.Event()

    def __repr__(self) -> str:
        return f"<Deadline remaining={self.remaining():.3f}s cancelled={self.cancelled}>"

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._expires_at

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()

    def check(self, stage: str) -> None:
        """Raise if the signal has already fired."""
        if self.cancelled:
            raise ProbeCancelled(stage)
        if self.expired:
            raise DeadlineExceeded(stage)

    async def run(self, aw: Awaitable[T], stage: str) -> T:
        """Await *aw*, aborting it when the deadline passes or cancel() fires."""
        if self.cancelled or self.expired:
            # Never started, so close the coroutine instead of leaking it
            if asyncio.iscoroutine(aw):
                aw.close()
            self.check(stage)

        task = asyncio.ensure_future(aw)
        cancel_waiter = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, cancel_waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for fut in (task, cancel_waiter):
                if not fut.done():
                    fut.cancel()
            await asyncio.gather(task, cancel_waiter, return_exceptions=True)

        if task in done:
            return task.result()
        if self.cancelled:
            raise ProbeCancelled(stage)
        raise DeadlineExceeded(stage)
