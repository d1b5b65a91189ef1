"""Soft deadline for a workflow run.

The controller is a cancellation token with a deadline. It is handed to the
orchestrator explicitly and consulted only between steps; a step already in
flight is never interrupted. At expiry it runs the save-and-pause callback
exactly once and then sets its abort signal.

The controller never raises out of the callback: failures are logged and
the abort signal is still set.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[], Awaitable[None]]


class DeadlineController:
    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock
        self._deadline: float | None = None
        self._duration: float = 0.0
        self._handle: asyncio.TimerHandle | None = None
        self._on_expire: ExpiryCallback | None = None
        self._expiry_task: asyncio.Task[None] | None = None
        self.signal = asyncio.Event()

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()

    @property
    def started(self) -> bool:
        return self._deadline is not None

    def start(self, duration_seconds: float, on_expire: ExpiryCallback | None = None) -> None:
        """Arm a single countdown. Must be called from a running event loop."""

        if self._deadline is not None:
            raise RuntimeError("Deadline already started")
        loop = asyncio.get_running_loop()
        self._duration = max(0.0, duration_seconds)
        self._deadline = self._now() + self._duration
        self._on_expire = on_expire
        self._handle = loop.call_later(self._duration, self._on_timer)
        logger.debug("Deadline armed", extra={"duration_seconds": self._duration})

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._now())

    def is_expired(self) -> bool:
        """Non-blocking check used between steps."""

        if self.signal.is_set() or self._expiry_task is not None:
            return True
        if self._deadline is None:
            return False
        return self._now() >= self._deadline

    def cancel(self) -> None:
        """Disarm the timer. Safe to call repeatedly."""

        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def expire(self) -> None:
        """Run the expiry callback if it has not run yet, and wait for it.

        Called by the timer, and by the orchestrator when it observes expiry
        before the timer had a chance to fire.
        """

        self.cancel()
        if self._expiry_task is None:
            self._expiry_task = asyncio.ensure_future(self._run_callback())
        await asyncio.shield(self._expiry_task)

    async def close(self) -> None:
        """Disarm and wait for an expiry callback that is still running."""

        self.cancel()
        if self._expiry_task is not None:
            await asyncio.shield(self._expiry_task)

    def _on_timer(self) -> None:
        self._handle = None
        if self._expiry_task is None:
            self._expiry_task = asyncio.ensure_future(self._run_callback())

    async def _run_callback(self) -> None:
        logger.warning(
            "Workflow deadline reached",
            extra={"duration_seconds": self._duration},
        )
        try:
            if self._on_expire is not None:
                await self._on_expire()
        except Exception:
            logger.exception("Deadline callback failed")
        finally:
            self.signal.set()
