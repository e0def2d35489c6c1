"""
Lifecycle primitives shared by every long-lived client component.

DisposalToken
    A liveness flag plus the timers and background tasks registered
    against it. Every asynchronous callback checks ``token.alive`` before
    touching component state; ``dispose()`` flips the flag exactly once
    and cancels everything still pending.

Backoff
    Exponential reconnect schedule: ``min(base * 2**attempt, cap)``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

# 2**32 seconds is far beyond any cap; keeps the float math finite
_MAX_EXPONENT = 32


def reconnect_delay(attempt: int, base: float = 1.0, cap: float = 30.0) -> float:
    """Delay before reconnect number ``attempt`` (0-based), in seconds."""
    exponent = min(max(attempt, 0), _MAX_EXPONENT)
    return min(base * (2**exponent), cap)


class Backoff:
    """Tracks the attempt counter for one reconnecting connection."""

    def __init__(self, base: float = 1.0, cap: float = 30.0) -> None:
        self.base = base
        self.cap = cap
        self.attempt = 0

    def next_delay(self) -> float:
        """Delay for the current attempt; advances the counter."""
        delay = reconnect_delay(self.attempt, self.base, self.cap)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


class DisposalToken:
    """Liveness flag guarding a component's asynchronous callbacks."""

    def __init__(self, name: str = "component") -> None:
        self.name = name
        self._alive = True
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def alive(self) -> bool:
        return self._alive

    def dispose(self) -> bool:
        """Flip the token and cancel pending work. Returns False if already disposed."""
        if not self._alive:
            return False
        self._alive = False

        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        logger.debug("Disposed %s", self.name)
        return True

    # ─── Timers ───────────────────────────────────────────────────

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> asyncio.TimerHandle | None:
        """Schedule ``callback`` on the running loop unless disposed first."""
        if not self._alive:
            return None

        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._timers.discard(handle)
            if self._alive:
                callback(*args)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)
        return handle

    def cancel(self, handle: asyncio.TimerHandle | None) -> None:
        """Cancel a timer returned by call_later. Safe with None."""
        if handle is None:
            return
        handle.cancel()
        self._timers.discard(handle)

    @property
    def pending_timers(self) -> int:
        return len(self._timers)

    # ─── Background tasks ─────────────────────────────────────────

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task | None:
        """Run ``coro`` as a task that is cancelled on disposal."""
        if not self._alive:
            coro.close()
            return None

        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task in %s failed: %s",
                self.name,
                exc,
                exc_info=exc,
            )

    def __repr__(self) -> str:
        state = "alive" if self._alive else "disposed"
        return f"<DisposalToken {self.name} {state}>"
