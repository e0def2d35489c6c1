"""
Background Task Tracker — which out-of-band tasks are running right now.

The tracker keeps only live information:
- running tasks are listed until they finish
- a task that finishes while nobody inspects it is evicted at once
- a task that finishes while inspected stays for ``linger`` seconds so the
  final status can be read, then it is evicted and the inspection ends

Terminal status is final: a second completion for the same task is ignored.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable

from voicekiosk.core.lifecycle import DisposalToken
from voicekiosk.tasks.models import BackgroundTask, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_LINGER = 3.0  # seconds


class BackgroundTaskTracker:
    """Registry of active background tasks plus the one being inspected."""

    def __init__(self, linger: float = DEFAULT_LINGER) -> None:
        self.linger = linger
        self._tasks: dict[str, BackgroundTask] = {}
        self._inspected: str | None = None
        self._token = DisposalToken("task-tracker")
        self._evict_timer = None
        self._listeners: list[Callable[[], None]] = []

    # ─── Queries ──────────────────────────────────────────────────

    @property
    def tasks(self) -> list[BackgroundTask]:
        return list(self._tasks.values())

    @property
    def running(self) -> list[BackgroundTask]:
        return [t for t in self._tasks.values() if not t.terminal]

    @property
    def inspected(self) -> BackgroundTask | None:
        if self._inspected is None:
            return None
        return self._tasks.get(self._inspected)

    def get(self, task_id: str) -> BackgroundTask | None:
        return self._tasks.get(task_id)

    def summary(self) -> str | None:
        """One-line indicator text, None when nothing is running."""
        count = len(self.running)
        if count == 0:
            return None
        noun = "task" if count == 1 else "tasks"
        return f"{count} background {noun} running"

    # ─── Lifecycle events ─────────────────────────────────────────

    def start(
        self,
        task_id: str,
        description: str = "",
        started_at: float | None = None,
    ) -> BackgroundTask | None:
        """Register a running task."""
        if not self._token.alive:
            return None
        existing = self._tasks.get(task_id)
        if existing is not None and existing.terminal:
            logger.debug("Ignoring restart of finished task %s", task_id)
            return existing

        task = BackgroundTask(
            task_id=task_id,
            description=description or (existing.description if existing else ""),
            status=TaskStatus.RUNNING,
            started_at=started_at if started_at is not None else time.time(),
            session_id=existing.session_id if existing else None,
        )
        self._tasks[task_id] = task
        logger.info("Task started: %s", description or task_id, extra={"task_id": task_id})
        self._notify()
        return task

    def finish(self, task_id: str, status: str | TaskStatus) -> BackgroundTask | None:
        """Move a task to its terminal state and evict it per the display rules."""
        if not self._token.alive:
            return None
        task = self._tasks.get(task_id)
        if task is None:
            return None
        if task.terminal:
            return task

        final = TaskStatus.from_wire(
            status.value if isinstance(status, TaskStatus) else status
        )
        if final is TaskStatus.RUNNING:
            final = TaskStatus.COMPLETED
        done = task.with_status(final)
        logger.info(
            "Task %s: %s", final.value, task.description or task_id, extra={"task_id": task_id}
        )

        if task_id == self._inspected:
            self._tasks[task_id] = done
            self._schedule_eviction(task_id)
        else:
            del self._tasks[task_id]
        self._notify()
        return done

    def bind_session(
        self,
        task_id: str,
        session_id: str | None,
        started_at: float | None = None,
    ) -> BackgroundTask | None:
        """Fill in details learned from a task listing snapshot."""
        task = self._tasks.get(task_id)
        if task is None:
            return None
        changes = {}
        if session_id and task.session_id != session_id:
            changes["session_id"] = session_id
        if started_at is not None and task.started_at is None:
            changes["started_at"] = started_at
        if not changes:
            return task
        task = replace(task, **changes)
        self._tasks[task_id] = task
        self._notify()
        return task

    def remove(self, task_id: str) -> None:
        if self._tasks.pop(task_id, None) is None:
            return
        if task_id == self._inspected:
            self._end_inspection()
        self._notify()

    # ─── Inspection ───────────────────────────────────────────────

    def inspect(self, task_id: str) -> BackgroundTask | None:
        """Mark a task as being looked at. Returns None for unknown tasks."""
        task = self._tasks.get(task_id)
        if task is None:
            return None
        if self._inspected != task_id:
            self._end_inspection()
            self._inspected = task_id
        if task.terminal:
            self._schedule_eviction(task_id)
        return task

    def release(self) -> None:
        """Stop inspecting; finished tasks kept for display go away now."""
        self._end_inspection()
        finished = [tid for tid, t in self._tasks.items() if t.terminal]
        for task_id in finished:
            del self._tasks[task_id]
        if finished:
            self._notify()

    def _end_inspection(self) -> None:
        self._token.cancel(self._evict_timer)
        self._evict_timer = None
        self._inspected = None

    def _schedule_eviction(self, task_id: str) -> None:
        self._token.cancel(self._evict_timer)
        self._evict_timer = self._token.call_later(self.linger, self._evict, task_id)

    def _evict(self, task_id: str) -> None:
        self._evict_timer = None
        if self._inspected == task_id:
            self._inspected = None
        if self._tasks.pop(task_id, None) is not None:
            logger.debug("Evicted finished task %s", task_id)
            self._notify()

    # ─── Listeners ────────────────────────────────────────────────

    def on_change(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error("Error in task listener: %s", e, exc_info=True)

    def dispose(self) -> None:
        self._token.dispose()
        self._evict_timer = None
        self._listeners.clear()
