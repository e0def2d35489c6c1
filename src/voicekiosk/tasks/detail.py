"""
Task Inspector — the live detail view of one background task.

Opening a task:
  1. marks it inspected in the tracker (so a finish lingers for display)
  2. resolves the event-stream session the task runs in: the task's own
     binding, else the task listing snapshot (polled until it shows up)
  3. subscribes the event aggregator to that session
  4. polls the todo list for progress

Closing (explicitly, by abort, or because the tracker evicted the task)
disposes every poller and unsubscribes the aggregator.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from voicekiosk.core.lifecycle import DisposalToken
from voicekiosk.events.aggregator import IncrementalEventAggregator
from voicekiosk.tasks.client import TaskClient
from voicekiosk.tasks.models import BackgroundTask, Todo, format_elapsed, todo_progress
from voicekiosk.tasks.tracker import BackgroundTaskTracker

logger = logging.getLogger(__name__)


class TaskInspector:
    """Drives the detail view for at most one task at a time."""

    def __init__(
        self,
        tracker: BackgroundTaskTracker,
        client: TaskClient,
        aggregator: IncrementalEventAggregator,
        task_poll_interval: float = 5.0,
        todo_poll_interval: float = 3.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tracker = tracker
        self._client = client
        self.aggregator = aggregator
        self.task_poll_interval = task_poll_interval
        self.todo_poll_interval = todo_poll_interval
        self._clock = clock

        self.task_id: str | None = None
        self.session_id: str | None = None
        self.snapshot: list[BackgroundTask] = []
        self.todos: list[Todo] = []
        self._token: DisposalToken | None = None

        tracker.on_change(self._on_tracker_change)

    # ─── Queries ──────────────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self._token is not None and self._token.alive

    @property
    def task(self) -> BackgroundTask | None:
        if self.task_id is None:
            return None
        return self._tracker.get(self.task_id)

    @property
    def started_at(self) -> float | None:
        task = self.task
        if task is not None and task.started_at is not None:
            return task.started_at
        for item in self.snapshot:
            if item.task_id == self.task_id:
                return item.started_at
        return None

    @property
    def elapsed(self) -> int:
        started = self.started_at
        if started is None:
            return 0
        return max(0, int(self._clock() - started))

    @property
    def elapsed_label(self) -> str:
        return format_elapsed(self.elapsed)

    @property
    def progress(self) -> int:
        return todo_progress(self.todos)

    # ─── Lifecycle ────────────────────────────────────────────────

    async def open(self, task_id: str) -> bool:
        """Start inspecting ``task_id``. False if the tracker does not know it."""
        self.close()
        task = self._tracker.inspect(task_id)
        if task is None:
            return False

        self.task_id = task_id
        self._token = DisposalToken(f"task-inspector:{task_id}")
        logger.info("Inspecting task %s", task_id, extra={"task_id": task_id})

        if task.session_id:
            self._bind(task.session_id)
        self._token.spawn(self._poll_tasks(self._token))
        return True

    def close(self) -> None:
        if self._token is None:
            return
        self._token.dispose()
        self._token = None
        self.aggregator.unsubscribe()
        if self.task_id is not None and self._tracker.inspected is not None:
            self._tracker.release()
        self.task_id = None
        self.session_id = None
        self.snapshot = []
        self.todos = []

    async def abort(self) -> bool:
        """Abort the inspected task, drop it and close the view."""
        task_id = self.task_id
        if task_id is None:
            return False
        ok = True
        if self.session_id:
            ok = await self._client.abort(self.session_id)
        self.close()
        self._tracker.remove(task_id)
        return ok

    # ─── Resolution & polling ─────────────────────────────────────

    def _bind(self, session_id: str) -> None:
        if self._token is None or self.session_id == session_id:
            return
        self.session_id = session_id
        self.aggregator.subscribe(session_id)
        self._token.spawn(self._poll_todos(self._token, session_id))

    async def refresh_snapshot(self) -> None:
        tasks = await self._client.list_tasks()
        if tasks is None or not self.is_open:
            return
        self.snapshot = tasks
        for item in tasks:
            if item.task_id != self.task_id:
                continue
            self._tracker.bind_session(item.task_id, item.session_id, item.started_at)
            if item.session_id and self.session_id is None:
                self._bind(item.session_id)

    async def refresh_todos(self, session_id: str) -> None:
        todos = await self._client.fetch_todos(session_id)
        if todos is None or not self.is_open or session_id != self.session_id:
            return
        self.todos = todos

    async def _poll_tasks(self, token: DisposalToken) -> None:
        while token.alive:
            await self.refresh_snapshot()
            await asyncio.sleep(self.task_poll_interval)

    async def _poll_todos(self, token: DisposalToken, session_id: str) -> None:
        while token.alive:
            await self.refresh_todos(session_id)
            await asyncio.sleep(self.todo_poll_interval)

    def _on_tracker_change(self) -> None:
        # Tracker evicted the inspected task after its linger window
        if self.is_open and self.task_id is not None and self.task is None:
            logger.debug("Inspected task %s evicted, closing", self.task_id)
            self.close()
