"""TaskClient — async wrapper around the background-task endpoints.

Endpoints (relative to ``events_base``):
    GET  /oc/tasks                 → {tasks: [{task_id, description, status, started_at, oc_session_id}]}
    GET  /oc/session/{id}/todo     → [todo, ...] or {todos: [todo, ...]}
    POST /oc/session/{id}/abort

Failures are logged and turned into None/False, never raised.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from voicekiosk.tasks.models import BackgroundTask, Todo

logger = logging.getLogger(__name__)


class TaskClient:
    """Async client for the task listing, todo and abort endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def list_tasks(self) -> list[BackgroundTask] | None:
        """Snapshot of all known tasks. None on failure."""
        try:
            async with self._client() as client:
                resp = await client.get("/oc/tasks")
                resp.raise_for_status()
                data = resp.json()
        except Exception as e:
            logger.warning("Task listing failed: %s", e)
            return None

        items = data.get("tasks") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return None

        tasks = []
        for item in items:
            if isinstance(item, dict):
                task = BackgroundTask.from_dict(item)
                if task is not None:
                    tasks.append(task)
        return tasks

    async def fetch_todos(self, session_id: str) -> list[Todo] | None:
        """Todo list of the session a task runs in. None on failure."""
        try:
            async with self._client() as client:
                resp = await client.get(f"/oc/session/{quote(session_id, safe='')}/todo")
                resp.raise_for_status()
                data = resp.json()
        except Exception as e:
            logger.warning("Todo fetch failed (%s): %s", session_id, e)
            return None

        if isinstance(data, dict):
            data = data.get("todos")
        if not isinstance(data, list):
            return None

        todos = []
        for item in data:
            if isinstance(item, dict):
                todo = Todo.from_dict(item)
                if todo is not None:
                    todos.append(todo)
        return todos

    async def abort(self, session_id: str) -> bool:
        """Ask the server to abort the task running in ``session_id``."""
        try:
            async with self._client() as client:
                resp = await client.post(f"/oc/session/{quote(session_id, safe='')}/abort")
                resp.raise_for_status()
        except Exception as e:
            logger.warning("Task abort failed (%s): %s", session_id, e)
            return False

        logger.info("Task session aborted: %s", session_id)
        return True
