"""
Task Models — background tasks and the todo lists they report.

Models are frozen; use dataclasses.replace to derive changed copies.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class TaskStatus(str, Enum):
    """Lifecycle of a background task. Terminal states are final."""

    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @classmethod
    def from_wire(cls, value: object) -> TaskStatus:
        """Servers report a free-form status; anything unknown counts as completed."""
        if value == "running":
            return cls.RUNNING
        if value == "error":
            return cls.ERROR
        return cls.COMPLETED


@dataclass(frozen=True)
class BackgroundTask:
    """A long-running out-of-band task tracked by id."""

    task_id: str
    description: str = ""
    status: TaskStatus = TaskStatus.RUNNING
    started_at: float | None = None  # epoch seconds
    session_id: str | None = None  # event-stream session the task runs in

    @property
    def terminal(self) -> bool:
        return self.status is not TaskStatus.RUNNING

    def with_status(self, status: TaskStatus) -> BackgroundTask:
        return replace(self, status=status)

    @classmethod
    def from_dict(cls, data: dict) -> BackgroundTask | None:
        """Parse one entry of the task listing endpoint."""
        task_id = data.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            return None
        started = data.get("started_at")
        session_id = data.get("oc_session_id")
        return cls(
            task_id=task_id,
            description=str(data.get("description") or ""),
            status=TaskStatus.from_wire(data.get("status")),
            started_at=float(started)
            if isinstance(started, (int, float)) and not isinstance(started, bool)
            else None,
            session_id=session_id if isinstance(session_id, str) and session_id else None,
        )


@dataclass(frozen=True)
class Todo:
    """One checklist item a task reports about itself."""

    content: str
    status: str = "pending"  # pending | in_progress | completed | cancelled
    priority: str = "medium"  # high | medium | low

    @classmethod
    def from_dict(cls, data: dict) -> Todo | None:
        content = data.get("content")
        if not isinstance(content, str):
            return None
        return cls(
            content=content,
            status=str(data.get("status") or "pending"),
            priority=str(data.get("priority") or "medium"),
        )


def todo_progress(todos: list[Todo]) -> int:
    """Completed share of a todo list, as a rounded percentage."""
    if not todos:
        return 0
    done = sum(1 for t in todos if t.status == "completed")
    return round(done * 100 / len(todos))


def format_elapsed(seconds: float) -> str:
    """MM:SS, minutes uncapped."""
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"
