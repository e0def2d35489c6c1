"""
Background tasks: tracker, detail inspector and their HTTP client.
"""

from voicekiosk.tasks.client import TaskClient
from voicekiosk.tasks.detail import TaskInspector
from voicekiosk.tasks.models import BackgroundTask, TaskStatus, Todo
from voicekiosk.tasks.tracker import BackgroundTaskTracker

__all__ = [
    "BackgroundTaskTracker",
    "TaskInspector",
    "TaskClient",
    "BackgroundTask",
    "TaskStatus",
    "Todo",
]
