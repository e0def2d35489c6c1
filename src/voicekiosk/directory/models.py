"""
Directory Models — what the session directory endpoint reports.

The directory lists persisted sessions plus the key the shared voice
pipeline is currently bound to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


def timestamp_of(value: object) -> float:
    """Best-effort sortable timestamp for an ISO string or epoch number."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return 0.0
    return 0.0


@dataclass(frozen=True)
class SessionInfo:
    """A persisted session as listed by the directory."""

    key: str
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> SessionInfo | None:
        key = data.get("key")
        if not isinstance(key, str) or not key:
            return None
        created = data.get("created_at")
        updated = data.get("updated_at")
        return cls(
            key=key,
            created_at=str(created) if created is not None else None,
            updated_at=str(updated) if updated is not None else None,
        )

    @property
    def recency(self) -> float:
        """Sort key: last update, else creation."""
        return timestamp_of(self.updated_at) or timestamp_of(self.created_at)


@dataclass(frozen=True)
class DirectoryListing:
    """Result of one directory refresh."""

    sessions: list[SessionInfo] = field(default_factory=list)
    current: str | None = None


@dataclass(frozen=True)
class SessionOption:
    """One entry of the session picker."""

    key: str
    label: str
    selectable: bool = True
    pending: bool = False
    current: bool = False
