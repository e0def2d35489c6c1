"""
Mirror Models — the client-side data the sync engine keeps for display.

Everything here is a plain dataclass. The engine replaces or appends;
presentation code only reads.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChatMessage:
    """One transcript turn. ``is_error`` marks server-reported failures."""

    role: str  # "user" | "assistant"
    text: str
    is_error: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> ChatMessage | None:
        role = data.get("role")
        text = data.get("text")
        if role not in ("user", "assistant") or not isinstance(text, str):
            return None
        return cls(role=role, text=text)


@dataclass(frozen=True)
class VoiceActivity:
    """VAD rendering hint. Independent of pipeline state."""

    is_speech: bool = False
    probability: float = 0.0


@dataclass(frozen=True)
class TipMessage:
    """An instructional line shown in the command-tip overlay."""

    role: str
    text: str
    received_at: float = field(default_factory=time.time)
