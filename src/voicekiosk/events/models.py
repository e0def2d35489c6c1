"""
Assembled Message Models — the Message → MessagePart hierarchy rebuilt
from the secondary event stream.

The stream reports parts with its own vocabulary:
    text                     → PartKind.TEXT
    reasoning                → PartKind.REASONING
    tool                     → PartKind.TOOL (tool name, state, input, output)
    step-start / step-finish → dropped (progress is tracked via todos)

Parts are frozen; messages are small mutable containers owned by the
assembler, with a part-id index so a part id never appears twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class PartKind(str, Enum):
    TEXT = "text"
    REASONING = "reasoning"
    TOOL = "tool-invocation"


@dataclass(frozen=True)
class Part:
    """One independently renderable piece of an assistant message."""

    part_id: str
    kind: PartKind
    text: str = ""
    tool_name: str | None = None
    state: str | None = None
    input: dict[str, Any] | None = None
    output: str | None = None

    @property
    def text_bearing(self) -> bool:
        return self.kind in (PartKind.TEXT, PartKind.REASONING)

    def with_text_appended(self, delta: str) -> Part:
        return replace(self, text=self.text + delta)


def part_from_snapshot(snapshot: dict) -> Part | None:
    """Map a stream part snapshot onto a Part. None for dropped types."""
    part_id = snapshot.get("id")
    part_type = snapshot.get("type")
    if not isinstance(part_id, str) or not part_id:
        return None

    if part_type == "text":
        return Part(part_id=part_id, kind=PartKind.TEXT, text=_text(snapshot))
    if part_type == "reasoning":
        return Part(part_id=part_id, kind=PartKind.REASONING, text=_text(snapshot))
    if part_type == "tool":
        state = snapshot.get("state")
        state = state if isinstance(state, dict) else {}
        tool_input = state.get("input")
        output = state.get("output")
        return Part(
            part_id=part_id,
            kind=PartKind.TOOL,
            tool_name=str(snapshot.get("tool") or "tool"),
            state=str(state.get("status") or "pending"),
            input=tool_input if isinstance(tool_input, dict) else None,
            output=output if isinstance(output, str) else None,
        )
    return None


def _text(snapshot: dict) -> str:
    text = snapshot.get("text")
    return text if isinstance(text, str) else ""


@dataclass
class AssembledMessage:
    """An assistant message and its ordered parts."""

    message_id: str
    role: str = "assistant"
    parts: list[Part] = field(default_factory=list)
    _index: dict[str, int] = field(default_factory=dict, repr=False)

    def index_of(self, part_id: str) -> int | None:
        return self._index.get(part_id)

    def upsert(self, part: Part) -> None:
        """Replace the part with the same id in place, or append it."""
        idx = self._index.get(part.part_id)
        if idx is None:
            self._index[part.part_id] = len(self.parts)
            self.parts.append(part)
        else:
            self.parts[idx] = part

    def replace_at(self, idx: int, part: Part) -> None:
        self.parts[idx] = part
