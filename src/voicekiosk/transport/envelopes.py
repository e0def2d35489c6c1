"""
Envelopes — the wire protocol spoken over the realtime transport.

Inbound envelopes are a closed set of frozen dataclasses, one per ``type``
tag the pipeline server broadcasts. ``parse_envelope`` turns a raw frame
into one of them, or returns None when the frame is not JSON, is not an
object, carries an unknown tag, or is missing a required field. Callers
never see a parse exception.

Outbound envelopes are plain dicts built by the small constructors at the
bottom of this module.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Server-owned pipeline state, mirrored verbatim by the client."""

    IDLE = "idle"
    TRIGGERED = "triggered"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    THINKING = "thinking"
    RESPONDING = "responding"


class InteractionMode(str, Enum):
    PTT = "ptt"
    NATURAL = "natural"


class ChannelType(str, Enum):
    """Logical interaction track.

    voice    — one shared pipeline; every client follows the same session
    keyboard — per-connection session, independent of voice
    """

    VOICE = "voice"
    KEYBOARD = "keyboard"


# ─── Field helpers ────────────────────────────────────────────────


def _str(data: dict, key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _opt_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _probability(data: dict, key: str = "probability") -> float:
    value = data.get(key, 0.0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{key} must be a number")
    return min(max(float(value), 0.0), 1.0)


# ─── Inbound ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class StateChanged:
    TYPE: ClassVar[str] = "state_changed"

    state: PipelineState
    mode: str | None = None
    info: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> StateChanged:
        return cls(
            state=PipelineState(_str(data, "state")),
            mode=_opt_str(data, "mode"),
            info=_opt_str(data, "info"),
        )


@dataclass(frozen=True)
class UserText:
    TYPE: ClassVar[str] = "user_text"

    text: str
    session_key: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> UserText:
        return cls(text=_str(data, "text"), session_key=_opt_str(data, "session_key"))


@dataclass(frozen=True)
class AssistantText:
    TYPE: ClassVar[str] = "assistant_text"

    text: str
    session_key: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> AssistantText:
        return cls(text=_str(data, "text"), session_key=_opt_str(data, "session_key"))


@dataclass(frozen=True)
class AssistantChunk:
    TYPE: ClassVar[str] = "assistant_chunk"

    text: str
    done: bool = False
    session_key: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> AssistantChunk:
        return cls(
            text=_opt_str(data, "text") or "",
            done=bool(data.get("done", False)),
            session_key=_opt_str(data, "session_key"),
        )


@dataclass(frozen=True)
class VadStatus:
    TYPE: ClassVar[str] = "vad_status"

    is_speech: bool
    probability: float

    @classmethod
    def from_payload(cls, data: dict) -> VadStatus:
        return cls(
            is_speech=bool(data.get("is_speech", False)),
            probability=_probability(data),
        )


@dataclass(frozen=True)
class VadSpeechStart:
    TYPE: ClassVar[str] = "vad_speech_start"

    probability: float

    @classmethod
    def from_payload(cls, data: dict) -> VadSpeechStart:
        return cls(probability=_probability(data))


@dataclass(frozen=True)
class VadSpeechEnd:
    TYPE: ClassVar[str] = "vad_speech_end"

    probability: float

    @classmethod
    def from_payload(cls, data: dict) -> VadSpeechEnd:
        return cls(probability=_probability(data))


@dataclass(frozen=True)
class ServerError:
    TYPE: ClassVar[str] = "error"

    text: str

    @classmethod
    def from_payload(cls, data: dict) -> ServerError:
        return cls(text=_str(data, "text"))


@dataclass(frozen=True)
class SessionSwitched:
    TYPE: ClassVar[str] = "session_switched"

    key: str

    @classmethod
    def from_payload(cls, data: dict) -> SessionSwitched:
        return cls(key=_str(data, "key"))


@dataclass(frozen=True)
class SessionUpdated:
    TYPE: ClassVar[str] = "session_updated"

    key: str

    @classmethod
    def from_payload(cls, data: dict) -> SessionUpdated:
        return cls(key=_str(data, "key"))


@dataclass(frozen=True)
class SessionDeleted:
    TYPE: ClassVar[str] = "session_deleted"

    key: str

    @classmethod
    def from_payload(cls, data: dict) -> SessionDeleted:
        return cls(key=_str(data, "key"))


@dataclass(frozen=True)
class SessionInit:
    TYPE: ClassVar[str] = "session_init"

    current: str

    @classmethod
    def from_payload(cls, data: dict) -> SessionInit:
        return cls(current=_str(data, "current"))


@dataclass(frozen=True)
class ChannelSwitched:
    TYPE: ClassVar[str] = "channel_switched"

    channel: ChannelType
    session_key: str | None = None

    @classmethod
    def from_payload(cls, data: dict) -> ChannelSwitched:
        return cls(
            channel=ChannelType(_str(data, "channel")),
            session_key=_opt_str(data, "session_key"),
        )


@dataclass(frozen=True)
class CommandTip:
    TYPE: ClassVar[str] = "command_tip"

    role: str
    text: str

    @classmethod
    def from_payload(cls, data: dict) -> CommandTip:
        role = _str(data, "role")
        if role not in ("user", "assistant"):
            raise ValueError(f"unknown tip role: {role}")
        return cls(role=role, text=_str(data, "text"))


@dataclass(frozen=True)
class TaskStarted:
    TYPE: ClassVar[str] = "task_started"

    task_id: str
    description: str = ""

    @classmethod
    def from_payload(cls, data: dict) -> TaskStarted:
        return cls(
            task_id=_str(data, "task_id"),
            description=_opt_str(data, "description") or "",
        )


@dataclass(frozen=True)
class TaskCompleted:
    TYPE: ClassVar[str] = "task_completed"

    task_id: str
    session_key: str | None = None
    status: str = "completed"

    @classmethod
    def from_payload(cls, data: dict) -> TaskCompleted:
        return cls(
            task_id=_str(data, "task_id"),
            session_key=_opt_str(data, "session_key"),
            status=_opt_str(data, "status") or "completed",
        )


@dataclass(frozen=True)
class TaskCompletedOtherSession:
    TYPE: ClassVar[str] = "task_completed_other_session"

    task_id: str
    session_key: str | None = None
    status: str = "completed"

    @classmethod
    def from_payload(cls, data: dict) -> TaskCompletedOtherSession:
        return cls(
            task_id=_str(data, "task_id"),
            session_key=_opt_str(data, "session_key"),
            status=_opt_str(data, "status") or "completed",
        )


InboundEnvelope = Union[
    StateChanged,
    UserText,
    AssistantText,
    AssistantChunk,
    VadStatus,
    VadSpeechStart,
    VadSpeechEnd,
    ServerError,
    SessionSwitched,
    SessionUpdated,
    SessionDeleted,
    SessionInit,
    ChannelSwitched,
    CommandTip,
    TaskStarted,
    TaskCompleted,
    TaskCompletedOtherSession,
]

INBOUND_TYPES: dict[str, Any] = {
    cls.TYPE: cls
    for cls in (
        StateChanged,
        UserText,
        AssistantText,
        AssistantChunk,
        VadStatus,
        VadSpeechStart,
        VadSpeechEnd,
        ServerError,
        SessionSwitched,
        SessionUpdated,
        SessionDeleted,
        SessionInit,
        ChannelSwitched,
        CommandTip,
        TaskStarted,
        TaskCompleted,
        TaskCompletedOtherSession,
    )
}


def parse_envelope(raw: str | bytes | dict) -> InboundEnvelope | None:
    """Parse one transport frame. Returns None for anything unusable."""
    if isinstance(raw, dict):
        data: Any = raw
    else:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            logger.debug("Discarding non-JSON frame")
            return None

    if not isinstance(data, dict):
        logger.debug("Discarding non-object frame")
        return None

    msg_type = data.get("type")
    envelope_cls = INBOUND_TYPES.get(msg_type) if isinstance(msg_type, str) else None
    if envelope_cls is None:
        logger.debug("Discarding unknown envelope type: %s", msg_type)
        return None

    try:
        return envelope_cls.from_payload(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.debug(
            "Discarding malformed %s envelope: %s",
            msg_type,
            e,
            extra={"event_type": msg_type},
        )
        return None


# ─── Outbound ─────────────────────────────────────────────────────


def ptt_start() -> dict:
    return {"type": "ptt_start"}


def ptt_stop() -> dict:
    return {"type": "ptt_stop"}


def set_mode(mode: InteractionMode | str) -> dict:
    return {"type": "set_mode", "mode": InteractionMode(mode).value}


def text_input(text: str) -> dict:
    return {"type": "text_input", "text": text}


def switch_session(key: str) -> dict:
    return {"type": "switch_session", "key": key}


def set_channel(channel: ChannelType | str) -> dict:
    return {"type": "set_channel", "channel": ChannelType(channel).value}


def cancel_command() -> dict:
    return {"type": "cancel_command"}
