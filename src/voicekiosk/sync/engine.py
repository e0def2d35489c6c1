"""
Session Synchronization Engine — the client-side mirror of the pipeline.

The server owns the truth. The engine:
  - mirrors pipeline state and mode exactly as broadcast (never infers them)
  - keeps the transcript and subtitle of the *displayed* session only
  - follows the server on session/channel changes and reloads history
  - tracks VAD hints, command tips, toasts and background tasks
  - turns user intent into fire-and-forget command envelopes

Content-bearing envelopes (user_text, assistant_chunk, assistant_text)
carry an optional session key. They are applied only when the key is
absent or equal to the displayed session, so another client driving the
shared voice channel cannot leak turns into this transcript.

On (re)connect the server sends session_init; the engine adopts that key
verbatim instead of pushing its remembered key back.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Protocol

from voicekiosk.core.lifecycle import DisposalToken
from voicekiosk.sync.models import ChatMessage, TipMessage, VoiceActivity
from voicekiosk.tasks.tracker import BackgroundTaskTracker
from voicekiosk.transport import envelopes
from voicekiosk.transport.envelopes import (
    AssistantChunk,
    AssistantText,
    ChannelSwitched,
    ChannelType,
    CommandTip,
    InboundEnvelope,
    InteractionMode,
    PipelineState,
    ServerError,
    SessionDeleted,
    SessionInit,
    SessionSwitched,
    SessionUpdated,
    StateChanged,
    TaskCompleted,
    TaskCompletedOtherSession,
    TaskStarted,
    UserText,
    VadSpeechEnd,
    VadSpeechStart,
    VadStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "voice:local"
COMMAND_TIP_IDLE = 120.0  # seconds without a new tip before auto-dismiss
TOAST_DURATION = 4.0

# Callback for session lifecycle notices: (kind, key), kind in
# "switched" | "updated" | "deleted"
SessionEventCallback = Callable[[str, str], Awaitable[None]]


class CommandSink(Protocol):
    async def send(self, envelope: dict) -> bool: ...


class HistorySource(Protocol):
    async def fetch_history(self, key: str) -> list[ChatMessage] | None: ...


class SessionSyncEngine:
    """Mirror of the server-owned pipeline plus the command surface."""

    def __init__(
        self,
        transport: CommandSink,
        history_source: HistorySource,
        tasks: BackgroundTaskTracker | None = None,
        default_session_key: str = DEFAULT_SESSION_KEY,
        command_tip_idle: float = COMMAND_TIP_IDLE,
        toast_duration: float = TOAST_DURATION,
    ) -> None:
        self._transport = transport
        self._history_source = history_source
        self.tasks = tasks or BackgroundTaskTracker()
        self.command_tip_idle = command_tip_idle
        self.toast_duration = toast_duration
        self._token = DisposalToken("sync-engine")

        # Mirror
        self.state = PipelineState.IDLE
        self.mode = InteractionMode.PTT
        self.state_info: str | None = None
        self.session_key = default_session_key
        self.channel = ChannelType.VOICE
        self.subtitle = ""
        self.history: list[ChatMessage] = []
        self.vad = VoiceActivity()
        self.connected = False
        self.command_tips: list[TipMessage] = []
        self.toast: str | None = None

        self._tip_timer = None
        self._toast_timer = None
        self._listeners: list[Callable[[str], None]] = []
        self._session_callbacks: list[SessionEventCallback] = []

    # ─── Registration ─────────────────────────────────────────────

    def on_change(self, callback: Callable[[str], None]) -> None:
        """Register a listener told the name of each mirror field that changed."""
        self._listeners.append(callback)

    def on_session_event(self, callback: SessionEventCallback) -> None:
        """Register the directory bridge (or anyone) for session notices."""
        self._session_callbacks.append(callback)

    @property
    def alive(self) -> bool:
        return self._token.alive

    def dispose(self) -> None:
        """Stop reacting to anything. Pending timers are cancelled."""
        if self._token.dispose():
            self._tip_timer = None
            self._toast_timer = None
            logger.info("Sync engine disposed")

    # ─── Inbound ──────────────────────────────────────────────────

    async def set_connected(self, connected: bool) -> None:
        """Transport connectivity indicator."""
        if not self._token.alive or self.connected == connected:
            return
        self.connected = connected
        self._emit("connected")

    async def handle(self, envelope: InboundEnvelope) -> None:
        """Apply one inbound envelope. Called strictly in arrival order."""
        if not self._token.alive:
            return

        if isinstance(envelope, StateChanged):
            self._on_state_changed(envelope)
        elif isinstance(envelope, UserText):
            self._on_user_text(envelope)
        elif isinstance(envelope, AssistantChunk):
            self._on_assistant_chunk(envelope)
        elif isinstance(envelope, AssistantText):
            self._on_assistant_text(envelope)
        elif isinstance(envelope, ServerError):
            self._append(ChatMessage(role="assistant", text=envelope.text, is_error=True))
        elif isinstance(envelope, SessionInit):
            logger.info(
                "Server session on connect: %s",
                envelope.current,
                extra={"session_key": envelope.current},
            )
            await self._adopt_session(envelope.current)
            await self._notify_session("switched", envelope.current)
        elif isinstance(envelope, SessionSwitched):
            await self._adopt_session(envelope.key)
            await self._notify_session("switched", envelope.key)
        elif isinstance(envelope, ChannelSwitched):
            await self._on_channel_switched(envelope)
        elif isinstance(envelope, SessionUpdated):
            await self._notify_session("updated", envelope.key)
        elif isinstance(envelope, SessionDeleted):
            await self._notify_session("deleted", envelope.key)
        elif isinstance(envelope, CommandTip):
            self._on_command_tip(envelope)
        elif isinstance(envelope, VadSpeechStart):
            self._set_vad(VoiceActivity(is_speech=True, probability=envelope.probability))
        elif isinstance(envelope, VadSpeechEnd):
            self._set_vad(VoiceActivity(is_speech=False, probability=envelope.probability))
        elif isinstance(envelope, VadStatus):
            # Probability only; the speech flag follows start/end events
            self._set_vad(
                VoiceActivity(is_speech=self.vad.is_speech, probability=envelope.probability)
            )
        elif isinstance(envelope, TaskStarted):
            self.tasks.start(envelope.task_id, envelope.description, started_at=time.time())
            self._emit("tasks")
        elif isinstance(envelope, TaskCompletedOtherSession):
            self._on_task_completed_elsewhere(envelope)
        elif isinstance(envelope, TaskCompleted):
            self.tasks.finish(envelope.task_id, envelope.status)
            self._emit("tasks")
        else:
            logger.debug("Ignoring envelope: %s", type(envelope).__name__)

    def _is_displayed(self, session_key: str | None) -> bool:
        return session_key is None or session_key == self.session_key

    def _on_state_changed(self, ev: StateChanged) -> None:
        self.state = ev.state
        self.state_info = ev.info
        if ev.mode in (InteractionMode.PTT.value, InteractionMode.NATURAL.value):
            self.mode = InteractionMode(ev.mode)
        self._emit("state")

    def _on_user_text(self, ev: UserText) -> None:
        if not self._is_displayed(ev.session_key):
            logger.debug("Skipping user_text for %s", ev.session_key)
            return
        self._clear_subtitle()
        self._append(ChatMessage(role="user", text=ev.text))

    def _on_assistant_chunk(self, ev: AssistantChunk) -> None:
        if ev.done or not self._is_displayed(ev.session_key):
            return
        self.subtitle += ev.text
        self._emit("subtitle")

    def _on_assistant_text(self, ev: AssistantText) -> None:
        if not self._is_displayed(ev.session_key):
            logger.debug("Skipping assistant_text for %s", ev.session_key)
            return
        self._clear_subtitle()
        self._append(ChatMessage(role="assistant", text=ev.text))

    def _clear_subtitle(self) -> None:
        if self.subtitle:
            self.subtitle = ""
            self._emit("subtitle")

    async def _on_channel_switched(self, ev: ChannelSwitched) -> None:
        self.channel = ev.channel
        logger.info("Channel: %s", ev.channel.value, extra={"channel": ev.channel.value})
        self._emit("channel")
        if ev.session_key:
            await self._adopt_session(ev.session_key)
            await self._notify_session("switched", ev.session_key)

    def _on_command_tip(self, ev: CommandTip) -> None:
        self.command_tips.append(TipMessage(role=ev.role, text=ev.text))
        self._token.cancel(self._tip_timer)
        self._tip_timer = self._token.call_later(self.command_tip_idle, self._on_tip_idle)
        self._emit("command_tips")

    def _on_tip_idle(self) -> None:
        self._tip_timer = None
        logger.debug("Command tip idle, dismissing")
        self._token.spawn(self.cancel_command())

    def _on_task_completed_elsewhere(self, ev: TaskCompletedOtherSession) -> None:
        known = self.tasks.get(ev.task_id)
        self.tasks.finish(ev.task_id, ev.status)
        self._emit("tasks")

        label = known.description if known and known.description else ev.task_id
        where = ev.session_key or "another session"
        verb = "failed" if ev.status == "error" else "finished"
        self._show_toast(f"Task {verb} in {where}: {label}")

    def _set_vad(self, vad: VoiceActivity) -> None:
        self.vad = vad
        self._emit("vad")

    def _append(self, message: ChatMessage) -> None:
        self.history.append(message)
        self._emit("history")

    # ─── Sessions ─────────────────────────────────────────────────

    async def _adopt_session(self, key: str) -> None:
        """Make ``key`` the displayed session and reload its transcript."""
        self.session_key = key
        self.history = []
        self.subtitle = ""
        logger.info("Session: %s", key, extra={"session_key": key})
        self._emit("session")
        await self._load_history(key)

    async def _load_history(self, key: str) -> None:
        history = await self._history_source.fetch_history(key)
        if not self._token.alive or key != self.session_key:
            return  # switched away while loading
        if history is None:
            return
        self.history = list(history)
        self._emit("history")

    async def _notify_session(self, kind: str, key: str) -> None:
        for callback in list(self._session_callbacks):
            if not self._token.alive:
                return
            try:
                await callback(kind, key)
            except Exception as e:
                logger.error("Error in session callback (%s): %s", kind, e, exc_info=True)

    # ─── Commands ─────────────────────────────────────────────────

    async def _send(self, envelope: dict) -> bool:
        if not self._token.alive:
            return False
        return await self._transport.send(envelope)

    async def start_capture(self) -> bool:
        return await self._send(envelopes.ptt_start())

    async def stop_capture(self) -> bool:
        return await self._send(envelopes.ptt_stop())

    async def set_mode(self, mode: InteractionMode | str) -> bool:
        """Ask for a mode change; the mirror changes when the server echoes it."""
        try:
            envelope = envelopes.set_mode(mode)
        except ValueError:
            logger.warning("Unknown interaction mode: %s", mode)
            return False
        return await self._send(envelope)

    async def send_text(self, text: str) -> bool:
        text = text.strip()
        if not text:
            return False
        return await self._send(envelopes.text_input(text))

    async def switch_session(self, key: str) -> bool:
        """Switch the displayed session now and tell the server."""
        if not self._token.alive or not key:
            return False
        sent = await self._send(envelopes.switch_session(key))
        await self._adopt_session(key)
        return sent

    async def switch_channel(self, channel: ChannelType | str) -> bool:
        try:
            envelope = envelopes.set_channel(channel)
        except ValueError:
            logger.warning("Unknown channel: %s", channel)
            return False
        return await self._send(envelope)

    async def cancel_command(self) -> bool:
        """Cancel the in-flight command and dismiss its tips."""
        sent = await self._send(envelopes.cancel_command())
        self.dismiss_tips()
        return sent

    def dismiss_tips(self) -> None:
        self._token.cancel(self._tip_timer)
        self._tip_timer = None
        if self.command_tips:
            self.command_tips = []
            self._emit("command_tips")

    # ─── Toast ────────────────────────────────────────────────────

    def _show_toast(self, text: str) -> None:
        self.toast = text
        self._token.cancel(self._toast_timer)
        self._toast_timer = self._token.call_later(self.toast_duration, self._clear_toast)
        self._emit("toast")

    def _clear_toast(self) -> None:
        self._toast_timer = None
        self.toast = None
        self._emit("toast")

    # ─── Listeners ────────────────────────────────────────────────

    def _emit(self, field: str) -> None:
        if not self._token.alive:
            return
        for callback in list(self._listeners):
            try:
                callback(field)
            except Exception as e:
                logger.error("Error in engine listener (%s): %s", field, e, exc_info=True)
