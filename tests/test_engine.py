"""Tests for the session synchronization engine."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from voicekiosk.sync.engine import SessionSyncEngine
from voicekiosk.sync.models import ChatMessage
from voicekiosk.tasks.tracker import BackgroundTaskTracker
from voicekiosk.transport.envelopes import (
    ChannelType,
    InteractionMode,
    PipelineState,
    parse_envelope,
)


# ── Helpers ──────────────────────────────────────────────────────


class FakeHistory:
    """History collaborator; a key with a gate blocks until it is set."""

    def __init__(self, histories=None):
        self.histories = histories or {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []

    async def fetch_history(self, key):
        self.calls.append(key)
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        return self.histories.get(key, [])


def _engine(histories=None, **kwargs):
    sink = AsyncMock()
    sink.send = AsyncMock(return_value=True)
    history = FakeHistory(histories)
    engine = SessionSyncEngine(sink, history, **kwargs)
    return engine, sink, history


async def feed(engine, *payloads):
    for payload in payloads:
        await engine.handle(parse_envelope(payload))


def sent_types(sink):
    return [call.args[0]["type"] for call in sink.send.await_args_list]


# ── Mirroring ────────────────────────────────────────────────────


class TestStateMirror:
    @pytest.mark.asyncio
    async def test_state_follows_latest_event(self):
        engine, _, _ = _engine()
        await feed(
            engine,
            {"type": "state_changed", "state": "recording", "mode": "ptt"},
            {"type": "vad_status", "probability": 0.3},
            {"type": "user_text", "text": "hi"},
            {"type": "state_changed", "state": "thinking", "info": "calling tools"},
        )
        assert engine.state is PipelineState.THINKING
        assert engine.state_info == "calling tools"
        assert engine.mode is InteractionMode.PTT

    @pytest.mark.asyncio
    async def test_invalid_mode_keeps_previous(self):
        engine, _, _ = _engine()
        await feed(engine, {"type": "state_changed", "state": "idle", "mode": "natural"})
        await feed(engine, {"type": "state_changed", "state": "idle", "mode": "bogus"})
        assert engine.mode is InteractionMode.NATURAL

    @pytest.mark.asyncio
    async def test_set_mode_does_not_touch_mirror(self):
        engine, sink, _ = _engine()
        assert await engine.set_mode("natural") is True
        assert engine.mode is InteractionMode.PTT
        sink.send.assert_awaited_with({"type": "set_mode", "mode": "natural"})


class TestTranscript:
    @pytest.mark.asyncio
    async def test_session_init_then_turns(self):
        engine, _, history = _engine()
        await feed(
            engine,
            {"type": "session_init", "current": "voice:local"},
            {"type": "user_text", "text": "hi", "session_key": "voice:local"},
            {"type": "assistant_text", "text": "hello", "session_key": "voice:local"},
        )
        assert engine.history == [
            ChatMessage(role="user", text="hi"),
            ChatMessage(role="assistant", text="hello"),
        ]
        assert engine.subtitle == ""
        assert history.calls == ["voice:local"]

    @pytest.mark.asyncio
    async def test_chunks_build_subtitle_until_cleared(self):
        engine, _, _ = _engine()
        await feed(
            engine,
            {"type": "assistant_chunk", "text": "He", "done": False},
            {"type": "assistant_chunk", "text": "llo", "done": False},
            {"type": "assistant_chunk", "text": "", "done": True},
        )
        assert engine.subtitle == "Hello"

        await feed(engine, {"type": "assistant_text", "text": "Hello"})
        assert engine.subtitle == ""
        assert engine.history[-1] == ChatMessage(role="assistant", text="Hello")

    @pytest.mark.asyncio
    async def test_user_text_clears_subtitle(self):
        engine, _, _ = _engine()
        await feed(
            engine,
            {"type": "assistant_chunk", "text": "partial", "done": False},
            {"type": "user_text", "text": "interrupt"},
        )
        assert engine.subtitle == ""

    @pytest.mark.asyncio
    async def test_other_session_content_is_ignored(self):
        engine, _, _ = _engine(default_session_key="voice:mine")
        await feed(engine, {"type": "user_text", "text": "kept"})
        before = list(engine.history)

        await feed(
            engine,
            {"type": "user_text", "text": "x", "session_key": "voice:other"},
            {"type": "assistant_chunk", "text": "y", "done": False, "session_key": "voice:other"},
            {"type": "assistant_text", "text": "z", "session_key": "voice:other"},
        )
        assert engine.history == before
        assert engine.subtitle == ""

    @pytest.mark.asyncio
    async def test_server_error_is_marked_entry(self):
        engine, _, _ = _engine()
        await feed(engine, {"type": "error", "text": "STT unavailable"})
        assert engine.history == [
            ChatMessage(role="assistant", text="STT unavailable", is_error=True)
        ]

    @pytest.mark.asyncio
    async def test_unparseable_frames_never_reach_engine(self):
        engine, _, _ = _engine()
        await engine.handle(parse_envelope("{broken"))  # None → ignore arm
        assert engine.history == []


class TestVoiceActivity:
    @pytest.mark.asyncio
    async def test_status_updates_probability_only(self):
        engine, _, _ = _engine()
        await feed(engine, {"type": "vad_speech_start", "probability": 0.9})
        assert engine.vad.is_speech is True

        await feed(engine, {"type": "vad_status", "is_speech": False, "probability": 0.4})
        assert engine.vad.is_speech is True
        assert engine.vad.probability == 0.4

        await feed(engine, {"type": "vad_speech_end", "probability": 0.1})
        assert engine.vad.is_speech is False


# ── Sessions and channels ────────────────────────────────────────


class TestSessions:
    @pytest.mark.asyncio
    async def test_session_switched_reloads_history_and_notifies(self):
        saved = [ChatMessage(role="user", text="old question")]
        engine, _, _ = _engine({"voice:b": saved})
        notices = []

        async def on_session(kind, key):
            notices.append((kind, key))

        engine.on_session_event(on_session)
        await feed(engine, {"type": "user_text", "text": "from a"})
        await feed(engine, {"type": "session_switched", "key": "voice:b"})

        assert engine.session_key == "voice:b"
        assert engine.history == saved
        assert notices == [("switched", "voice:b")]

    @pytest.mark.asyncio
    async def test_updated_and_deleted_are_forwarded(self):
        engine, _, _ = _engine()
        notices = []

        async def on_session(kind, key):
            notices.append((kind, key))

        engine.on_session_event(on_session)
        await feed(
            engine,
            {"type": "session_updated", "key": "voice:a"},
            {"type": "session_deleted", "key": "voice:b"},
        )
        assert notices == [("updated", "voice:a"), ("deleted", "voice:b")]

    @pytest.mark.asyncio
    async def test_session_init_is_not_pushed_back(self):
        engine, sink, _ = _engine(default_session_key="voice:remembered")
        await feed(engine, {"type": "session_init", "current": "voice:server"})
        assert engine.session_key == "voice:server"
        sink.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_channel_switch_with_session(self):
        engine, _, history = _engine()
        await feed(
            engine,
            {"type": "channel_switched", "channel": "keyboard", "session_key": "voice:kb"},
        )
        assert engine.channel is ChannelType.KEYBOARD
        assert engine.session_key == "voice:kb"
        assert history.calls == ["voice:kb"]

    @pytest.mark.asyncio
    async def test_channel_switch_without_session_keeps_key(self):
        engine, _, history = _engine(default_session_key="voice:x")
        await feed(engine, {"type": "channel_switched", "channel": "keyboard"})
        assert engine.session_key == "voice:x"
        assert history.calls == []

    @pytest.mark.asyncio
    async def test_stale_history_is_discarded(self):
        engine, sink, history = _engine(
            {
                "voice:slow": [ChatMessage(role="user", text="slow")],
                "voice:fast": [ChatMessage(role="user", text="fast")],
            }
        )
        history.gates["voice:slow"] = asyncio.Event()

        slow = asyncio.create_task(engine.switch_session("voice:slow"))
        await asyncio.sleep(0)
        await engine.switch_session("voice:fast")
        history.gates["voice:slow"].set()
        await slow

        assert engine.session_key == "voice:fast"
        assert engine.history == [ChatMessage(role="user", text="fast")]
        assert sent_types(sink) == ["switch_session", "switch_session"]

    @pytest.mark.asyncio
    async def test_failed_history_keeps_empty_transcript(self):
        engine, _, history = _engine()
        history.fetch_history = AsyncMock(return_value=None)
        await feed(engine, {"type": "user_text", "text": "before"})
        await feed(engine, {"type": "session_switched", "key": "voice:gone"})
        assert engine.history == []

    @pytest.mark.asyncio
    async def test_session_callback_error_is_contained(self):
        engine, _, _ = _engine()
        engine.on_session_event(AsyncMock(side_effect=RuntimeError("bridge down")))
        await feed(engine, {"type": "session_switched", "key": "voice:b"})
        assert engine.session_key == "voice:b"


# ── Commands ─────────────────────────────────────────────────────


class TestCommands:
    @pytest.mark.asyncio
    async def test_command_surface(self):
        engine, sink, _ = _engine()
        await engine.start_capture()
        await engine.stop_capture()
        await engine.switch_channel("keyboard")
        await engine.cancel_command()
        assert sent_types(sink) == ["ptt_start", "ptt_stop", "set_channel", "cancel_command"]

    @pytest.mark.asyncio
    async def test_send_text_trims_and_skips_blank(self):
        engine, sink, _ = _engine()
        assert await engine.send_text("   ") is False
        assert await engine.send_text("  hello  ") is True
        sink.send.assert_awaited_once_with({"type": "text_input", "text": "hello"})

    @pytest.mark.asyncio
    async def test_invalid_mode_and_channel_are_not_sent(self):
        engine, sink, _ = _engine()
        assert await engine.set_mode("loud") is False
        assert await engine.switch_channel("smoke-signal") is False
        sink.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disposed_engine_sends_nothing(self):
        engine, sink, _ = _engine()
        engine.dispose()
        assert await engine.start_capture() is False
        sink.send.assert_not_awaited()


# ── Tips, toasts and tasks ───────────────────────────────────────


class TestCommandTips:
    @pytest.mark.asyncio
    async def test_tips_queue_and_idle_dismiss(self):
        engine, sink, _ = _engine(command_tip_idle=0.02)
        await feed(
            engine,
            {"type": "command_tip", "role": "user", "text": "open the garage"},
            {"type": "command_tip", "role": "assistant", "text": "Say 'cancel' to stop"},
        )
        assert [t.text for t in engine.command_tips] == [
            "open the garage",
            "Say 'cancel' to stop",
        ]

        await asyncio.sleep(0.08)
        assert engine.command_tips == []
        assert sent_types(sink) == ["cancel_command"]

    @pytest.mark.asyncio
    async def test_new_tip_restarts_idle_window(self):
        engine, _, _ = _engine(command_tip_idle=0.1)
        await feed(engine, {"type": "command_tip", "role": "user", "text": "one"})
        await asyncio.sleep(0.06)
        await feed(engine, {"type": "command_tip", "role": "assistant", "text": "two"})
        await asyncio.sleep(0.06)
        assert len(engine.command_tips) == 2

    @pytest.mark.asyncio
    async def test_dismiss_cancels_timer(self):
        engine, sink, _ = _engine(command_tip_idle=0.02)
        await feed(engine, {"type": "command_tip", "role": "user", "text": "one"})
        engine.dismiss_tips()
        await asyncio.sleep(0.05)
        assert engine.command_tips == []
        sink.send.assert_not_awaited()


class TestTasks:
    @pytest.mark.asyncio
    async def test_task_started_and_completed(self):
        tracker = BackgroundTaskTracker()
        engine, _, _ = _engine(tasks=tracker)
        await feed(engine, {"type": "task_started", "task_id": "t1", "description": "Research"})
        assert tracker.summary() == "1 background task running"

        await feed(engine, {"type": "task_completed", "task_id": "t1", "status": "completed"})
        assert tracker.tasks == []

    @pytest.mark.asyncio
    async def test_completion_elsewhere_shows_toast(self):
        engine, _, _ = _engine(toast_duration=0.02)
        await feed(
            engine,
            {"type": "task_started", "task_id": "t1", "description": "Book flights"},
            {
                "type": "task_completed_other_session",
                "task_id": "t1",
                "session_key": "voice:travel",
                "status": "completed",
            },
        )
        assert engine.toast == "Task finished in voice:travel: Book flights"
        assert engine.tasks.tasks == []

        await asyncio.sleep(0.06)
        assert engine.toast is None

    @pytest.mark.asyncio
    async def test_failed_unknown_task_toast(self):
        engine, _, _ = _engine()
        await feed(
            engine,
            {"type": "task_completed_other_session", "task_id": "t9", "status": "error"},
        )
        assert engine.toast == "Task failed in another session: t9"


# ── Listeners and disposal ───────────────────────────────────────


class TestListeners:
    @pytest.mark.asyncio
    async def test_change_fields(self):
        engine, _, _ = _engine()
        fields = []
        engine.on_change(fields.append)
        await engine.set_connected(True)
        await feed(
            engine,
            {"type": "state_changed", "state": "recording"},
            {"type": "assistant_chunk", "text": "a", "done": False},
        )
        assert fields == ["connected", "state", "subtitle"]

    @pytest.mark.asyncio
    async def test_final_text_announces_cleared_subtitle(self):
        engine, _, _ = _engine()
        await feed(engine, {"type": "assistant_chunk", "text": "Hel", "done": False})
        fields = []
        engine.on_change(fields.append)

        await feed(engine, {"type": "assistant_text", "text": "Hello"})
        assert fields == ["subtitle", "history"]

        fields.clear()
        await feed(engine, {"type": "user_text", "text": "thanks"})
        assert fields == ["history"]

    @pytest.mark.asyncio
    async def test_listener_error_is_contained(self):
        engine, _, _ = _engine()

        def bad(field):
            raise RuntimeError("render failed")

        engine.on_change(bad)
        await feed(engine, {"type": "user_text", "text": "hi"})
        assert len(engine.history) == 1

    @pytest.mark.asyncio
    async def test_disposed_engine_ignores_events(self):
        engine, _, _ = _engine(command_tip_idle=0.01)
        await feed(engine, {"type": "command_tip", "role": "user", "text": "one"})
        engine.dispose()
        await feed(engine, {"type": "user_text", "text": "late"})
        await asyncio.sleep(0.03)
        assert engine.history == []
        assert engine.alive is False
