"""Tests for the terminal front end's command handling."""

import argparse
import io
from unittest.mock import AsyncMock, MagicMock

import pytest
from rich.console import Console

from voicekiosk.cli import STATE_STYLE, KioskTUI, build_config
from voicekiosk.core.config import KioskConfig
from voicekiosk.transport.envelopes import InteractionMode, PipelineState


def _tui():
    client = MagicMock()
    client.engine.session_key = "voice:local"
    for name in (
        "send_text",
        "start_capture",
        "stop_capture",
        "set_mode",
        "switch_channel",
        "cancel_command",
    ):
        setattr(client.engine, name, AsyncMock(return_value=True))
    client.directory.refresh = AsyncMock(return_value=True)
    client.directory.select = AsyncMock(return_value=True)
    client.directory.create = AsyncMock(return_value="voice:new")
    client.directory.delete = AsyncMock(return_value=True)
    client.directory.options.return_value = []
    client.inspector.open = AsyncMock(return_value=True)
    client.inspector.abort = AsyncMock(return_value=True)
    client.inspector.task = None
    client.tasks.tasks = []

    out = io.StringIO()
    tui = KioskTUI(client, console=Console(file=out, width=120))
    return tui, client, out


class TestHandleLine:
    @pytest.mark.asyncio
    async def test_plain_text_is_sent(self):
        tui, client, _ = _tui()
        assert await tui.handle_line("  what's the weather ") is True
        client.engine.send_text.assert_awaited_once_with("what's the weather")

    @pytest.mark.asyncio
    async def test_blank_line_does_nothing(self):
        tui, client, _ = _tui()
        assert await tui.handle_line("   ") is True
        client.engine.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quit(self):
        tui, _, _ = _tui()
        assert await tui.handle_line("/quit") is False
        assert await tui.handle_line("/q") is False

    @pytest.mark.asyncio
    async def test_capture_and_mode_commands(self):
        tui, client, _ = _tui()
        await tui.handle_line("/ptt")
        await tui.handle_line("/stop")
        await tui.handle_line("/mode natural")
        await tui.handle_line("/channel keyboard")
        await tui.handle_line("/cancel")

        client.engine.start_capture.assert_awaited_once()
        client.engine.stop_capture.assert_awaited_once()
        client.engine.set_mode.assert_awaited_once_with("natural")
        client.engine.switch_channel.assert_awaited_once_with("keyboard")
        client.engine.cancel_command.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bad_mode_prints_usage(self):
        tui, client, out = _tui()
        client.engine.set_mode.return_value = False
        await tui.handle_line("/mode shout")
        assert "usage: /mode" in out.getvalue()

    @pytest.mark.asyncio
    async def test_session_commands(self):
        tui, client, _ = _tui()
        await tui.handle_line("/session voice:b")
        await tui.handle_line("/new groceries list")
        await tui.handle_line("/delete")
        await tui.handle_line("/sessions")

        client.directory.select.assert_awaited_once_with("voice:b")
        client.directory.create.assert_awaited_once_with("groceries list")
        client.directory.delete.assert_awaited_once_with("voice:local")
        client.directory.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_task_commands(self):
        tui, client, out = _tui()
        await tui.handle_line("/tasks")
        await tui.handle_line("/inspect t1")
        await tui.handle_line("/abort")

        client.inspector.open.assert_awaited_once_with("t1")
        client.inspector.abort.assert_awaited_once()
        assert "No background tasks" in out.getvalue()

    @pytest.mark.asyncio
    async def test_unknown_command(self):
        tui, _, out = _tui()
        assert await tui.handle_line("/dance") is True
        assert "unknown command" in out.getvalue()


def test_build_config_overrides():
    args = argparse.Namespace(
        ws_url="ws://kiosk:9000/ws", http_base=None, events_base="http://oc:4096"
    )
    cfg = build_config(args, KioskConfig())
    assert cfg.server.ws_url == "ws://kiosk:9000/ws"
    assert cfg.server.http_base == "http://localhost:8080"
    assert cfg.server.events_base == "http://oc:4096"


class TestRendering:
    def test_every_pipeline_state_has_a_style(self):
        assert set(STATE_STYLE) == set(PipelineState)

    def test_state_line_uses_state_value(self):
        tui, client, out = _tui()
        client.engine.state = PipelineState.THINKING
        client.engine.state_info = None
        client.engine.mode = InteractionMode.NATURAL
        tui._on_engine_change("state")
        assert "thinking" in out.getvalue()
        assert "natural" in out.getvalue()

    def test_subtitle_streams_new_text_then_ends_line(self):
        tui, client, out = _tui()
        client.engine.subtitle = "Hel"
        tui._on_engine_change("subtitle")
        client.engine.subtitle = "Hello"
        tui._on_engine_change("subtitle")
        assert out.getvalue() == "Hello"

        client.engine.subtitle = ""
        tui._on_engine_change("subtitle")
        assert out.getvalue() == "Hello\n"
