"""Tests for KioskClient — wiring of transport, engine, directory and tasks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from voicekiosk.app import KioskClient
from voicekiosk.core.config import KioskConfig
from voicekiosk.directory.models import DirectoryListing, SessionInfo
from voicekiosk.transport.channel import TransportChannel
from voicekiosk.transport.envelopes import parse_envelope


def _kiosk(sessions=("voice:local", "voice:b"), current="voice:local"):
    transport = MagicMock()
    transport.connect = AsyncMock()
    transport.close = AsyncMock()
    transport.send = AsyncMock(return_value=True)

    directory_client = MagicMock()
    directory_client.list_sessions = AsyncMock(
        return_value=DirectoryListing(
            sessions=[SessionInfo(key=k) for k in sessions], current=current
        )
    )
    directory_client.fetch_history = AsyncMock(return_value=[])
    directory_client.create_session = AsyncMock(return_value=None)
    directory_client.delete_session = AsyncMock(return_value=True)

    kiosk = KioskClient(
        KioskConfig(),
        transport=transport,
        directory_client=directory_client,
        task_client=MagicMock(),
        aggregator=MagicMock(),
    )
    return kiosk, transport, directory_client


def _envelope_handler(transport):
    return transport.on_envelope.call_args.args[0]


class TestWiring:
    def test_transport_feeds_engine(self):
        kiosk, transport, _ = _kiosk()
        transport.on_envelope.assert_called_once_with(kiosk.engine.handle)
        transport.on_connection_change.assert_called_once_with(kiosk.engine.set_connected)

    def test_default_components_follow_config(self):
        kiosk = KioskClient(KioskConfig())
        assert isinstance(kiosk.transport, TransportChannel)
        assert kiosk.transport.url == "ws://localhost:8080/ws"
        assert kiosk.aggregator.url == "http://localhost:8080/oc/event"
        assert kiosk.engine.session_key == "voice:local"
        assert kiosk.tasks.linger == 3.0

    @pytest.mark.asyncio
    async def test_server_delete_of_active_session_fails_over(self):
        kiosk, transport, directory_client = _kiosk()
        handle = _envelope_handler(transport)
        directory_client.list_sessions.return_value = DirectoryListing(
            sessions=[SessionInfo(key="voice:b")], current="voice:b"
        )

        await handle(parse_envelope({"type": "session_deleted", "key": "voice:local"}))

        assert kiosk.engine.session_key == "voice:b"
        transport.send.assert_awaited_with({"type": "switch_session", "key": "voice:b"})

    @pytest.mark.asyncio
    async def test_session_switch_refreshes_directory(self):
        kiosk, transport, directory_client = _kiosk()
        handle = _envelope_handler(transport)

        await handle(parse_envelope({"type": "session_switched", "key": "voice:b"}))

        directory_client.fetch_history.assert_awaited_with("voice:b")
        directory_client.list_sessions.assert_awaited()
        assert set(kiosk.directory.persisted) == {"voice:local", "voice:b"}

    @pytest.mark.asyncio
    async def test_create_goes_through_engine(self):
        kiosk, transport, _ = _kiosk()
        await kiosk.directory.create("groceries")
        assert kiosk.engine.session_key == "voice:groceries"
        transport.send.assert_any_await({"type": "switch_session", "key": "voice:groceries"})


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        kiosk, transport, directory_client = _kiosk()
        await kiosk.start()
        transport.connect.assert_awaited_once()
        directory_client.list_sessions.assert_awaited()

        await kiosk.stop()
        transport.close.assert_awaited_once()
        kiosk.aggregator.close.assert_called_once()
        assert not kiosk.engine.alive
        assert await kiosk.engine.start_capture() is False
