"""
KioskClient — wires the synchronization core together.

    TransportChannel ──envelopes──▶ SessionSyncEngine ──session notices──▶ SessionDirectoryBridge
                                          │
                                          └── BackgroundTaskTracker ◀── TaskInspector ──▶ IncrementalEventAggregator

The transport and the event aggregator each own their connection; the
only state handed across is the engine's session key and channel, read
through small getters.
"""

from __future__ import annotations

import logging

from voicekiosk.core.config import KioskConfig, config as default_config
from voicekiosk.directory.bridge import SessionDirectoryBridge
from voicekiosk.directory.client import SessionDirectoryClient
from voicekiosk.events.aggregator import IncrementalEventAggregator
from voicekiosk.sync.engine import SessionSyncEngine
from voicekiosk.tasks.client import TaskClient
from voicekiosk.tasks.detail import TaskInspector
from voicekiosk.tasks.tracker import BackgroundTaskTracker
from voicekiosk.transport.channel import TransportChannel

logger = logging.getLogger(__name__)


class KioskClient:
    """One kiosk's worth of client runtime."""

    def __init__(
        self,
        cfg: KioskConfig | None = None,
        transport: TransportChannel | None = None,
        directory_client: SessionDirectoryClient | None = None,
        task_client: TaskClient | None = None,
        aggregator: IncrementalEventAggregator | None = None,
    ) -> None:
        cfg = cfg or default_config
        self.config = cfg

        self.transport = transport or TransportChannel(
            cfg.server.ws_url,
            base_delay=cfg.reconnect.base_delay,
            max_delay=cfg.reconnect.max_delay,
            send_timeout=cfg.server.ws_send_timeout,
        )
        self.directory_client = directory_client or SessionDirectoryClient(
            cfg.server.http_base, timeout=cfg.server.http_timeout
        )
        self.task_client = task_client or TaskClient(
            cfg.server.events_base, timeout=cfg.server.http_timeout
        )

        self.tasks = BackgroundTaskTracker(linger=cfg.ui.task_linger)
        self.engine = SessionSyncEngine(
            self.transport,
            self.directory_client,
            self.tasks,
            default_session_key=cfg.session.default_key,
            command_tip_idle=cfg.ui.command_tip_idle,
            toast_duration=cfg.ui.toast_duration,
        )
        self.transport.on_envelope(self.engine.handle)
        self.transport.on_connection_change(self.engine.set_connected)

        self.directory = SessionDirectoryBridge(
            self.directory_client,
            switch=self.engine.switch_session,
            current_key=lambda: self.engine.session_key,
            channel=lambda: self.engine.channel,
            key_prefix=cfg.session.key_prefix,
            refresh_interval=cfg.session.directory_refresh_interval,
        )
        self.engine.on_session_event(self.directory.handle_session_event)

        self.aggregator = aggregator or IncrementalEventAggregator(
            f"{cfg.server.events_base.rstrip('/')}/oc/event",
            base_delay=cfg.reconnect.events_base_delay,
            max_delay=cfg.reconnect.events_max_delay,
        )
        self.inspector = TaskInspector(
            self.tasks,
            self.task_client,
            self.aggregator,
            task_poll_interval=cfg.ui.task_poll_interval,
            todo_poll_interval=cfg.ui.todo_poll_interval,
        )

    async def start(self) -> None:
        await self.transport.connect()
        await self.directory.refresh()
        self.directory.start_auto_refresh()
        logger.info("Kiosk client started")

    async def stop(self) -> None:
        self.inspector.close()
        self.aggregator.close()
        self.directory.dispose()
        self.engine.dispose()
        self.tasks.dispose()
        await self.transport.close()
        logger.info("Kiosk client stopped")
