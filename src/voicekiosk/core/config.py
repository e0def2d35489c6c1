"""
Kiosk Configuration — single source of truth for all client settings.

Reads from environment variables with sensible defaults.
No config files, no YAML. Just env vars (and an optional .env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class ServerConfig:
    """Where the pipeline server and its collaborators live."""

    ws_url: str = "ws://localhost:8080/ws"
    http_base: str = "http://localhost:8080"
    # Serves /oc/event, /oc/tasks and /oc/session/{id}/...
    events_base: str = "http://localhost:8080"
    http_timeout: float = 10.0
    ws_send_timeout: float = 5.0

    @classmethod
    def from_env(cls) -> ServerConfig:
        return cls(
            ws_url=os.getenv("KIOSK_WS_URL", "ws://localhost:8080/ws"),
            http_base=os.getenv("KIOSK_HTTP_BASE", "http://localhost:8080"),
            events_base=os.getenv("KIOSK_EVENTS_BASE", "http://localhost:8080"),
            http_timeout=float(os.getenv("KIOSK_HTTP_TIMEOUT", "10.0")),
            ws_send_timeout=float(os.getenv("KIOSK_WS_SEND_TIMEOUT", "5.0")),
        )


@dataclass(frozen=True)
class ReconnectConfig:
    """Backoff settings for the transport and the secondary event stream."""

    base_delay: float = 1.0  # seconds, doubles each attempt
    max_delay: float = 30.0
    events_base_delay: float = 0.5
    events_max_delay: float = 10.0

    @classmethod
    def from_env(cls) -> ReconnectConfig:
        return cls(
            base_delay=float(os.getenv("KIOSK_RECONNECT_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("KIOSK_RECONNECT_MAX_DELAY", "30.0")),
            events_base_delay=float(os.getenv("KIOSK_EVENTS_BASE_DELAY", "0.5")),
            events_max_delay=float(os.getenv("KIOSK_EVENTS_MAX_DELAY", "10.0")),
        )


@dataclass(frozen=True)
class SessionConfig:
    """Session addressing defaults."""

    default_key: str = "voice:local"
    key_prefix: str = "voice:"
    directory_refresh_interval: float = 30.0

    @classmethod
    def from_env(cls) -> SessionConfig:
        return cls(
            default_key=os.getenv("KIOSK_DEFAULT_SESSION", "voice:local"),
            key_prefix=os.getenv("KIOSK_SESSION_PREFIX", "voice:"),
            directory_refresh_interval=float(
                os.getenv("KIOSK_DIRECTORY_REFRESH_INTERVAL", "30.0")
            ),
        )


@dataclass(frozen=True)
class UIConfig:
    """Display windows and polling cadences."""

    command_tip_idle: float = 120.0
    toast_duration: float = 4.0
    task_linger: float = 3.0
    task_poll_interval: float = 5.0
    todo_poll_interval: float = 3.0

    @classmethod
    def from_env(cls) -> UIConfig:
        return cls(
            command_tip_idle=float(os.getenv("KIOSK_COMMAND_TIP_IDLE", "120.0")),
            toast_duration=float(os.getenv("KIOSK_TOAST_DURATION", "4.0")),
            task_linger=float(os.getenv("KIOSK_TASK_LINGER", "3.0")),
            task_poll_interval=float(os.getenv("KIOSK_TASK_POLL_INTERVAL", "5.0")),
            todo_poll_interval=float(os.getenv("KIOSK_TODO_POLL_INTERVAL", "3.0")),
        )


@dataclass(frozen=True)
class KioskConfig:
    """Root configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    ui: UIConfig = field(default_factory=UIConfig)

    @classmethod
    def from_env(cls) -> KioskConfig:
        return cls(
            server=ServerConfig.from_env(),
            reconnect=ReconnectConfig.from_env(),
            session=SessionConfig.from_env(),
            ui=UIConfig.from_env(),
        )


# Loaded once at import; pass a KioskConfig explicitly to override
config = KioskConfig.from_env()
