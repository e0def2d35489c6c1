"""
Kiosk Logging — one line per event, tagged with the session it concerns.

Text lines carry a trailing ``(session_key=… channel=…)`` tag built from the
structured extras, coloured when writing to a terminal. JSON lines
(KIOSK_LOG_FORMAT=json) put the same extras at the top level.

The terminal front end owns the screen, so ``voicekiosk`` logs to a file by
default; setup_logging(log_file=None) falls back to stdout.

Structured extras (logger.info(..., extra={...})):
    session_key, channel, task_id, attempt, delay_ms, event_type
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO

CONTEXT_FIELDS = ("session_key", "channel", "task_id", "attempt", "delay_ms", "event_type")

_RESET = "\033[0m"
_DIM = "\033[2m"
_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}

# Chatty at INFO; reconnect storms would otherwise bury the kiosk's own lines
_QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "asyncio")


def context_of(record: logging.LogRecord) -> dict:
    """Structured extras present on ``record``, in CONTEXT_FIELDS order."""
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class ColorFormatter(logging.Formatter):
    """``HH:MM:SS [logger] LEVEL: message (key=value …)``, optionally coloured."""

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{_RESET}" if self.use_color and color else text

    def format(self, record: logging.LogRecord) -> str:
        level = self._paint(record.levelname, _LEVEL_COLORS.get(record.levelno, ""))
        name = self._paint(record.name, _DIM)
        line = f"{self.formatTime(record, self.datefmt)} [{name}] {level}: {record.getMessage()}"

        context = context_of(record)
        if context:
            tag = " ".join(f"{k}={v}" for k, v in context.items())
            line += " " + self._paint(f"({tag})", _DIM)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; extras such as session_key sit at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **context_of(record),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _wants_color(stream: IO[str] | None) -> bool:
    """KIOSK_LOG_COLOR=true/false, or auto: colour only a TTY stream, never a file."""
    setting = os.getenv("KIOSK_LOG_COLOR", "auto").lower()
    if setting in ("true", "false"):
        return setting == "true"
    return stream is not None and stream.isatty()


def setup_logging(log_file: str | None = None) -> None:
    """Configure the root logger once at startup.

    Env vars:
        KIOSK_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        KIOSK_LOG_COLOR  — true / false / auto (default: auto)
        KIOSK_LOG_FORMAT — text / json (default: text)
        KIOSK_LOG_FILE   — used when ``log_file`` is not given
    """
    level_name = os.getenv("KIOSK_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("KIOSK_LOG_FORMAT", "text").lower()
    log_file = log_file or os.getenv("KIOSK_LOG_FILE") or None

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        stream = None
    else:
        handler = logging.StreamHandler(sys.stdout)
        stream = sys.stdout

    if log_format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(ColorFormatter(use_color=_wants_color(stream)))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("voicekiosk").debug(
        "Logging to %s (level=%s, format=%s)", log_file or "stdout", level_name, log_format
    )
