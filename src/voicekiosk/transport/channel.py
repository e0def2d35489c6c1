"""
Transport Channel — the one realtime duplex connection to the pipeline.

The channel:
  1. Opens a WebSocket to a fixed URL
  2. Parses every inbound frame into a typed envelope (bad frames dropped)
  3. Hands envelopes to the registered callback strictly in arrival order
  4. Reconnects forever with exponential backoff after every close
  5. Sends outbound envelopes only while the socket is open

It does NOT interpret envelopes. That's the sync engine's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.protocol import State

from voicekiosk.core.lifecycle import Backoff, DisposalToken
from voicekiosk.transport.envelopes import InboundEnvelope, parse_envelope

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 5.0  # seconds


class TransportChannel:
    """
    Reconnecting WebSocket client.

    Reconnect delay after the n-th consecutive close is
    ``min(base_delay * 2**n, max_delay)``; the counter resets on every
    successful open. There is no retry limit.
    """

    name = "websocket"

    def __init__(
        self,
        url: str,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        connect: Callable[[str], Awaitable[Any]] = ws_connect,
    ) -> None:
        self.url = url
        self.send_timeout = send_timeout
        self._connect = connect
        self._backoff = Backoff(base_delay, max_delay)
        self._token = DisposalToken("transport")
        self._ws: Any = None
        self._runner: asyncio.Task | None = None

        self._envelope_callback: Optional[
            Callable[[InboundEnvelope], Awaitable[None]]
        ] = None
        self._connection_callback: Optional[Callable[[bool], Awaitable[None]]] = None

    # ─── Callback Registration ────────────────────────────────────

    def on_envelope(self, callback: Callable[[InboundEnvelope], Awaitable[None]]) -> None:
        """Set the callback that receives every parsed inbound envelope."""
        self._envelope_callback = callback

    def on_connection_change(self, callback: Callable[[bool], Awaitable[None]]) -> None:
        """Set the callback told about open (True) and close (False)."""
        self._connection_callback = callback

    # ─── State ────────────────────────────────────────────────────

    @property
    def connected(self) -> bool:
        ws = self._ws
        return ws is not None and ws.state is State.OPEN

    @property
    def attempt(self) -> int:
        """Consecutive closes since the last successful open."""
        return self._backoff.attempt

    @property
    def is_running(self) -> bool:
        return self._runner is not None and self._token.alive

    # ─── Lifecycle ────────────────────────────────────────────────

    async def connect(self) -> None:
        """Start the connect/receive/reconnect loop in the background."""
        if self._runner is not None or not self._token.alive:
            return
        self._runner = self._token.spawn(self._run())
        logger.info("Transport started: %s", self.url)

    async def close(self) -> None:
        """Tear down: cancel any pending reconnect and close the socket once."""
        ws = self._ws
        self._ws = None
        if not self._token.dispose():
            return
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("Transport close error: %s", e)
        logger.info("Transport stopped")

    # ─── Outbound ─────────────────────────────────────────────────

    async def send(self, envelope: dict) -> bool:
        """Send one envelope. No-op (returns False) unless the socket is open."""
        if not self._token.alive or not self.connected:
            logger.debug("Transport not open, dropping %s", envelope.get("type"))
            return False

        payload = json.dumps(envelope)
        logger.debug("→ WS OUT: %s", payload[:200])
        try:
            await asyncio.wait_for(self._ws.send(payload), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("WebSocket send timeout")
        except Exception as e:
            logger.debug("WebSocket send skipped: %s", e)
        return False

    # ─── Connection Loop ──────────────────────────────────────────

    async def _run(self) -> None:
        while self._token.alive:
            ws = None
            try:
                ws = await self._connect(self.url)
                if not self._token.alive:
                    await ws.close()
                    return
                self._ws = ws
                self._backoff.reset()
                logger.info("WS connected: %s", self.url)
                await self._notify_connection(True)
                await self._receive_loop(ws)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.info("WS connection lost: %s", e)
            finally:
                if ws is not None and self._ws is ws:
                    self._ws = None
                    try:
                        await ws.close()
                    except Exception as e:
                        logger.debug("WS close error: %s", e)
                    if self._token.alive:
                        await self._notify_connection(False)

            if not self._token.alive:
                return

            attempt = self._backoff.attempt
            delay = self._backoff.next_delay()
            logger.info(
                "WS reconnect in %.1fs (attempt %d)",
                delay,
                attempt + 1,
                extra={"attempt": attempt, "delay_ms": int(delay * 1000)},
            )
            await asyncio.sleep(delay)

    async def _receive_loop(self, ws: Any) -> None:
        async for raw in ws:
            if not self._token.alive:
                return
            if isinstance(raw, str):
                logger.debug("← WS IN: %s", raw[:200])
            envelope = parse_envelope(raw)
            if envelope is None:
                continue
            await self._notify_envelope(envelope)

    # ─── Helpers ──────────────────────────────────────────────────

    async def _notify_envelope(self, envelope: InboundEnvelope) -> None:
        if self._envelope_callback and self._token.alive:
            try:
                await self._envelope_callback(envelope)
            except Exception as e:
                logger.error(
                    "Error handling %s envelope: %s",
                    envelope.TYPE,
                    e,
                    exc_info=True,
                )

    async def _notify_connection(self, connected: bool) -> None:
        if self._connection_callback and self._token.alive:
            try:
                await self._connection_callback(connected)
            except Exception as e:
                logger.error("Error in connection callback: %s", e, exc_info=True)

    def __repr__(self) -> str:
        return f"<TransportChannel(url={self.url!r}, connected={self.connected})>"
