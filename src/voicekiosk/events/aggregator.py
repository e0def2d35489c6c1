"""
Incremental Event Aggregator — rebuilds assistant messages from the
secondary event stream of one task session.

Two layers:

MessageAssembler
    Pure state machine. ``apply(payload)`` takes one decoded event and
    folds it into the message list:
      - message.part.updated → upsert the part snapshot (in place if known)
      - message.part.delta   → append text to a known text/reasoning part
      - message.updated      → informational, no effect
      - anything else        → ignored
    Events tagged with another session id are ignored.

IncrementalEventAggregator
    Owns the SSE subscription. Every subscribe() resets the assembler and
    starts a fresh connection loop guarded by its own DisposalToken, so
    nothing from a previous session can leak in. Reconnects forever with
    exponential backoff; failures only show as ``connected == False``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import httpx

from voicekiosk.core.lifecycle import Backoff, DisposalToken
from voicekiosk.events.models import AssembledMessage, part_from_snapshot
from voicekiosk.events.sse import iter_sse_data

logger = logging.getLogger(__name__)

PART_UPDATED = "message.part.updated"
PART_DELTA = "message.part.delta"
MESSAGE_UPDATED = "message.updated"


def _event_session_id(props: dict) -> str | None:
    """Session id of an event, wherever the source put it."""
    for holder in (props, props.get("part"), props.get("info")):
        if isinstance(holder, dict):
            sid = holder.get("sessionID")
            if isinstance(sid, str) and sid:
                return sid
    return None


class MessageAssembler:
    """Folds snapshot and delta events into ordered assistant messages."""

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id
        self.messages: list[AssembledMessage] = []
        self._by_id: dict[str, AssembledMessage] = {}

    def reset(self, session_id: str | None) -> None:
        self.session_id = session_id
        self.messages = []
        self._by_id = {}

    def apply(self, payload: dict) -> bool:
        """Apply one decoded event. Returns True if the message list changed."""
        props = payload.get("properties")
        if not isinstance(props, dict):
            return False

        sid = _event_session_id(props)
        if sid is not None and sid != self.session_id:
            return False

        event_type = payload.get("type")
        if event_type == PART_UPDATED:
            part = props.get("part")
            return self._apply_snapshot(part) if isinstance(part, dict) else False
        if event_type == PART_DELTA:
            return self._apply_delta(props)
        if event_type == MESSAGE_UPDATED:
            logger.debug("Message metadata update: %s", props.get("info"))
            return False
        return False

    def _apply_snapshot(self, snapshot: dict) -> bool:
        message_id = snapshot.get("messageID")
        if not isinstance(message_id, str) or not message_id:
            return False
        part = part_from_snapshot(snapshot)
        if part is None:
            return False

        # A part id lives in exactly one message
        owner = self._find_part(part.part_id)
        if owner is not None:
            message, idx = owner
            message.replace_at(idx, part)
            return True

        message = self._by_id.get(message_id)
        if message is None:
            message = AssembledMessage(message_id=message_id)
            self._by_id[message_id] = message
            self.messages.append(message)
        message.upsert(part)
        return True

    def _apply_delta(self, props: dict) -> bool:
        part_id = props.get("partID")
        delta = props.get("delta")
        text = delta.get("text") if isinstance(delta, dict) else None
        if not isinstance(part_id, str) or not isinstance(text, str) or not text:
            return False

        found = self._find_part(part_id)
        if found is None:
            logger.debug("Dropping delta for unknown part %s", part_id)
            return False

        message, idx = found
        part = message.parts[idx]
        if not part.text_bearing:
            return False
        message.replace_at(idx, part.with_text_appended(text))
        return True

    def _find_part(self, part_id: str) -> tuple[AssembledMessage, int] | None:
        # Newest first: deltas almost always target the latest message
        for message in reversed(self.messages):
            idx = message.index_of(part_id)
            if idx is not None:
                return message, idx
        return None


class IncrementalEventAggregator:
    """
    Subscribes to the event source for one session at a time.

    Usage:
        aggregator = IncrementalEventAggregator("http://kiosk:8080/oc/event")
        aggregator.on_change(render)
        aggregator.subscribe("ses_123")
        ...
        aggregator.close()
    """

    def __init__(
        self,
        url: str,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
        connect_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._timeout = httpx.Timeout(None, connect=connect_timeout)
        self._transport = transport
        self.assembler = MessageAssembler()
        self.connected = False
        self._token: DisposalToken | None = None
        self._closed = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def session_id(self) -> str | None:
        return self.assembler.session_id

    @property
    def messages(self) -> list[AssembledMessage]:
        return self.assembler.messages

    def on_change(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    # ─── Subscription ─────────────────────────────────────────────

    def subscribe(self, session_id: str) -> None:
        """(Re)subscribe to ``session_id``. Clears everything seen so far."""
        if self._closed:
            return
        self.unsubscribe()
        self.assembler.reset(session_id)
        token = DisposalToken(f"events:{session_id}")
        self._token = token
        token.spawn(self._run(token))
        logger.info("Event stream subscribed: %s", session_id)
        self._notify()

    def unsubscribe(self) -> None:
        if self._token is None:
            return
        self._token.dispose()
        self._token = None
        self.connected = False
        self.assembler.reset(None)
        self._notify()

    def close(self) -> None:
        self.unsubscribe()
        self._closed = True
        self._listeners.clear()

    # ─── Stream loop ──────────────────────────────────────────────

    async def _run(self, token: DisposalToken) -> None:
        backoff = Backoff(self.base_delay, self.max_delay)
        while token.alive:
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    async with client.stream(
                        "GET", self.url, headers={"Accept": "text/event-stream"}
                    ) as resp:
                        resp.raise_for_status()
                        if not token.alive:
                            return
                        self._set_connected(token, True)
                        backoff.reset()
                        async for data in iter_sse_data(resp.aiter_lines()):
                            if not token.alive:
                                return
                            self._handle(token, data)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("Event stream error: %s", e)
            finally:
                self._set_connected(token, False)

            if not token.alive:
                return
            delay = backoff.next_delay()
            logger.debug(
                "Event stream reconnect in %.1fs",
                delay,
                extra={"attempt": backoff.attempt, "delay_ms": int(delay * 1000)},
            )
            await asyncio.sleep(delay)

    def _handle(self, token: DisposalToken, data: str) -> None:
        if not token.alive:
            return
        try:
            payload: Any = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON event: %s", data[:100])
            return
        if not isinstance(payload, dict):
            return
        if self.assembler.apply(payload):
            self._notify()

    def _set_connected(self, token: DisposalToken, value: bool) -> None:
        if not token.alive or self.connected == value:
            return
        self.connected = value
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error("Error in event listener: %s", e, exc_info=True)
