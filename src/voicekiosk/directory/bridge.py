"""
Session Directory Bridge — reconciles optimistic local sessions with the
server's session directory.

Two explicit sets:
    persisted  — what the last successful directory refresh listed
    pending    — keys created here and not yet seen in a refresh

A key is known if it is in either set. Each refresh drops pending keys
that have since been persisted.

Creating switches to the new key at once (the create request runs after).
Deleting the active session fails over to the most recently updated
remaining session, or to a fresh pending placeholder when none is left.
On the keyboard channel the session bound to the voice pipeline is shown
but cannot be selected.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

from voicekiosk.core.lifecycle import DisposalToken
from voicekiosk.directory.client import SessionDirectoryClient
from voicekiosk.directory.models import SessionInfo, SessionOption, timestamp_of
from voicekiosk.transport.envelopes import ChannelType

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "voice:"


# ─── Pure helpers ─────────────────────────────────────────────────


def is_known(key: str, persisted: Iterable[str], pending: Iterable[str]) -> bool:
    return key in set(persisted) or key in set(pending)


def reconcile_pending(pending: set[str], persisted: Iterable[str]) -> set[str]:
    """Pending keys still waiting for the directory to confirm them."""
    return pending - set(persisted)


def pick_failover(sessions: Iterable[SessionInfo], excluded: str) -> SessionInfo | None:
    """Most recently updated session other than ``excluded``."""
    candidates = [s for s in sessions if s.key != excluded]
    if not candidates:
        return None
    return max(candidates, key=lambda s: s.recency)


def format_label(key: str, updated_at: str | None = None, prefix: str = DEFAULT_PREFIX) -> str:
    name = key[len(prefix):] if prefix and key.startswith(prefix) else key
    stamp = timestamp_of(updated_at)
    if not stamp:
        return name
    return f"{name} ({datetime.fromtimestamp(stamp).date().isoformat()})"


class SessionDirectoryBridge:
    """Directory state plus the create/delete/select operations on it."""

    def __init__(
        self,
        client: SessionDirectoryClient,
        switch: Callable[[str], Awaitable[Any]],
        current_key: Callable[[], str],
        channel: Callable[[], ChannelType],
        key_prefix: str = DEFAULT_PREFIX,
        refresh_interval: float = 30.0,
    ) -> None:
        self._client = client
        self._switch = switch
        self._current_key = current_key
        self._channel = channel
        self.key_prefix = key_prefix
        self.refresh_interval = refresh_interval

        self.persisted: dict[str, SessionInfo] = {}
        self.pending: set[str] = set()
        self.directory_current: str | None = None

        self._token = DisposalToken("session-directory")
        self._listeners: list[Callable[[], None]] = []

    # ─── Queries ──────────────────────────────────────────────────

    def is_known(self, key: str) -> bool:
        return is_known(key, self.persisted, self.pending)

    @property
    def voice_session_key(self) -> str | None:
        """Session the shared voice pipeline is bound to."""
        if self._channel() is ChannelType.VOICE:
            return self._current_key()
        return self.directory_current

    def selectable(self, key: str) -> bool:
        """False for the voice-bound session while on the keyboard channel."""
        if self._channel() is not ChannelType.KEYBOARD:
            return True
        return key != self.voice_session_key

    def options(self) -> list[SessionOption]:
        """Session picker entries, most recently updated first."""
        current = self._current_key()
        ordered = sorted(self.persisted.values(), key=lambda s: s.recency, reverse=True)
        options = [
            SessionOption(
                key=s.key,
                label=format_label(s.key, s.updated_at, self.key_prefix),
                selectable=self.selectable(s.key),
                current=s.key == current,
            )
            for s in ordered
        ]
        for key in sorted(self.pending - set(self.persisted)):
            options.append(
                SessionOption(
                    key=key,
                    label=format_label(key, prefix=self.key_prefix),
                    selectable=self.selectable(key),
                    pending=True,
                    current=key == current,
                )
            )
        if current and not self.is_known(current):
            options.insert(
                0,
                SessionOption(
                    key=current,
                    label=format_label(current, prefix=self.key_prefix),
                    selectable=self.selectable(current),
                    current=True,
                ),
            )
        return options

    def make_key(self, name: str) -> str:
        return f"{self.key_prefix}{name.strip()}"

    # ─── Operations ───────────────────────────────────────────────

    async def refresh(self) -> bool:
        """Reload the directory. On failure the previous state is kept."""
        if not self._token.alive:
            return False
        listing = await self._client.list_sessions()
        if listing is None or not self._token.alive:
            return False

        self.persisted = {s.key: s for s in listing.sessions}
        self.pending = reconcile_pending(self.pending, self.persisted)
        self.directory_current = listing.current
        logger.debug(
            "Directory refreshed: %d persisted, %d pending",
            len(self.persisted),
            len(self.pending),
        )
        self._notify()
        return True

    async def select(self, key: str) -> bool:
        """Switch to ``key`` unless the channel rules forbid it."""
        if not self._token.alive or not key:
            return False
        if not self.selectable(key):
            logger.info(
                "Session %s is bound to voice, not selectable from keyboard",
                key,
                extra={"session_key": key},
            )
            return False
        await self._switch(key)
        return True

    async def create(self, name: str) -> str | None:
        """Create a session from a user-supplied name and switch to it at once."""
        name = name.strip()
        if not name or not self._token.alive:
            return None

        key = self.make_key(name)
        self.pending.add(key)
        self._notify()
        await self._switch(key)

        server_key = await self._client.create_session(name)
        if not self._token.alive:
            return key
        if server_key and server_key != key:
            # The server named it differently; follow the server
            self.pending.discard(key)
            self.pending.add(server_key)
            if self._current_key() == key:
                await self._switch(server_key)
            key = server_key

        await self.refresh()
        return key

    async def delete(self, key: str) -> bool:
        """Delete a session; fail over if it was the active one."""
        if not self._token.alive:
            return False
        if not await self._client.delete_session(key):
            return False

        if key == self._current_key():
            await self._fail_over(key)
        else:
            self.pending.discard(key)
            self.persisted.pop(key, None)
            await self.refresh()
        return True

    async def handle_session_event(self, kind: str, key: str) -> None:
        """Engine callback for session_switched / session_updated / session_deleted."""
        if not self._token.alive:
            return
        if kind == "deleted":
            self.pending.discard(key)
            self.persisted.pop(key, None)
            if key == self._current_key():
                await self._fail_over(key)
                return
        await self.refresh()

    async def _fail_over(self, deleted_key: str) -> None:
        self.pending.discard(deleted_key)
        self.persisted.pop(deleted_key, None)
        await self.refresh()
        self.persisted.pop(deleted_key, None)
        if not self._token.alive:
            return

        target = pick_failover(self.persisted.values(), deleted_key)
        if target is not None:
            next_key = target.key
        else:
            next_key = self._placeholder_key()
            self.pending.add(next_key)
        logger.info(
            "Session %s gone, switching to %s",
            deleted_key,
            next_key,
            extra={"session_key": next_key},
        )
        self._notify()
        await self._switch(next_key)

    def _placeholder_key(self) -> str:
        base = self.make_key(f"session-{datetime.now().strftime('%Y%m%d-%H%M%S')}")
        key = base
        n = 2
        while self.is_known(key):
            key = f"{base}-{n}"
            n += 1
        return key

    # ─── Background refresh ───────────────────────────────────────

    def start_auto_refresh(self) -> None:
        if self.refresh_interval > 0:
            self._token.spawn(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        while self._token.alive:
            await asyncio.sleep(self.refresh_interval)
            await self.refresh()

    # ─── Listeners ────────────────────────────────────────────────

    def on_change(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error("Error in directory listener: %s", e, exc_info=True)

    def dispose(self) -> None:
        self._token.dispose()
        self._listeners.clear()
