"""SessionDirectoryClient — thin async wrapper around the session HTTP API.

Endpoints (all relative to ``http_base``):
    GET    /sessions                → {sessions: [{key, created_at, updated_at}], current}
    POST   /sessions {name}         → {key}
    DELETE /sessions/{key}
    GET    /sessions/{key}/history  → {messages: [{role, text}]}

Methods never raise: they log a warning on failure
and return a neutral value, so a directory error never crashes the engine.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from voicekiosk.directory.models import DirectoryListing, SessionInfo
from voicekiosk.sync.models import ChatMessage

logger = logging.getLogger(__name__)


class SessionDirectoryClient:
    """Async client for the session directory and history endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        # Injected in tests (httpx.MockTransport)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def list_sessions(self) -> DirectoryListing | None:
        """Fetch the directory. None on failure."""
        try:
            async with self._client() as client:
                resp = await client.get("/sessions")
                resp.raise_for_status()
                data = resp.json()
        except Exception as e:
            logger.warning("Session directory refresh failed: %s", e)
            return None

        if not isinstance(data, dict):
            logger.warning("Session directory returned %s", type(data).__name__)
            return None

        sessions = []
        for item in data.get("sessions") or []:
            if isinstance(item, dict):
                info = SessionInfo.from_dict(item)
                if info is not None:
                    sessions.append(info)

        current = data.get("current")
        return DirectoryListing(
            sessions=sessions,
            current=current if isinstance(current, str) and current else None,
        )

    async def create_session(self, name: str) -> str | None:
        """Create a session. Returns the server-assigned key, None on failure."""
        try:
            async with self._client() as client:
                resp = await client.post("/sessions", json={"name": name})
                resp.raise_for_status()
                key = resp.json().get("key")
        except Exception as e:
            logger.warning("Session create failed (%s): %s", name, e)
            return None

        if not isinstance(key, str) or not key:
            return None
        logger.info("Session created: %s", key, extra={"session_key": key})
        return key

    async def delete_session(self, key: str) -> bool:
        """Delete a session. Returns True once the key no longer exists.

        A 404 counts as success: the session is already gone, usually a
        pending key the server never created.
        """
        try:
            async with self._client() as client:
                resp = await client.delete(f"/sessions/{quote(key, safe='')}")
                if resp.status_code == 404:
                    logger.info("Session already gone: %s", key, extra={"session_key": key})
                    return True
                resp.raise_for_status()
        except Exception as e:
            logger.warning("Session delete failed (%s): %s", key, e)
            return False

        logger.info("Session deleted: %s", key, extra={"session_key": key})
        return True

    async def fetch_history(self, key: str) -> list[ChatMessage] | None:
        """Load the full transcript of a session. None on failure."""
        try:
            async with self._client() as client:
                resp = await client.get(f"/sessions/{quote(key, safe='')}/history")
                resp.raise_for_status()
                data = resp.json()
        except Exception as e:
            logger.warning("History fetch failed (%s): %s", key, e)
            return None

        raw_messages = data.get("messages") if isinstance(data, dict) else None
        if not isinstance(raw_messages, list):
            return []

        history = []
        for item in raw_messages:
            if isinstance(item, dict):
                msg = ChatMessage.from_dict(item)
                if msg is not None:
                    history.append(msg)
        return history
