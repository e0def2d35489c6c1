"""
Server-Sent Events framing over an httpx line stream.

Only the default event channel is used by the event source, so the
``event:``, ``id:`` and ``retry:`` fields are read past. ``data:`` lines
are joined with newlines and yielded when a blank line closes the event.
"""

from __future__ import annotations

from typing import AsyncIterator


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the data payload of each complete SSE event."""
    buffer: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")

        if not line:
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue

        if line.startswith(":"):
            continue  # comment / keep-alive

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            buffer.append(value)
