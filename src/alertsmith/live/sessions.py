"""Viewer sessions and the hub that fans events out to them.

Each connected viewer owns a bounded outbound queue drained by its own
sender task, so a broadcast never waits on a slow or broken connection: a
failed send closes only that session, and a stalled viewer loses its oldest
frames instead of holding every AlertSet it was sent.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from alertsmith.errors import ErrorContext, TransportError

logger = logging.getLogger(__name__)

LOAD = "load"
UPDATE = "update"
FAILURE = "failure"

MAX_PENDING = 16

_CLOSE = object()


def encode_event(event: str, data: Any = None) -> str:
    """Wire form of an event: a JSON text frame ``{"event", "data"}``."""
    return json.dumps({"event": event, "data": data}, default=str)


class ViewerSession:
    """One connected viewer.

    Attributes:
        id: Hub-assigned session id
        address: Remote address, for diagnostics
        dropped: Frames discarded because the viewer fell behind
    """

    def __init__(self, session_id: int, address: str, max_pending: int = MAX_PENDING) -> None:
        self.id = session_id
        self.address = address
        self.dropped = 0
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_pending)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, data: Any = None) -> bool:
        """Queue an event for delivery. Returns False once the session is closed."""
        return self.send_frame(encode_event(event, data))

    def send_frame(self, frame: str) -> bool:
        """Queue an already encoded frame."""
        if self._closed:
            return False
        self._enqueue(frame)
        return True

    def _enqueue(self, item: Any) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1
                logger.debug(f"Dropped a frame for slow viewer {self.address}")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._enqueue(_CLOSE)

    async def deliver(self, send_text: Callable[[str], Awaitable[None]]) -> None:
        """Drain the queue into ``send_text`` until the session closes.

        A failing send is reported as a TransportError and closes the
        session; it is never raised to the caller.
        """
        while True:
            message = await self._queue.get()
            if message is _CLOSE:
                return
            try:
                await send_text(message)
            except Exception as e:
                error = TransportError(
                    f"Failed to deliver to {self.address}: {e}",
                    context=ErrorContext(extra={"address": self.address}),
                    cause=e,
                )
                logger.warning(str(error))
                self.close()
                return


class ViewerHub:
    """Registry of live viewer sessions."""

    def __init__(self) -> None:
        self._sessions: dict[int, ViewerSession] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def sessions(self) -> list[ViewerSession]:
        return list(self._sessions.values())

    def register(self, address: str) -> ViewerSession:
        session = ViewerSession(next(self._ids), address)
        self._sessions[session.id] = session
        logger.info(f"New session for {address}")
        return session

    def unregister(self, session: ViewerSession) -> None:
        session.close()
        if self._sessions.pop(session.id, None) is not None:
            logger.info(f"Disconnected session {session.address}")

    def broadcast(self, event: str, data: Any = None) -> int:
        """Queue an event on every live session; returns how many got it.

        The event is encoded once, before any session is touched.
        """
        frame = encode_event(event, data)
        delivered = 0
        for session in self.sessions:
            if session.send_frame(frame):
                delivered += 1
            else:
                self._sessions.pop(session.id, None)
        logger.debug(f"Broadcast {event} to {delivered} session(s)")
        return delivered
