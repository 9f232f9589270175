"""Signaling channel — one live WebSocket bound to at most one peer id.

Outbound frames are queued on a bounded outbox and written by a
dedicated task, so pushing a frame never waits on the network. A full
outbox or a closed socket makes :meth:`SignalingChannel.offer` return
False immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_OUTBOX_SIZE = 64
CLOSE_GOING_AWAY = 1001
CLOSE_SUPERSEDED = 4000

_channel_ids = itertools.count(1)


class ChannelState(str, Enum):
    """Lifecycle of a signaling channel."""

    CONNECTED = "connected"    # open, no peer identity yet
    REGISTERED = "registered"  # bound to a peer id
    CLOSED = "closed"


class WebSocketLike(Protocol):
    """The part of ``aiohttp.web.WebSocketResponse`` a channel uses."""

    @property
    def closed(self) -> bool: ...

    async def send_json(self, data: Any) -> None: ...

    async def close(self, *, code: int = ..., message: bytes = ...) -> bool: ...


class SignalingChannel:
    """Handle to one open signaling connection."""

    def __init__(
        self,
        ws: WebSocketLike,
        outbox_size: int = DEFAULT_OUTBOX_SIZE,
        remote: str = "unknown",
    ) -> None:
        self.channel_id = next(_channel_ids)
        self.remote = remote
        self.peer_id: str | None = None
        self.state = ChannelState.CONNECTED
        self._ws = ws
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=outbox_size)
        self._writer: asyncio.Task | None = None
        self._closer: asyncio.Task | None = None

    def __repr__(self) -> str:
        return (
            f"<SignalingChannel #{self.channel_id} {self.state.value}"
            f" peer={self.peer_id!r} remote={self.remote}>"
        )

    @property
    def writable(self) -> bool:
        return self.state is not ChannelState.CLOSED and not self._ws.closed

    def start(self) -> None:
        """Start the outbox writer task."""
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    def offer(self, frame: dict[str, Any]) -> bool:
        """Queue *frame* for sending without waiting.

        Returns:
            False if the channel is closed or its outbox is full.
        """
        if not self.writable:
            return False
        try:
            self._outbox.put_nowait(frame)
        except asyncio.QueueFull:
            return False
        return True

    async def flush(self) -> None:
        """Wait until every queued frame has been written (or dropped)."""
        await self._outbox.join()

    def evict(self) -> None:
        """Close this channel because a newer one took over its peer id."""
        if self.state is ChannelState.CLOSED or self._closer is not None:
            return
        self.state = ChannelState.CLOSED
        self._closer = asyncio.create_task(
            self.close(code=CLOSE_SUPERSEDED, reason="superseded")
        )

    async def close(self, code: int = CLOSE_GOING_AWAY, reason: str = "") -> None:
        """Stop the writer and close the socket. Safe to call repeatedly."""
        self.state = ChannelState.CLOSED
        if self._writer is not None:
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
            self._writer = None
        self._discard_pending()
        if not self._ws.closed:
            await self._ws.close(code=code, message=reason.encode())

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outbox.get()
            try:
                await self._ws.send_json(frame)
            except (ConnectionError, RuntimeError) as e:
                logger.debug("Write to %r failed: %s", self, e)
                self.state = ChannelState.CLOSED
                self._discard_pending()
                return
            finally:
                self._outbox.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._outbox.task_done()
