"""ConnectionDirectory — which live channel currently speaks for which peer id."""

from __future__ import annotations

import threading

from noface_bootstrap.signaling.channel import SignalingChannel


class ConnectionDirectory:
    """Maps peer ids to their signaling channel, at most one channel per id.

    Independent of the peer registry: entries appear when a channel
    registers and disappear when that same channel closes.
    """

    def __init__(self) -> None:
        self._channels: dict[str, SignalingChannel] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)

    def __contains__(self, peer_id: object) -> bool:
        with self._lock:
            return peer_id in self._channels

    def bind(self, peer_id: str, channel: SignalingChannel) -> SignalingChannel | None:
        """Point *peer_id* at *channel*; the last registration wins.

        Returns:
            The channel previously bound to *peer_id*, if it was a different one.
        """
        with self._lock:
            previous = self._channels.get(peer_id)
            self._channels[peer_id] = channel
        if previous is channel:
            return None
        return previous

    def unbind(self, peer_id: str, channel: SignalingChannel) -> bool:
        """Remove the entry only if it still points at *channel*."""
        with self._lock:
            if self._channels.get(peer_id) is not channel:
                return False
            del self._channels[peer_id]
        return True

    def lookup(self, peer_id: str) -> SignalingChannel | None:
        with self._lock:
            return self._channels.get(peer_id)

    def peer_ids(self) -> list[str]:
        with self._lock:
            return list(self._channels)

    def channels(self) -> list[SignalingChannel]:
        with self._lock:
            return list(self._channels.values())
