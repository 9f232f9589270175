"""Peer records — what the registry knows about each registered peer."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any


def to_millis(ts: float) -> int:
    """Convert a float epoch timestamp to integer milliseconds."""
    return int(ts * 1000)


@dataclass
class PeerRecord:
    """Discovery record for one registered peer."""

    peer_id: str
    ip: str
    port: int
    name: str
    registered_at: float
    last_seen: float
    updated_at: float
    version: str | None = None
    capabilities: frozenset[str] = field(default_factory=frozenset)
    connection_count: int = 1

    @property
    def endpoint(self) -> str:
        return f"{self.ip}:{self.port}"

    def is_active(self, now: float, window: float) -> bool:
        """Seen strictly less than *window* seconds ago."""
        return (now - self.last_seen) < window

    def is_expired(self, now: float, threshold: float) -> bool:
        """Not seen for strictly more than *threshold* seconds."""
        return (now - self.last_seen) > threshold

    def touch(self, now: float) -> None:
        """Refresh liveness; a clock stepping backwards never rewinds it."""
        self.last_seen = max(self.last_seen, now)
        self.updated_at = max(self.updated_at, now)

    def copy(self) -> PeerRecord:
        return dataclasses.replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Full wire representation (camelCase, millisecond timestamps)."""
        return {
            "id": self.peer_id,
            "ip": self.ip,
            "port": self.port,
            "name": self.name,
            "version": self.version,
            "capabilities": sorted(self.capabilities),
            "registeredAt": to_millis(self.registered_at),
            "lastSeen": to_millis(self.last_seen),
            "updatedAt": to_millis(self.updated_at),
            "connectionCount": self.connection_count,
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Listing entry."""
        return {
            "id": self.peer_id,
            "ip": self.ip,
            "port": self.port,
            "name": self.name,
            "version": self.version,
            "capabilities": sorted(self.capabilities),
            "lastSeen": to_millis(self.last_seen),
            "registeredAt": to_millis(self.registered_at),
        }

    def to_signaling_dict(self) -> dict[str, Any]:
        """Entry in the peer list pushed to a freshly registered channel."""
        return {
            "id": self.peer_id,
            "name": self.name,
            "capabilities": sorted(self.capabilities),
            "lastSeen": to_millis(self.last_seen),
        }


@dataclass(frozen=True)
class PeerFilter:
    """Listing filters. ``None`` means "don't filter on this"."""

    active_only: bool = False
    capability: str | None = None
    version: str | None = None

    def matches(self, record: PeerRecord, now: float, active_window: float) -> bool:
        if self.active_only and not record.is_active(now, active_window):
            return False
        if self.capability is not None and self.capability not in record.capabilities:
            return False
        if self.version is not None and record.version != self.version:
            return False
        return True


@dataclass
class Page:
    """One page of a filtered listing."""

    records: list[PeerRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total
