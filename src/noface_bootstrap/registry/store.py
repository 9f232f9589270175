"""PeerRegistry — the in-memory store of peer discovery records.

Records live only in memory and disappear on restart. Liveness is
driven by ``last_seen``: peers seen within the active window show up
in active listings, peers silent for longer than the inactivity
threshold are removed by :meth:`PeerRegistry.sweep`.

All operations go through one lock, so a listing never observes a
record halfway through an update. Callers always get copies.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from noface_bootstrap.errors import PeerNotFoundError, ValidationError
from noface_bootstrap.registry.peer import Page, PeerFilter, PeerRecord
from noface_bootstrap.registry.validation import validate_registration

logger = logging.getLogger(__name__)

ACTIVE_WINDOW = 120.0          # Seconds a peer counts as "active" after last contact
INACTIVITY_THRESHOLD = 300.0   # Seconds of silence before the sweep removes a peer
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class PeerRegistry:
    """Concurrency-safe store of :class:`PeerRecord` keyed by peer id."""

    def __init__(
        self,
        active_window: float = ACTIVE_WINDOW,
        inactivity_threshold: float = INACTIVITY_THRESHOLD,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.active_window = active_window
        self.inactivity_threshold = inactivity_threshold
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self._clock = clock
        self._peers: dict[str, PeerRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, peer_id: object) -> bool:
        with self._lock:
            return peer_id in self._peers

    def now(self) -> float:
        return self._clock()

    # ── Writes ───────────────────────────────────────────────────

    def register(
        self,
        peer_id: Any,
        ip: Any,
        port: Any,
        name: Any = None,
        capabilities: Any = None,
        version: Any = None,
    ) -> PeerRecord:
        """Register a new peer or refresh an existing one.

        Raises:
            ValidationError: listing every violated constraint.
        """
        reg, errors = validate_registration(
            peer_id, ip, port, name=name, capabilities=capabilities, version=version,
        )
        if reg is None:
            raise ValidationError(errors)

        with self._lock:
            now = self._clock()
            existing = self._peers.get(reg.peer_id)
            if existing:
                existing.ip = reg.ip
                existing.port = reg.port
                existing.name = reg.name or existing.name
                existing.version = reg.version
                existing.capabilities = reg.capabilities
                existing.connection_count += 1
                existing.touch(now)
                record = existing
            else:
                record = PeerRecord(
                    peer_id=reg.peer_id,
                    ip=reg.ip,
                    port=reg.port,
                    name=reg.name or f"Peer-{reg.peer_id[:8]}",
                    version=reg.version,
                    capabilities=reg.capabilities,
                    registered_at=now,
                    last_seen=now,
                    updated_at=now,
                )
                self._peers[reg.peer_id] = record
            snapshot = record.copy()

        logger.info(
            "Registered peer: %s (%s) connections=%d",
            snapshot.peer_id, snapshot.endpoint, snapshot.connection_count,
        )
        return snapshot

    def heartbeat(self, peer_id: str) -> float:
        """Refresh ``last_seen`` for a known peer and return it."""
        with self._lock:
            record = self._peers.get(peer_id)
            if record is None:
                raise PeerNotFoundError(peer_id)
            record.touch(self._clock())
            last_seen = record.last_seen
        logger.debug("Heartbeat from %s", peer_id)
        return last_seen

    def delete(self, peer_id: str) -> None:
        with self._lock:
            if self._peers.pop(peer_id, None) is None:
                raise PeerNotFoundError(peer_id)
        logger.info("Unregistered peer: %s", peer_id)

    def sweep(
        self,
        now: float | None = None,
        threshold: float | None = None,
    ) -> list[str]:
        """Remove every peer silent for longer than *threshold* seconds.

        Returns:
            Ids of the removed peers.
        """
        if threshold is None:
            threshold = self.inactivity_threshold
        with self._lock:
            if now is None:
                now = self._clock()
            removed = [
                pid for pid, rec in self._peers.items()
                if rec.is_expired(now, threshold)
            ]
            for pid in removed:
                del self._peers[pid]
        for pid in removed:
            logger.info("Removed inactive peer: %s", pid)
        return removed

    # ── Reads ────────────────────────────────────────────────────

    def get(self, peer_id: str) -> PeerRecord:
        with self._lock:
            record = self._peers.get(peer_id)
            if record is None:
                raise PeerNotFoundError(peer_id)
            return record.copy()

    def list(
        self,
        peer_filter: PeerFilter | None = None,
        limit: Any = None,
        offset: Any = None,
    ) -> Page:
        """Filtered, paginated listing, most recently seen first."""
        peer_filter = peer_filter or PeerFilter()
        limit = self._clamp_limit(limit)
        offset = self._clamp_offset(offset)

        with self._lock:
            now = self._clock()
            matched = [
                rec for rec in self._peers.values()
                if peer_filter.matches(rec, now, self.active_window)
            ]
            # Stable sort keeps first-registration order among equal last_seen
            matched.sort(key=lambda r: -r.last_seen)
            records = [r.copy() for r in matched[offset:offset + limit]]

        return Page(records=records, total=len(matched), limit=limit, offset=offset)

    def snapshot(self) -> list[PeerRecord]:
        """All records, most recently seen first."""
        with self._lock:
            records = [r.copy() for r in self._peers.values()]
        records.sort(key=lambda r: -r.last_seen)
        return records

    def stats(self, now: float | None = None) -> tuple[int, int]:
        """``(total, active)`` peer counts."""
        with self._lock:
            if now is None:
                now = self._clock()
            active = sum(
                1 for r in self._peers.values()
                if r.is_active(now, self.active_window)
            )
            return len(self._peers), active

    # ── Helpers ──────────────────────────────────────────────────

    def _clamp_limit(self, limit: Any) -> int:
        try:
            value = int(limit)
        except (TypeError, ValueError):
            return self.default_page_size
        if value <= 0:
            return self.default_page_size
        return min(value, self.max_page_size)

    @staticmethod
    def _clamp_offset(offset: Any) -> int:
        try:
            value = int(offset)
        except (TypeError, ValueError):
            return 0
        return max(value, 0)
