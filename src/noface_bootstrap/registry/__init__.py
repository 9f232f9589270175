"""Peer registry — discovery records, liveness and periodic cleanup."""

from noface_bootstrap.registry.cleanup import CleanupScheduler
from noface_bootstrap.registry.peer import Page, PeerFilter, PeerRecord
from noface_bootstrap.registry.store import PeerRegistry

__all__ = ["CleanupScheduler", "Page", "PeerFilter", "PeerRecord", "PeerRegistry"]
