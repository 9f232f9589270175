"""Periodic sweep of inactive peers."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from noface_bootstrap.registry.store import INACTIVITY_THRESHOLD, PeerRegistry

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = 60.0


class CleanupScheduler:
    """Runs :meth:`PeerRegistry.sweep` every *interval* seconds.

    The loop is a single asyncio task owned by this object; :meth:`stop`
    cancels it and waits for it to finish.
    """

    def __init__(
        self,
        registry: PeerRegistry,
        interval: float = SWEEP_INTERVAL,
        threshold: float = INACTIVITY_THRESHOLD,
    ) -> None:
        self.registry = registry
        self.interval = interval
        self.threshold = threshold
        self.last_sweep: float | None = None
        self.sweeps = 0
        self.removed_total = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Cleanup scheduler started (interval=%.0fs, threshold=%.0fs)",
            self.interval, self.threshold,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Cleanup scheduler stopped")

    def sweep_once(self) -> list[str]:
        """Run one sweep pass now."""
        now = self.registry.now()
        removed = self.registry.sweep(now=now, threshold=self.threshold)
        self.last_sweep = now
        self.sweeps += 1
        self.removed_total += len(removed)
        if removed:
            logger.info("Sweep removed %d inactive peer(s)", len(removed))
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Sweep pass failed")
