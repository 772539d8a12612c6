"""
Auto-Scan Scheduler
===================

Periodic "auto-pilot" that walks the watchlist and requests analysis for
every eligible symbol.

When the capability reports quota exhaustion the scheduler pauses all
automatic scans for a cooldown window. Manual requests go straight to the
orchestrator and are never blocked here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from signaldesk.analysis import AnalysisOrchestrator, AnalysisOutcome, AnalysisStatus
from signaldesk.watchlist import WatchlistStore


logger = logging.getLogger(__name__)


DEFAULT_SCAN_INTERVAL_SECONDS = 20.0
DEFAULT_QUOTA_COOLDOWN_SECONDS = 60.0


class AutoScanScheduler:
    """
    Usage:
        scheduler = AutoScanScheduler(store, orchestrator)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: WatchlistStore,
        orchestrator: AnalysisOrchestrator,
        interval_seconds: float = DEFAULT_SCAN_INTERVAL_SECONDS,
        cooldown_seconds: float = DEFAULT_QUOTA_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._paused_until = 0.0
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

        self._passes = 0
        self._requests = 0
        self._quota_pauses = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cooldown_remaining(self) -> float:
        """Seconds left in the quota pause (0 when not paused)."""
        return max(0.0, self._paused_until - self._clock())

    @property
    def is_paused(self) -> bool:
        return self.cooldown_remaining() > 0

    def start(self) -> None:
        """Begin periodic scanning (idempotent)."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run(self._stop_event))
        logger.info(f"Auto-scan started (every {self._interval}s)")

    async def stop(self) -> None:
        """
        Stop periodic scanning (idempotent).

        An analysis request already in flight is not cancelled: the pass
        ends after it, so its result still lands in the store.
        """
        task, self._task = self._task, None
        if task is None:
            return
        self._stop_event.set()
        await task
        logger.info("Auto-scan stopped")

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_once(stop_event)
            except Exception as e:
                logger.exception(f"Auto-scan pass failed: {e}")

    async def run_once(self, stop_event: asyncio.Event | None = None) -> list[AnalysisOutcome]:
        """
        One scan pass over the watchlist, in watchlist order.

        Returns the outcomes of the requests actually issued. Stops early
        and starts the cooldown on the first quota outcome. When stop_event
        is set mid-pass, no further request is issued.
        """
        if self.is_paused:
            logger.debug(f"Auto-scan paused, {self.cooldown_remaining():.0f}s remaining")
            return []

        self._passes += 1
        outcomes = []
        for symbol in self._store.symbols:
            if stop_event is not None and stop_event.is_set():
                break
            if not self._orchestrator.can_analyze(symbol):
                continue
            outcome = await self._orchestrator.request_analysis(symbol)
            self._requests += 1
            outcomes.append(outcome)
            if outcome.status is AnalysisStatus.QUOTA_EXCEEDED:
                self._paused_until = self._clock() + self._cooldown
                self._quota_pauses += 1
                logger.warning(f"Auto-scan paused for {self._cooldown:.0f}s after quota error on {symbol}")
                break
        return outcomes

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "interval_seconds": self._interval,
            "cooldown_remaining": round(self.cooldown_remaining(), 1),
            "passes": self._passes,
            "requests": self._requests,
            "quota_pauses": self._quota_pauses,
        }
