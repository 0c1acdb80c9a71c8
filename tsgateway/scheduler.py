"""
Periodic incremental ingestion.

Fires on a fixed interval measured from start, independent of how long each
firing takes. Each firing runs the fetcher in a worker thread under its own
timeout. A failed firing is logged and never stops the schedule.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from tsgateway.context import RequestContext
from tsgateway.ingestion import SeriesFetcher

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 120.0


class PeriodicScheduler:
    """Drives ``SeriesFetcher.fetch_data`` for the most recent interval on every tick."""

    def __init__(
        self,
        fetcher: SeriesFetcher,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    ):
        self.fetcher = fetcher
        self.interval_seconds = interval_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.fired = 0
        self.skipped = 0
        self._ticker: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    async def start(self):
        if self.interval_seconds <= 0:
            raise RuntimeError(f"invalid scheduler interval: {self.interval_seconds}")
        if self.running:
            raise RuntimeError("scheduler already running")

        self._stop_event = asyncio.Event()
        self._ticker = asyncio.create_task(self._run(), name="ingestion-scheduler")
        logger.info(f"Scheduler started (interval: {self.interval_seconds}s)")

    async def stop(self):
        """Stop future firings. A firing already in progress is left to finish."""
        if self._ticker is None:
            return
        self._stop_event.set()
        await self._ticker
        self._ticker = None
        logger.info("Scheduler stopped")

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for an in-flight firing; returns False if it is still running."""
        inflight = self._inflight
        if inflight is None or inflight.done():
            return True
        done, _ = await asyncio.wait({inflight}, timeout=timeout)
        return bool(done)

    async def _run(self):
        loop = asyncio.get_running_loop()
        next_fire = loop.time() + self.interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=max(next_fire - loop.time(), 0))
                break
            except asyncio.TimeoutError:
                pass
            next_fire += self.interval_seconds
            self._fire()

    def _fire(self):
        if self._inflight is not None and not self._inflight.done():
            self.skipped += 1
            logger.warning("Previous ingestion run still in progress, skipping this tick")
            return
        self.fired += 1
        self._inflight = asyncio.create_task(asyncio.to_thread(self.collect_data))

    def collect_data(self):
        """Fetch the last interval's data; errors are logged, not raised."""
        ctx = RequestContext.background().with_timeout(self.fetch_timeout_seconds)
        end_time = datetime.now(timezone.utc)
        start_time = end_time - timedelta(seconds=self.interval_seconds)

        try:
            self.fetcher.fetch_data(ctx, start_time, end_time)
        except Exception as exc:
            logger.error(
                f"Failed to fetch data: {exc}",
                extra={"start": start_time.isoformat(), "end": end_time.isoformat()},
                exc_info=True,
            )
