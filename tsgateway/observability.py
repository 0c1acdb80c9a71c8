"""In-memory observability helpers for runtime status and ingestion freshness."""
from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from time import perf_counter
from typing import Optional


class RuntimeObservability:
    """Tracks process uptime and the ingestion heartbeat."""

    def __init__(self):
        self.process_started_at = datetime.now(timezone.utc)
        self.last_successful_ingestion: Optional[datetime] = None
        self._points_written = 0
        self._lock = Lock()

    def mark_ingestion_success(self, points_written: int, timestamp: Optional[datetime] = None):
        """Mark a successful ingestion write heartbeat."""
        heartbeat = timestamp or datetime.now(timezone.utc)
        with self._lock:
            self.last_successful_ingestion = heartbeat.astimezone(timezone.utc)
            self._points_written += points_written

    @property
    def points_written(self) -> int:
        with self._lock:
            return self._points_written

    def seconds_since_last_ingestion(self) -> Optional[float]:
        """Return elapsed seconds since latest successful ingestion heartbeat."""
        with self._lock:
            last = self.last_successful_ingestion
        if not last:
            return None

        delta = datetime.now(timezone.utc) - last
        return max(delta.total_seconds(), 0.0)

    def uptime_seconds(self) -> float:
        """Return process uptime in seconds."""
        return (datetime.now(timezone.utc) - self.process_started_at).total_seconds()


class RequestTimer:
    """Small helper for request timing."""

    def __init__(self):
        self._started = perf_counter()

    def elapsed_ms(self) -> float:
        return (perf_counter() - self._started) * 1000
