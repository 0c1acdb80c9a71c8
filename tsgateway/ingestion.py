"""
Data ingestion from the upstream series API.

Pulls a time window of raw points over HTTP and writes them to the repository in
a single batch. Also performs the one-time historical backfill at startup.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from threading import Event, Thread
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from tsgateway.context import RequestContext
from tsgateway.database import TimeSeriesRepository
from tsgateway.errors import (
    StoreError,
    UpstreamError,
    UpstreamRequestError,
    UpstreamStatusError,
)
from tsgateway.models import TimeSeriesPoint
from tsgateway.observability import RuntimeObservability

logger = logging.getLogger(__name__)

UPSTREAM_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
FALLBACK_WINDOW = timedelta(hours=24)
HISTORY_YEARS = 2
CANCEL_POLL_SECONDS = 0.05
USER_AGENT = "tsgateway/1.0"


def format_upstream_time(ts: datetime) -> str:
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.strftime(UPSTREAM_TIME_FORMAT)


def years_before(ts: datetime, years: int) -> datetime:
    """Calendar subtraction; Feb 29 rolls forward to Mar 1 in non-leap years."""
    try:
        return ts.replace(year=ts.year - years)
    except ValueError:
        return ts.replace(year=ts.year - years, month=3, day=1)


class SeriesFetcher:
    """Fetches windows of raw points from the upstream API into the repository."""

    def __init__(
        self,
        api_url: str,
        repository: TimeSeriesRepository,
        observability: Optional[RuntimeObservability] = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ):
        self.api_url = api_url
        self.repository = repository
        self.observability = observability
        self.request_timeout_seconds = request_timeout_seconds

    def build_url(self, start: datetime, end: datetime) -> str:
        query = urlencode({"start": format_upstream_time(start), "end": format_upstream_time(end)})
        return f"{self.api_url}?{query}"

    def _get_json(self, url: str, timeout: Optional[float]) -> dict[str, Any]:
        request = Request(url, headers={"Accept": "*/*", "User-Agent": USER_AGENT})
        try:
            with urlopen(request, timeout=timeout) as response:
                status = response.status
                body = response.read()
        except HTTPError as exc:
            body = exc.read().decode("utf-8", errors="replace")
            logger.error("API request failed", extra={"status": exc.code, "body": body})
            raise UpstreamStatusError(exc.code) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise UpstreamRequestError(f"error making API request: {exc}") from exc

        if not 200 <= status < 300:
            logger.error("API request failed", extra={"status": status, "body": body[:512]})
            raise UpstreamStatusError(status)

        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise UpstreamError(f"failed to decode response: {exc}") from exc

    def _get_json_until_cancelled(self, ctx: RequestContext, url: str) -> dict[str, Any]:
        """
        Run the blocking request in a worker thread and give up on it as soon as
        ``ctx`` is cancelled or runs out of time. An abandoned worker finishes
        on its own socket timeout.
        """
        outcome: dict[str, Any] = {}
        done = Event()

        def request():
            try:
                outcome["payload"] = self._get_json(url, timeout=ctx.remaining())
            except Exception as exc:
                outcome["error"] = exc
            finally:
                done.set()

        Thread(target=request, name="upstream-fetch", daemon=True).start()
        while not done.wait(CANCEL_POLL_SECONDS):
            ctx.check()

        if "error" in outcome:
            raise outcome["error"]
        return outcome["payload"]

    @staticmethod
    def parse_points(payload: dict[str, Any]) -> list[TimeSeriesPoint]:
        try:
            return [
                TimeSeriesPoint(
                    timestamp=datetime.fromtimestamp(int(record["time"]), tz=timezone.utc),
                    value=float(record["value"]),
                )
                for record in payload.get("result") or []
            ]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise UpstreamError(f"failed to decode response: {exc}") from exc

    def fetch_data(self, ctx: RequestContext, start: datetime, end: datetime) -> int:
        """
        Fetch ``[start, end)`` from upstream and insert it as one batch.

        Returns the number of points written. An empty upstream result is a
        success with nothing written.
        """
        url = self.build_url(start, end)
        logger.debug("Fetching data from API", extra={"url": url, "start": str(start), "end": str(end)})

        ctx = ctx.with_timeout(self.request_timeout_seconds)
        ctx.check()

        payload = self._get_json_until_cancelled(ctx, url)
        ctx.check()
        points = self.parse_points(payload)
        if not points:
            logger.debug("No data points received from API")
            return 0

        try:
            self.repository.batch_insert(ctx, points)
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(f"failed to insert data points: {exc}") from exc

        if self.observability is not None:
            self.observability.mark_ingestion_success(len(points))
        logger.info(f"Inserted {len(points)} data points", extra={"start": str(start), "end": str(end)})
        return len(points)

    def bootstrap_historical_data(self, ctx: RequestContext, now: Optional[datetime] = None) -> int:
        """
        Load up to two years of history; on failure retry once with the last 24 hours.
        """
        end_time = now or datetime.now(timezone.utc)
        start_time = years_before(end_time, HISTORY_YEARS)

        logger.info(
            "Starting historical data bootstrap",
            extra={"start": start_time.isoformat(), "end": end_time.isoformat()},
        )

        try:
            count = self.fetch_data(ctx, start_time, end_time)
        except Exception as exc:
            logger.error(f"Failed to fetch historical data: {exc}")
            logger.info("Attempting to fetch last 24 hours of data")
            try:
                count = self.fetch_data(ctx, end_time - FALLBACK_WINDOW, end_time)
            except Exception as fallback_exc:
                raise UpstreamError(f"failed to fetch recent data: {fallback_exc}") from fallback_exc

        logger.info(f"Historical data bootstrap completed ({count} points)")
        return count
