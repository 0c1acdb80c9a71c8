"""Query handler for aggregated time-series reads."""
from __future__ import annotations

import logging

from tsgateway.context import RequestContext
from tsgateway.database import TimeSeriesRepository
from tsgateway.errors import StatusCode, StatusError, ValidationError
from tsgateway.schemas import TimeSeriesDataPoint, TimeSeriesRequest, TimeSeriesResponse
from tsgateway.validator import RequestValidator, ensure_utc

logger = logging.getLogger(__name__)

QUERY_TIME_SERIES_METHOD = "/timeseries.TimeSeriesService/QueryTimeSeries"


class TimeSeriesService:
    """Validates a query, reads the store and shapes the response. Stateless."""

    def __init__(self, repository: TimeSeriesRepository, validator: RequestValidator | None = None):
        self.repository = repository
        self.validator = validator or RequestValidator()

    def query_time_series(self, ctx: RequestContext, request: TimeSeriesRequest) -> TimeSeriesResponse:
        try:
            self.validator.validate(request.start, request.end, request.window, request.aggregation)
        except ValidationError as exc:
            raise StatusError(StatusCode.INVALID_ARGUMENT, str(exc)) from exc

        ctx.check()
        start, end = ensure_utc(request.start), ensure_utc(request.end)

        try:
            points = self.repository.query(ctx, start, end, request.window, request.aggregation)
        except StatusError:
            raise
        except Exception as exc:
            logger.error(
                f"Time series query failed: {exc}",
                extra={
                    "start": start.isoformat(),
                    "end": end.isoformat(),
                    "window": request.window,
                    "aggregation": request.aggregation,
                },
            )
            raise StatusError(StatusCode.INTERNAL, f"query failed: {exc}") from exc

        return TimeSeriesResponse(
            data=[TimeSeriesDataPoint(time=p.bucket_start, value=p.value) for p in points]
        )
