"""
FastAPI surface for the query gateway.
Exposes the query method, the health protocol and runtime metrics.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tsgateway.cache.lru_cache import LRUCache
from tsgateway.context import RequestContext
from tsgateway.errors import StatusCode, StatusError
from tsgateway.health import HealthChecker
from tsgateway.internal_metrics import MetricsCollector
from tsgateway.middleware.chain import CallInfo, Pipeline
from tsgateway.observability import RuntimeObservability
from tsgateway.schemas import (
    ErrorResponse,
    HealthCheckResponse,
    MetricsResponse,
    TimeSeriesRequest,
    TimeSeriesResponse,
)
from tsgateway.service import QUERY_TIME_SERIES_METHOD

logger = logging.getLogger(__name__)

SERVICE = "tsgateway"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid argument"},
    404: {"model": ErrorResponse, "description": "Unknown service"},
    429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
    501: {"model": ErrorResponse, "description": "Not implemented"},
    504: {"model": ErrorResponse, "description": "Deadline exceeded"},
}


@dataclass
class GatewayComponents:
    """Process-wide instances shared by every request."""

    pipeline: Pipeline
    health: HealthChecker
    metrics: MetricsCollector
    cache: LRUCache
    observability: RuntimeObservability
    request_timeout_seconds: float = 10.0


def error_response(code: StatusCode, details: str) -> JSONResponse:
    payload = ErrorResponse(error=code.value, details=details, status=code.http_status)
    return JSONResponse(status_code=code.http_status, content=payload.model_dump())


def _flatten_validation_errors(exc: RequestValidationError) -> str:
    """Return a concise, stable validation message string."""
    parts = []
    for err in exc.errors():
        loc = ".".join(str(i) for i in err.get("loc", []) if i != "body")
        msg = err.get("msg", "Invalid value")
        parts.append(f"{loc}: {msg}")
    return "; ".join(parts)


def create_app(components: GatewayComponents) -> FastAPI:
    app = FastAPI(
        title="Time Series Query Gateway",
        description=(
            "Aggregated reads over ingested time-series measurements.\n\n"
            "Errors use the standardized shape `{error, details, status}`."
        ),
        version="1.0.0",
    )
    app.state.components = components

    @app.exception_handler(StatusError)
    async def status_error_handler(_: Request, exc: StatusError):
        return error_response(exc.code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        return error_response(StatusCode.INVALID_ARGUMENT, _flatten_validation_errors(exc))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_: Request, exc: Exception):
        logger.error(f"Unhandled API exception: {exc}", exc_info=True)
        return error_response(StatusCode.INTERNAL, "Unexpected server error")

    @app.post(
        "/v1/timeseries/query",
        response_model=TimeSeriesResponse,
        responses=ERROR_RESPONSES,
        summary="Query aggregated time series",
    )
    def query_time_series(
        payload: TimeSeriesRequest,
        x_request_id: Optional[str] = Header(None),
        x_request_timeout: Optional[float] = Header(None, gt=0),
    ):
        """Run the query through the interceptor chain. Executes on the worker thread pool."""
        timeout = x_request_timeout or components.request_timeout_seconds
        ctx = RequestContext(request_id=x_request_id).with_timeout(timeout)
        return components.pipeline(ctx, payload, CallInfo(QUERY_TIME_SERIES_METHOD))

    @app.get("/v1/health", response_model=HealthCheckResponse, responses=ERROR_RESPONSES, summary="Health check")
    def health_check(service: str = Query("")):
        return HealthCheckResponse(status=components.health.check(service).value)

    @app.get("/v1/health/watch", responses=ERROR_RESPONSES, summary="Health watch (unsupported)")
    def health_watch(service: str = Query("")):
        components.health.watch(service)

    @app.get("/metrics", response_model=MetricsResponse, summary="Runtime metrics")
    def metrics():
        obs = components.observability
        return {
            "service": SERVICE,
            "process_started_at": obs.process_started_at,
            "uptime_seconds": round(obs.uptime_seconds(), 3),
            "methods": components.metrics.method_status(),
            "cache": components.cache.metrics(),
            "ingestion": {
                "last_successful_write": obs.last_successful_ingestion,
                "seconds_since_last_successful_write": obs.seconds_since_last_ingestion(),
                "points_written": obs.points_written,
            },
        }

    return app
