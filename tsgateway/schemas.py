"""
Pydantic schemas for API request/response validation.
Defines the contract between the gateway and its consumers.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standardized error payload for all API and validation errors."""

    error: str
    details: str
    status: int

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "invalid_argument",
                "details": "invalid window: 2h",
                "status": 400,
            }
        }
    }


class TimeSeriesRequest(BaseModel):
    """
    Query for aggregated data.

    Window and aggregation are plain optional strings so that the request
    validator owns every error message; absent timestamps are reported as missing.
    """

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    window: Optional[str] = None
    aggregation: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "start": "2024-01-01T00:00:00Z",
                "end": "2024-01-02T00:00:00Z",
                "window": "1h",
                "aggregation": "AVG",
            }
        }
    }


class TimeSeriesDataPoint(BaseModel):
    time: datetime
    value: float


class TimeSeriesResponse(BaseModel):
    """Aggregated points ordered by bucket start."""

    data: List[TimeSeriesDataPoint] = Field(default_factory=list)


class HealthCheckResponse(BaseModel):
    status: str


class MethodMetricsResponse(BaseModel):
    total_requests: int
    successful_requests: int
    failed_requests: int
    failure_rate: float
    average_latency_ms: float
    max_latency_ms: float
    last_latency_ms: float


class CacheMetricsResponse(BaseModel):
    hits: int
    misses: int
    evictions: int
    size: int
    capacity: int


class IngestionMetricsResponse(BaseModel):
    last_successful_write: Optional[datetime] = None
    seconds_since_last_successful_write: Optional[float] = None
    points_written: int


class MetricsResponse(BaseModel):
    """Runtime metrics for the request pipeline and ingestion."""

    service: str
    process_started_at: datetime
    uptime_seconds: float
    methods: Dict[str, MethodMetricsResponse]
    cache: CacheMetricsResponse
    ingestion: IngestionMetricsResponse
