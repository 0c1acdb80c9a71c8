from datetime import datetime, timedelta, timezone

import pytest

from fakes import InMemoryRepository
from tsgateway.context import RequestContext
from tsgateway.errors import StatusCode, StatusError, StoreError
from tsgateway.models import TimeSeriesPoint
from tsgateway.schemas import TimeSeriesRequest
from tsgateway.service import TimeSeriesService

T = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _request(**overrides):
    fields = {"start": T - timedelta(hours=2), "end": T, "window": "1h", "aggregation": "AVG"}
    fields.update(overrides)
    return TimeSeriesRequest(**fields)


def test_success_maps_points_in_store_order():
    repo = InMemoryRepository(
        points=[
            TimeSeriesPoint(T - timedelta(minutes=90), 100.0),
            TimeSeriesPoint(T - timedelta(minutes=30), 200.0),
        ]
    )
    response = TimeSeriesService(repo).query_time_series(RequestContext(), _request())

    assert [p.value for p in response.data] == [100.0, 200.0]
    assert [p.time for p in response.data] == [T - timedelta(hours=2), T - timedelta(hours=1)]
    assert repo.query_calls == [(T - timedelta(hours=2), T, "1h", "AVG")]


def test_empty_buckets_are_omitted():
    repo = InMemoryRepository(points=[TimeSeriesPoint(T - timedelta(minutes=10), 1.0)])
    response = TimeSeriesService(repo).query_time_series(RequestContext(), _request())
    assert len(response.data) == 1


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"window": "invalid"}, "invalid window: invalid"),
        ({"aggregation": "INVALID"}, "invalid aggregation: INVALID"),
        ({"aggregation": ""}, "invalid aggregation"),
        ({"start": T + timedelta(hours=1)}, "start time must be before end time"),
        ({"start": None}, "missing timestamp"),
    ],
)
def test_validation_errors_are_invalid_argument(overrides, message):
    repo = InMemoryRepository()
    with pytest.raises(StatusError) as exc:
        TimeSeriesService(repo).query_time_series(RequestContext(), _request(**overrides))

    assert exc.value.code == StatusCode.INVALID_ARGUMENT
    assert exc.value.message == message
    assert repo.query_calls == []


def test_store_failure_is_internal():
    repo = InMemoryRepository(query_error=StoreError("connection reset"))
    with pytest.raises(StatusError) as exc:
        TimeSeriesService(repo).query_time_series(RequestContext(), _request())

    assert exc.value.code == StatusCode.INTERNAL
    assert exc.value.message == "query failed: connection reset"
    assert isinstance(exc.value.__cause__, StoreError)


def test_cancelled_context_never_reaches_store():
    repo = InMemoryRepository()
    ctx = RequestContext()
    ctx.cancel()
    with pytest.raises(StatusError) as exc:
        TimeSeriesService(repo).query_time_series(ctx, _request())

    assert exc.value.code == StatusCode.CANCELLED
    assert repo.query_calls == []


def test_expired_deadline():
    ctx = RequestContext().with_timeout(-1)
    with pytest.raises(StatusError) as exc:
        TimeSeriesService(InMemoryRepository()).query_time_series(ctx, _request())
    assert exc.value.code == StatusCode.DEADLINE_EXCEEDED
