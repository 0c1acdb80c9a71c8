from datetime import datetime, timedelta, timezone

from tsgateway.internal_metrics import MetricsCollector
from tsgateway.observability import RuntimeObservability


def test_metrics_counters_increment():
    m = MetricsCollector()
    m.record_request("QueryTimeSeries", success=True, latency_ms=100)
    m.record_request("QueryTimeSeries", success=False, latency_ms=200)

    status = m.method_status()["QueryTimeSeries"]
    assert status["total_requests"] == 2
    assert status["successful_requests"] == 1
    assert status["failed_requests"] == 1
    assert status["failure_rate"] == 0.5
    assert status["average_latency_ms"] == 150.0
    assert status["max_latency_ms"] == 200.0
    assert status["last_latency_ms"] == 200.0


def test_ingestion_heartbeat():
    obs = RuntimeObservability()
    assert obs.seconds_since_last_ingestion() is None

    obs.mark_ingestion_success(12, datetime.now(timezone.utc) - timedelta(seconds=30))
    assert obs.points_written == 12
    assert 29 <= obs.seconds_since_last_ingestion() < 60
