from __future__ import annotations

from tsgateway.internal_metrics import MetricsCollector
from tsgateway.observability import RequestTimer


class MetricsInterceptor:
    """Counts calls and observes downstream latency per method, including failures."""

    def __init__(self, collector: MetricsCollector):
        self.collector = collector

    def __call__(self, ctx, request, info, handler):
        timer = RequestTimer()
        success = False
        try:
            response = handler(ctx, request)
            success = True
            return response
        finally:
            self.collector.record_request(info.method, success=success, latency_ms=timer.elapsed_ms())
