from __future__ import annotations

from dataclasses import dataclass
from threading import Lock


@dataclass
class MethodMetrics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    latency_total_ms: float = 0.0
    latency_max_ms: float = 0.0
    latency_last_ms: float = 0.0

    def avg_latency_ms(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.latency_total_ms / self.total_requests


class MetricsCollector:
    """Per-method request counters and latency observations."""

    def __init__(self):
        self._per_method: dict[str, MethodMetrics] = {}
        self._lock = Lock()

    def _get(self, method: str) -> MethodMetrics:
        if method not in self._per_method:
            self._per_method[method] = MethodMetrics()
        return self._per_method[method]

    def record_request(self, method: str, success: bool, latency_ms: float):
        latency_ms = max(latency_ms, 0.0)
        with self._lock:
            m = self._get(method)
            m.total_requests += 1
            m.latency_total_ms += latency_ms
            m.latency_last_ms = latency_ms
            if latency_ms > m.latency_max_ms:
                m.latency_max_ms = latency_ms
            if success:
                m.successful_requests += 1
            else:
                m.failed_requests += 1

    def method_status(self) -> dict[str, dict[str, float | int]]:
        with self._lock:
            out: dict[str, dict[str, float | int]] = {}
            for method, m in self._per_method.items():
                failure_rate = 0.0 if m.total_requests == 0 else (m.failed_requests / m.total_requests)
                out[method] = {
                    "total_requests": m.total_requests,
                    "successful_requests": m.successful_requests,
                    "failed_requests": m.failed_requests,
                    "failure_rate": round(failure_rate, 4),
                    "average_latency_ms": round(m.avg_latency_ms(), 3),
                    "max_latency_ms": round(m.latency_max_ms, 3),
                    "last_latency_ms": round(m.latency_last_ms, 3),
                }
            return out
