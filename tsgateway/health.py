from __future__ import annotations

from enum import Enum
from threading import Lock

from tsgateway.errors import StatusCode, StatusError

SERVICE_NAME = "timeseries.TimeSeriesService"


class ServingStatus(str, Enum):
    SERVING = "SERVING"
    NOT_SERVING = "NOT_SERVING"


class HealthChecker:
    """Serving status keyed by service name; the empty name is the whole server."""

    def __init__(self):
        self._status: dict[str, ServingStatus] = {}
        self._lock = Lock()

    def set_serving_status(self, service: str, status: ServingStatus):
        with self._lock:
            self._status[service] = status

    def set_all(self, status: ServingStatus):
        with self._lock:
            for service in self._status:
                self._status[service] = status

    def check(self, service: str = "") -> ServingStatus:
        with self._lock:
            status = self._status.get(service)
        if status is None:
            raise StatusError(StatusCode.NOT_FOUND, "unknown service")
        return status

    def watch(self, service: str = ""):
        raise StatusError(StatusCode.UNIMPLEMENTED, "watching is not supported")
