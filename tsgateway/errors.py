"""
Error taxonomy for the query gateway.

Caller-visible failures are raised as ``StatusError`` carrying a ``StatusCode``;
component failures (upstream, store, lifecycle) are plain exception classes that
get translated at the component boundary.
"""
from __future__ import annotations

from enum import Enum


class StatusCode(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    NOT_FOUND = "not_found"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    INTERNAL = "internal"
    UNIMPLEMENTED = "unimplemented"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    StatusCode.INVALID_ARGUMENT: 400,
    StatusCode.NOT_FOUND: 404,
    StatusCode.RESOURCE_EXHAUSTED: 429,
    StatusCode.CANCELLED: 499,
    StatusCode.INTERNAL: 500,
    StatusCode.UNIMPLEMENTED: 501,
    StatusCode.DEADLINE_EXCEEDED: 504,
}


class StatusError(Exception):
    """Error returned to callers with a stable code and message."""

    def __init__(self, code: StatusCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"StatusError(code={self.code.value}, message={self.message!r})"


class ValidationError(ValueError):
    """A query failed request validation."""


class UpstreamError(Exception):
    """The ingestion source could not be read."""


class UpstreamRequestError(UpstreamError):
    """The upstream request could not be completed (DNS, connect, timeout)."""


class UpstreamStatusError(UpstreamError):
    """The upstream answered with a non-2xx status."""

    def __init__(self, status_code: int):
        super().__init__(f"error status from API: got {status_code}")
        self.status_code = status_code


class StoreError(Exception):
    """A repository query or insert failed."""


class LifecycleError(Exception):
    """A component failed in a way that requires the process to stop."""
