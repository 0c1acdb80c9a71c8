from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

current_request_id: ContextVar[Optional[str]] = ContextVar("current_request_id", default=None)


def generate_request_id() -> str:
    return str(uuid.uuid4())


class RequestIdInterceptor:
    """Tags the call with a request id visible to every later stage and log line."""

    def __call__(self, ctx, request, info, handler):
        request_id = ctx.request_id or generate_request_id()
        token = current_request_id.set(request_id)
        try:
            return handler(ctx.with_request_id(request_id), request)
        finally:
            current_request_id.reset(token)


class RequestIdLogFilter(logging.Filter):
    """Adds ``request_id`` to every record; ``-`` outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = current_request_id.get() or "-"
        return True
