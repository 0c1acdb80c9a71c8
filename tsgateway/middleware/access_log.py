from __future__ import annotations

import logging

from tsgateway.observability import RequestTimer

logger = logging.getLogger(__name__)


class LoggingInterceptor:
    """Logs every admitted call once it completes, successful or not."""

    def __call__(self, ctx, request, info, handler):
        timer = RequestTimer()
        error = None
        try:
            return handler(ctx, request)
        except Exception as exc:
            error = exc
            raise
        finally:
            elapsed_ms = timer.elapsed_ms()
            fields = {
                "method": info.full_method,
                "request_id": ctx.request_id,
                "duration_ms": round(elapsed_ms, 3),
            }
            if error is None:
                logger.info(f"{info.full_method} completed in {elapsed_ms:.3f}ms", extra=fields)
            else:
                logger.warning(
                    f"{info.full_method} failed in {elapsed_ms:.3f}ms: {error}",
                    extra={**fields, "error": str(error)},
                )
