"""
Interceptor composition for unary calls.

An interceptor is any callable ``(ctx, request, info, handler) -> response``
where ``handler(ctx, request)`` invokes the rest of the chain. Interceptors may
short-circuit, derive a new context for downstream stages, or observe the
outcome after ``handler`` returns.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Sequence

from tsgateway.context import RequestContext

Handler = Callable[[RequestContext, Any], Any]
Interceptor = Callable[[RequestContext, Any, "CallInfo", Handler], Any]


@dataclass(frozen=True)
class CallInfo:
    """Metadata for the call being handled."""

    full_method: str

    @property
    def method(self) -> str:
        """Base name of the method, e.g. ``QueryTimeSeries``."""
        return self.full_method.rsplit("/", 1)[-1]


def chain_interceptors(*interceptors: Interceptor) -> Interceptor:
    """Fold interceptors right-to-left; the first one runs outermost."""

    def chained(ctx: RequestContext, request: Any, info: CallInfo, handler: Handler) -> Any:
        call = handler
        for interceptor in reversed(interceptors):
            call = _bind(interceptor, info, call)
        return call(ctx, request)

    return chained


def _bind(interceptor: Interceptor, info: CallInfo, downstream: Handler) -> Handler:
    def call(ctx: RequestContext, request: Any) -> Any:
        return interceptor(ctx, request, info, downstream)

    return call


class Pipeline:
    """A fixed interceptor chain bound to a single handler."""

    def __init__(self, interceptors: Sequence[Interceptor], handler: Handler):
        self.interceptors = tuple(interceptors)
        self.handler = handler
        self._chain = chain_interceptors(*self.interceptors)

    def __call__(self, ctx: RequestContext, request: Any, info: CallInfo) -> Any:
        return self._chain(ctx, request, info, self.handler)
