from __future__ import annotations

from tsgateway.cache.lru_cache import LRUCache
from tsgateway.internal_metrics import MetricsCollector
from tsgateway.middleware.access_log import LoggingInterceptor
from tsgateway.middleware.caching import CacheInterceptor
from tsgateway.middleware.chain import Handler, Pipeline
from tsgateway.middleware.metrics import MetricsInterceptor
from tsgateway.middleware.rate_limiter import RateLimitInterceptor, TokenBucket
from tsgateway.middleware.request_id import RequestIdInterceptor


def default_interceptors(cache: LRUCache, limiter: TokenBucket, collector: MetricsCollector) -> list:
    """
    The fixed interceptor order, outermost first.

    Rejected calls never reach logging, metrics or the cache.
    """
    return [
        RequestIdInterceptor(),
        RateLimitInterceptor(limiter),
        LoggingInterceptor(),
        MetricsInterceptor(collector),
        CacheInterceptor(cache),
    ]


def build_pipeline(
    handler: Handler,
    cache: LRUCache,
    limiter: TokenBucket,
    collector: MetricsCollector,
) -> Pipeline:
    return Pipeline(default_interceptors(cache, limiter, collector), handler)
