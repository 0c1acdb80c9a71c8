from __future__ import annotations

import logging

from tsgateway.cache.lru_cache import LRUCache, generate_cache_key

logger = logging.getLogger(__name__)


class CacheInterceptor:
    """
    Serves repeated calls from the LRU cache.

    Only responses that downstream returned normally are stored; a raised error
    leaves the cache untouched.
    """

    def __init__(self, cache: LRUCache):
        self.cache = cache

    def __call__(self, ctx, request, info, handler):
        key = generate_cache_key(info.full_method, request)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit", extra={"method": info.full_method, "request_id": ctx.request_id})
            return cached

        response = handler(ctx, request)
        self.cache.set(key, response)
        return response
