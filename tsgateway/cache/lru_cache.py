from __future__ import annotations

import dataclasses
import json
from collections import OrderedDict
from collections.abc import Mapping
from threading import Lock
from typing import Any

DEFAULT_CAPACITY = 1000


class LRUCache:
    """Bounded map that evicts the least recently used entry when full."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if not isinstance(capacity, int) or capacity <= 0:
            raise ValueError(f"cache capacity must be a positive integer, got {capacity!r}")
        self.capacity = capacity
        self._store: OrderedDict[str, Any] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._lock = Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._store:
                self._misses += 1
                return None
            self._store.move_to_end(key)
            self._hits += 1
            return self._store[key]

    def contains(self, key: str) -> bool:
        """Check for a key without touching recency or hit counters."""
        with self._lock:
            return key in self._store

    def set(self, key: str, value: Any):
        with self._lock:
            if key in self._store:
                self._store.move_to_end(key)
                self._store[key] = value
                return
            if len(self._store) >= self.capacity:
                self._store.popitem(last=False)
                self._evictions += 1
            self._store[key] = value

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def metrics(self) -> dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "size": len(self._store),
                "capacity": self.capacity,
            }


def _payload(request: Any) -> Any:
    if hasattr(request, "model_dump"):
        return request.model_dump(mode="json")
    if dataclasses.is_dataclass(request) and not isinstance(request, type):
        return dataclasses.asdict(request)
    if isinstance(request, Mapping):
        return dict(request)
    return request


def generate_cache_key(method: str, request: Any) -> str:
    """Deterministic fingerprint of a call; field order does not matter."""
    body = json.dumps(_payload(request), sort_keys=True, default=str, separators=(",", ":"))
    return f"{method}:{body}"
