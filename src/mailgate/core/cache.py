"""Bounded response cache for idempotent reads.

Entries expire lazily on read. When full, the entry that was inserted
first is evicted (FIFO by insertion; reads do not reorder or refresh).
Only the executor's GET path reads and writes this cache.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    def __init__(
        self,
        max_size: int = 1000,
        ttl_s: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        ttl = self.ttl_s if ttl_s is None else ttl_s
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def build_cache_key(
    method: str,
    path: str,
    query: Mapping[str, Any] | None,
    scope: str = "",
) -> str:
    """Key on the full (method, path, query) tuple, plus the caller's scope.

    Null query values are dropped (they are never sent) and keys are sorted
    so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` share an entry. ``scope``
    separates reads made under different workspace/provider headers.
    """
    normalized = {
        k: v for k, v in sorted((query or {}).items()) if v is not None
    }
    key = f"{method.upper()}:{path}:{json.dumps(normalized, sort_keys=True, default=str)}"
    return f"{scope}|{key}" if scope else key
