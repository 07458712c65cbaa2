"""In-process metrics for the request core.

Tracks:
  - Request outcome counters (success, failed, retries, cache hits)
  - Latency and response-size histograms for every upstream call
  - Catalog loading and planner fallback counters

One collector per gateway process. Nothing is pushed anywhere; the
``get_metrics`` tool and the health check read plain-dict snapshots.
Writes go through an asyncio.Lock; the _sync_* helpers skip it for
callers that are not inside the event loop.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Histograms
# ---------------------------------------------------------------------------

# Upper bounds, ms.
_LATENCY_BUCKETS_MS: tuple[float, ...] = (
    5, 10, 25, 50, 100, 200, 500, 1_000, 2_000, 5_000,
    10_000, 20_000, 30_000, 60_000, float("inf"),
)

# Upper bounds, bytes.
_SIZE_BUCKETS_BYTES: tuple[float, ...] = (
    128, 512, 1_024, 4_096, 16_384, 65_536, 262_144, 1_048_576, float("inf"),
)


@dataclass
class Histogram:
    """Lightweight histogram backed by fixed buckets + running stats."""

    name: str
    bounds: tuple[float, ...] = _LATENCY_BUCKETS_MS
    _buckets: list[int] = field(default_factory=list)
    _count: int = 0
    _sum: float = 0.0
    _min: float = float("inf")
    _max: float = 0.0

    def __post_init__(self) -> None:
        if not self._buckets:
            self._buckets = [0] * len(self.bounds)

    def record(self, value: float) -> None:
        self._count += 1
        self._sum += value
        self._min = min(self._min, value)
        self._max = max(self._max, value)
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self._buckets[i] += 1
                break

    @property
    def count(self) -> int:
        return self._count

    @property
    def mean(self) -> float:
        return self._sum / self._count if self._count else 0.0

    def percentile(self, p: float) -> float:
        """Approximate the p-th percentile, interpolating inside the hit bucket."""
        if self._count == 0:
            return 0.0
        target = math.ceil(p / 100 * self._count)
        cumulative = 0
        prev_bound = 0.0
        for i, bound in enumerate(self.bounds):
            cumulative += self._buckets[i]
            if cumulative >= target:
                bucket_count = self._buckets[i]
                if bucket_count == 0:
                    return bound
                frac = (target - (cumulative - bucket_count)) / bucket_count
                upper = bound if not math.isinf(bound) else self._max
                return prev_bound + frac * (upper - prev_bound)
            prev_bound = bound
        return self._max

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self._count,
            "sum": round(self._sum, 2),
            "min": round(self._min, 2) if self._count else 0,
            "max": round(self._max, 2),
            "mean": round(self.mean, 2),
            "p50": round(self.percentile(50), 2),
            "p95": round(self.percentile(95), 2),
            "p99": round(self.percentile(99), 2),
            "buckets": {
                str(b) if not math.isinf(b) else "+Inf": self._buckets[i]
                for i, b in enumerate(self.bounds)
            },
        }

    def reset(self) -> None:
        self._buckets = [0] * len(self.bounds)
        self._count = 0
        self._sum = 0.0
        self._min = float("inf")
        self._max = 0.0


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------

class MetricsCollector:
    """Process-global metrics registry.

    Attributes tracked
    ------------------
    Counters:
        api_requests_success             Upstream calls that returned 2xx
        api_requests_failed              Calls that ended in a terminal error
        api_errors_by_kind[kind]         Terminal errors by error class
        api_retries_total                Backoff sleeps taken
        cache_hits                       GETs answered from the cache
        endpoints_loaded                 Catalog entries loaded at startup
        endpoint_load_errors             Catalog load failures
        planner_fallbacks_total          Reasoning plans replaced by rules

    Histograms:
        api_request_duration_ms          Full executor call, retries included
        api_response_size_bytes          Raw response body size
        endpoint_load_duration_ms        Catalog fetch time
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

        self._counters: dict[str, int] = defaultdict(int)
        self._labeled_counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))

        self._histograms: dict[str, Histogram] = {
            "api_request_duration_ms": Histogram("api_request_duration_ms"),
            "api_response_size_bytes": Histogram(
                "api_response_size_bytes", bounds=_SIZE_BUCKETS_BYTES,
            ),
            "endpoint_load_duration_ms": Histogram("endpoint_load_duration_ms"),
        }

        self._started_at: float = time.monotonic()

    # ------------------------------------------------------------------
    # Locked writes
    # ------------------------------------------------------------------

    async def inc(self, name: str, value: int = 1) -> None:
        async with self._lock:
            self._counters[name] += value

    async def inc_labeled(self, name: str, label: str, value: int = 1) -> None:
        """Increment a labeled counter (e.g. api_errors_by_kind[ApiError])."""
        async with self._lock:
            self._labeled_counters[name][label] += value

    async def record(self, histogram: str, value: float) -> None:
        """Record a value in a named histogram; unknown names are ignored."""
        async with self._lock:
            if histogram in self._histograms:
                self._histograms[histogram].record(value)

    # ------------------------------------------------------------------
    # Unlocked writes
    # ------------------------------------------------------------------

    def _sync_inc(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def _sync_inc_labeled(self, name: str, label: str, value: int = 1) -> None:
        self._labeled_counters[name][label] += value

    def _sync_record(self, histogram: str, value: float) -> None:
        if histogram in self._histograms:
            self._histograms[histogram].record(value)

    # ------------------------------------------------------------------
    # Named semantic helpers used by the executor
    # ------------------------------------------------------------------

    async def request_succeeded(self, duration_ms: float, size_bytes: int) -> None:
        await self.inc("api_requests_success")
        await self.record("api_request_duration_ms", duration_ms)
        await self.record("api_response_size_bytes", size_bytes)

    async def request_failed(self, kind: str, duration_ms: float) -> None:
        await self.inc("api_requests_failed")
        await self.inc_labeled("api_errors_by_kind", kind)
        await self.record("api_request_duration_ms", duration_ms)

    async def cache_hit(self, duration_ms: float) -> None:
        await self.inc("cache_hits")
        await self.record("api_request_duration_ms", duration_ms)

    async def retry_scheduled(self) -> None:
        await self.inc("api_retries_total")

    # ------------------------------------------------------------------
    # Snapshot / export
    # ------------------------------------------------------------------

    async def snapshot(self) -> dict[str, Any]:
        """Copy of every counter and histogram, taken under the lock."""
        async with self._lock:
            return self._build_snapshot()

    def snapshot_sync(self) -> dict[str, Any]:
        """Sync snapshot for tests / health check sync callers."""
        return self._build_snapshot()

    def _build_snapshot(self) -> dict[str, Any]:
        uptime_s = round(time.monotonic() - self._started_at, 1)
        return {
            "uptime_seconds": uptime_s,
            "counters": dict(self._counters),
            "labeled_counters": {k: dict(v) for k, v in self._labeled_counters.items()},
            "histograms": {k: v.to_dict() for k, v in self._histograms.items()},
        }

    def success_rate(self) -> float:
        ok = self._counters.get("api_requests_success", 0)
        failed = self._counters.get("api_requests_failed", 0)
        total = ok + failed
        return ok / total if total else 0.0

    def reset_all(self) -> None:
        """Reset all metrics; intended for tests only."""
        self._counters.clear()
        for v in self._labeled_counters.values():
            v.clear()
        for h in self._histograms.values():
            h.reset()


# ---------------------------------------------------------------------------
# Shared instance
# ---------------------------------------------------------------------------

_collector: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Collector shared by every gateway built in this process."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
