"""Metrics instrumentation tests.

These tests run entirely in-process (no upstream, no event-loop tricks).
They verify:
  1. Histogram bucket placement, running stats and percentile estimates
  2. Counter increment semantics (plain + labeled)
  3. Semantic helpers called by the executor
  4. Snapshot structure, success rate and reset_all()
"""

from __future__ import annotations

import pytest

from mailgate.observability.metrics import (
    Histogram,
    MetricsCollector,
    _LATENCY_BUCKETS_MS,
    _SIZE_BUCKETS_BYTES,
    get_metrics,
)


@pytest.fixture()
def mc() -> MetricsCollector:
    """Fresh MetricsCollector for each test (avoids global state bleed)."""
    return MetricsCollector()


# ---------------------------------------------------------------------------
# Histogram unit tests
# ---------------------------------------------------------------------------


class TestHistogram:
    def test_count_increases(self):
        h = Histogram("test")
        assert h.count == 0
        h.record(50)
        h.record(100)
        assert h.count == 2

    def test_bucket_placement(self):
        h = Histogram("test")
        h.record(5)
        assert h._buckets[0] == 1
        h.record(1000)
        assert h._buckets[_LATENCY_BUCKETS_MS.index(1000)] == 1

    def test_above_max_bucket_goes_to_inf(self):
        h = Histogram("test")
        h.record(1_000_000)
        assert h._buckets[_LATENCY_BUCKETS_MS.index(float("inf"))] == 1

    def test_size_bounds(self):
        h = Histogram("size", bounds=_SIZE_BUCKETS_BYTES)
        h.record(600)
        assert h._buckets[_SIZE_BUCKETS_BYTES.index(1_024)] == 1

    def test_mean(self):
        h = Histogram("test")
        h.record(100)
        h.record(200)
        assert abs(h.mean - 150.0) < 0.01

    def test_percentile_within_bucket(self):
        h = Histogram("test")
        for _ in range(10):
            h.record(40)
        # all samples sit in the (25, 50] bucket
        assert 25 <= h.percentile(50) <= 50

    def test_empty_percentile_is_zero(self):
        assert Histogram("test").percentile(99) == 0.0

    def test_to_dict_keys(self):
        h = Histogram("test")
        h.record(10)
        d = h.to_dict()
        assert {"count", "sum", "min", "max", "mean", "p50", "p95", "p99", "buckets"} <= set(d)
        assert "+Inf" in d["buckets"]

    def test_reset(self):
        h = Histogram("test")
        h.record(10)
        h.reset()
        assert h.count == 0
        assert h.to_dict()["min"] == 0


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class TestCounters:
    @pytest.mark.asyncio
    async def test_inc(self, mc):
        await mc.inc("endpoints_loaded", 3)
        await mc.inc("endpoints_loaded")
        assert mc.snapshot_sync()["counters"]["endpoints_loaded"] == 4

    @pytest.mark.asyncio
    async def test_inc_labeled(self, mc):
        await mc.inc_labeled("api_errors_by_kind", "ApiError")
        await mc.inc_labeled("api_errors_by_kind", "ApiError")
        await mc.inc_labeled("api_errors_by_kind", "NetworkError")
        labeled = mc.snapshot_sync()["labeled_counters"]["api_errors_by_kind"]
        assert labeled == {"ApiError": 2, "NetworkError": 1}

    @pytest.mark.asyncio
    async def test_unknown_histogram_ignored(self, mc):
        await mc.record("nope", 10)
        assert "nope" not in mc.snapshot_sync()["histograms"]

    def test_sync_and_async_paths_agree(self, mc):
        mc._sync_inc("cache_hits")
        mc._sync_inc_labeled("api_errors_by_kind", "ApiError")
        mc._sync_record("api_request_duration_ms", 12)
        snap = mc.snapshot_sync()
        assert snap["counters"]["cache_hits"] == 1
        assert snap["labeled_counters"]["api_errors_by_kind"]["ApiError"] == 1
        assert snap["histograms"]["api_request_duration_ms"]["count"] == 1


class TestSemanticHelpers:
    @pytest.mark.asyncio
    async def test_request_succeeded(self, mc):
        await mc.request_succeeded(120.0, 2048)
        snap = await mc.snapshot()
        assert snap["counters"]["api_requests_success"] == 1
        assert snap["histograms"]["api_request_duration_ms"]["count"] == 1
        assert snap["histograms"]["api_response_size_bytes"]["count"] == 1

    @pytest.mark.asyncio
    async def test_request_failed(self, mc):
        await mc.request_failed("NetworkError", 900.0)
        snap = await mc.snapshot()
        assert snap["counters"]["api_requests_failed"] == 1
        assert snap["labeled_counters"]["api_errors_by_kind"] == {"NetworkError": 1}

    @pytest.mark.asyncio
    async def test_cache_hit_and_retry(self, mc):
        await mc.cache_hit(0.2)
        await mc.retry_scheduled()
        counters = (await mc.snapshot())["counters"]
        assert counters["cache_hits"] == 1
        assert counters["api_retries_total"] == 1

    @pytest.mark.asyncio
    async def test_success_rate(self, mc):
        assert mc.success_rate() == 0.0
        await mc.request_succeeded(1, 1)
        await mc.request_succeeded(1, 1)
        await mc.request_succeeded(1, 1)
        await mc.request_failed("ApiError", 1)
        assert mc.success_rate() == 0.75


class TestSnapshot:
    def test_structure(self, mc):
        snap = mc.snapshot_sync()
        assert set(snap) == {"uptime_seconds", "counters", "labeled_counters", "histograms"}
        assert set(snap["histograms"]) == {
            "api_request_duration_ms",
            "api_response_size_bytes",
            "endpoint_load_duration_ms",
        }

    @pytest.mark.asyncio
    async def test_reset_all(self, mc):
        await mc.request_failed("ApiError", 5)
        mc.reset_all()
        snap = mc.snapshot_sync()
        assert snap["counters"] == {}
        assert snap["labeled_counters"]["api_errors_by_kind"] == {}
        assert snap["histograms"]["api_request_duration_ms"]["count"] == 0

    def test_global_singleton(self):
        assert get_metrics() is get_metrics()
