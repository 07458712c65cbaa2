"""Pytest configuration and shared fixtures.

Run with:
    pytest tests/                       # Run all tests
    pytest tests/test_executor.py -v    # Run specific test file

Upstream traffic is scripted with ``httpx.MockTransport``; time is faked
through injected clock/sleep callables so nothing waits for real.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from mailgate.core.cache import TTLCache
from mailgate.core.context import ContextStore, RequestContext, ServiceProvider
from mailgate.core.executor import RequestExecutor
from mailgate.core.rate_limiter import SlidingWindowRateLimiter
from mailgate.observability.metrics import MetricsCollector

API_BASE = "https://api.test/api"
DOCS_BASE = "https://docs.test"


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep double: records delays and advances an optional clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class ScriptedUpstream:
    """MockTransport handler that replays queued responses and logs requests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[Any]] = {}
        self._default: list[Any] = []

    def add(self, method: str, path: str, *responses: Any) -> ScriptedUpstream:
        self._routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def queue(self, *responses: Any) -> ScriptedUpstream:
        self._default.extend(responses)
        return self

    def calls_to(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self._routes.get((request.method, request.url.path)) or self._default
        if not queue:
            return httpx.Response(404, json={"message": f"no route for {request.url.path}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        status, payload = item
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, json=payload)


def json_body(request: httpx.Request) -> Any:
    return json.loads(request.content) if request.content else None


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sleeper(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture()
def upstream() -> ScriptedUpstream:
    return ScriptedUpstream()


@pytest.fixture()
def http_client(upstream: ScriptedUpstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture()
def context_store() -> ContextStore:
    return ContextStore(RequestContext("ws-default", ServiceProvider.GOOGLE))


@pytest.fixture()
def metrics() -> MetricsCollector:
    """Fresh MetricsCollector for each test (avoids global state bleed)."""
    return MetricsCollector()


@pytest.fixture()
def make_executor(
    http_client: httpx.AsyncClient,
    context_store: ContextStore,
    clock: FakeClock,
    sleeper: RecordingSleep,
    metrics: MetricsCollector,
) -> Callable[..., RequestExecutor]:
    def _make(**overrides: Any) -> RequestExecutor:
        options: dict[str, Any] = {
            "api_key": "test-key",
            "base_url": API_BASE,
            "context_store": context_store,
            "client": http_client,
            "cache": TTLCache(100, 300.0, clock=clock),
            "rate_limiter": SlidingWindowRateLimiter(1000, 60.0, clock=clock, sleep=sleeper),
            "metrics": metrics,
            "timeout_s": 5.0,
            "max_retries": 3,
            "sleep": sleeper,
        }
        options.update(overrides)
        return RequestExecutor(**options)

    return _make
