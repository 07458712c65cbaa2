"""Request executor: the single funnel for every upstream Zapmail call.

Pipeline per call:
    validate → rate-limit gate → cache lookup (GET only) → credential check
    → build URL/headers/body → HTTP attempt(s) with per-attempt timeout
    → parse → cache populate → metrics + one structured log line

Retry policy (tenacity):
    - HTTP 429 / 5xx: up to ``max_retries`` extra attempts, waiting
      ``min(2.5 * n, 9.0)`` seconds after the n-th failed attempt.
    - Timeouts / connection errors: same budget, waiting ``0.7 * n`` seconds.
    - Everything else (4xx, bad input, missing key) fails immediately.
    After the budget is spent the last error is re-raised unchanged, so an
    exhausted 429 surfaces as ``ApiError(status=429)``.
"""

from __future__ import annotations

import asyncio
import json
import secrets
import time
from typing import Any, Awaitable, Callable, Mapping

import certifi
import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from mailgate.core.cache import TTLCache, build_cache_key
from mailgate.core.context import ContextStore, RequestContext
from mailgate.core.errors import (
    ApiError,
    ConfigurationError,
    NetworkError,
    ValidationError,
)
from mailgate.core.rate_limiter import DEFAULT_KEY, SlidingWindowRateLimiter
from mailgate.core.validation import validate_string
from mailgate.observability.metrics import MetricsCollector

logger = structlog.get_logger()

READ_METHOD = "GET"

_STATUS_BACKOFF_S = 2.5
_STATUS_BACKOFF_CAP_S = 9.0
_NETWORK_BACKOFF_S = 0.7


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, NetworkError):
        return True
    return isinstance(exc, ApiError) and exc.is_transient


def backoff_seconds(retry_state: RetryCallState) -> float:
    """Delay after the ``attempt_number``-th failed attempt."""
    n = retry_state.attempt_number
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, NetworkError):
        return _NETWORK_BACKOFF_S * n
    return min(_STATUS_BACKOFF_S * n, _STATUS_BACKOFF_CAP_S)


def _encode_query(query: Mapping[str, Any] | None) -> dict[str, str]:
    params: dict[str, str] = {}
    for key, value in (query or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            params[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple)):
            params[key] = ",".join(str(v) for v in value)
        else:
            params[key] = str(value)
    return params


def _parse_json(text: str) -> Any | None:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


class RequestExecutor:
    """Executes upstream calls with caching, throttling, retries and telemetry."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        context_store: ContextStore,
        client: httpx.AsyncClient | None = None,
        cache: TTLCache | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        metrics: MetricsCollector | None = None,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._context_store = context_store
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            verify=certifi.where(),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        self.cache = cache
        self._rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self._metrics = metrics
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._sleep = sleep

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def clear_cache(self) -> bool:
        """Drop every cached read. Returns False when caching is disabled."""
        if self.cache is None:
            return False
        self.cache.clear()
        logger.info("api_cache_cleared")
        return True

    def _build_url(self, path: str) -> str:
        return f"{self._base_url}{path if path.startswith('/') else '/' + path}"

    async def execute(
        self,
        path: str,
        method: str = READ_METHOD,
        *,
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        context: RequestContext | None = None,
    ) -> Any:
        """Perform one logical upstream call and return the parsed JSON.

        Non-JSON success bodies come back as ``{"raw": <text>}``.
        """
        request_id = secrets.token_hex(8)
        started = time.monotonic()
        attempts = 0
        log = logger.bind(request_id=request_id, method=method, path=path)

        try:
            validate_string(path, "path")
            validate_string(method, "method")
            method = method.upper()
            if query is not None and not isinstance(query, Mapping):
                raise ValidationError("query must be an object", "query", query)

            await self._rate_limiter.acquire(DEFAULT_KEY)

            ctx = context or self._context_store.get()
            cache_key: str | None = None
            if method == READ_METHOD and self.cache is not None:
                cache_key = build_cache_key(method, path, query, scope=ctx.scope)
                cached = self.cache.get(cache_key)
                if cached is not None:
                    log.debug("api_cache_hit")
                    if self._metrics:
                        await self._metrics.cache_hit(_elapsed_ms(started))
                    return cached

            if not self._api_key:
                raise ConfigurationError("ZAPMAIL_API_KEY not configured", setting="api_key")

            url = self._build_url(path)
            params = _encode_query(query)
            merged_headers = {**ctx.headers(self._api_key), **(headers or {})}
            content = (
                json.dumps(body).encode()
                if body is not None and method != READ_METHOD
                else None
            )
            timeout = timeout_s if timeout_s is not None else self._timeout_s
            retries = self._max_retries if max_retries is None else max(0, max_retries)

            log.debug("api_request", has_body=content is not None, params=sorted(params))

            retrying = AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(retries + 1),
                wait=backoff_seconds,
                sleep=self._backoff_sleep,
                before_sleep=lambda state: log.warning(
                    "api_request_retry",
                    attempt=state.attempt_number,
                    status=getattr(state.outcome.exception(), "status", None),
                    error=str(state.outcome.exception()),
                    delay_s=state.next_action.sleep if state.next_action else None,
                ),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    attempts += 1
                    result, size = await self._attempt(
                        method, url, merged_headers, params, content, timeout,
                    )
        except Exception as exc:
            duration_ms = _elapsed_ms(started)
            log.error(
                "api_request_failed",
                kind=type(exc).__name__,
                error=str(exc),
                status=getattr(exc, "status", None),
                attempts=attempts,
                duration_ms=duration_ms,
            )
            if self._metrics:
                await self._metrics.request_failed(type(exc).__name__, duration_ms)
            raise

        duration_ms = _elapsed_ms(started)
        log.info(
            "api_request_success",
            attempts=attempts,
            duration_ms=duration_ms,
            size_bytes=size,
        )
        if self._metrics:
            await self._metrics.request_succeeded(duration_ms, size)

        if cache_key is not None and self.cache is not None:
            self.cache.set(cache_key, result)

        return result

    async def _backoff_sleep(self, seconds: float) -> None:
        if self._metrics:
            await self._metrics.retry_scheduled()
        await self._sleep(seconds)

    async def _attempt(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        params: dict[str, str],
        content: bytes | None,
        timeout_s: float,
    ) -> tuple[Any, int]:
        try:
            response = await self._client.request(
                method,
                url,
                headers=headers,
                params=params or None,
                content=content,
                timeout=httpx.Timeout(timeout_s),
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"Request timed out after {timeout_s}s", url=url, timeout=True,
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Connection failed: {exc}", url=url) from exc

        text = response.text
        data = _parse_json(text)
        if data is None and text:
            logger.warning(
                "api_response_not_json",
                status=response.status_code,
                preview=text[:200],
            )

        if not response.is_success:
            message = data.get("message") if isinstance(data, dict) else None
            raise ApiError(
                f"HTTP {response.status_code}: {message or response.reason_phrase or text[:200]}",
                status=response.status_code,
                response=data if data is not None else text,
            )

        return (data if data is not None else {"raw": text}), len(response.content)
