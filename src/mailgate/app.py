"""Composition root: logging setup and gateway wiring.

``create_gateway`` builds every component from ``Settings`` once, loads
the endpoint catalog, and returns a ``Gateway`` whose ``dispatcher`` is
the single entry point for tool calls.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass

import certifi
import httpx
import structlog

from mailgate.config import Settings, settings as default_settings
from mailgate.core.cache import TTLCache
from mailgate.core.context import ContextStore, RequestContext
from mailgate.core.executor import RequestExecutor
from mailgate.core.rate_limiter import SlidingWindowRateLimiter
from mailgate.integrations.catalog import EndpointCatalog, load_endpoints
from mailgate.integrations.resolver import EndpointResolver
from mailgate.integrations.zapmail import ZapmailOperations
from mailgate.observability.metrics import MetricsCollector, get_metrics
from mailgate.planner.llm import LLMPlanner, ReasoningClient
from mailgate.planner.runner import PlanRunner
from mailgate.planner.strategy import FallbackPlanner, Planner, RulePlanner
from mailgate.tools.dispatcher import ToolDispatcher

logger = structlog.get_logger()


def configure_logging(cfg: Settings) -> None:
    """Route structlog to stderr; stdout carries tool output only."""
    level = logging.getLevelName(cfg.log_level)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
            if cfg.env == "production"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            level if isinstance(level, int) else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


# ═══════════════════════════════════════════════════════════════════════════
# GATEWAY
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class Gateway:
    settings: Settings
    context_store: ContextStore
    cache: TTLCache | None
    rate_limiter: SlidingWindowRateLimiter
    metrics: MetricsCollector | None
    executor: RequestExecutor
    resolver: EndpointResolver
    operations: ZapmailOperations
    planner: Planner
    runner: PlanRunner
    catalog: EndpointCatalog
    dispatcher: ToolDispatcher
    _http: httpx.AsyncClient
    _owns_http: bool
    _llm: LLMPlanner | None = None

    async def aclose(self) -> None:
        if self._llm is not None:
            await self._llm.aclose()
        if self._owns_http:
            await self._http.aclose()
        logger.info("gateway_closed")


async def create_gateway(
    cfg: Settings | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> Gateway:
    cfg = cfg or default_settings
    owns_http = client is None
    http = client or httpx.AsyncClient(
        verify=certifi.where(),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    )

    context_store = ContextStore(RequestContext(cfg.workspace_key, cfg.service_provider))
    cache = TTLCache(cfg.cache_max_size, cfg.cache_ttl_s) if cfg.enable_cache else None
    rate_limiter = SlidingWindowRateLimiter(cfg.rate_limit_max_requests, cfg.rate_limit_window_s)
    metrics = get_metrics() if cfg.enable_metrics else None

    executor = RequestExecutor(
        api_key=cfg.api_key,
        base_url=cfg.api_base,
        context_store=context_store,
        client=http,
        cache=cache,
        rate_limiter=rate_limiter,
        metrics=metrics,
        timeout_s=cfg.timeout_s,
        max_retries=cfg.max_retries,
    )
    resolver = EndpointResolver(executor, http, cfg.docs_base_url, timeout_s=cfg.timeout_s)
    operations = ZapmailOperations(executor, resolver, bulk_update_delay_s=cfg.bulk_update_delay_s)

    llm: LLMPlanner | None = None
    planner: Planner
    if cfg.llm_planner_enabled:
        llm = LLMPlanner(
            ReasoningClient(
                cfg.openai_api_key or "",
                base_url=cfg.planner_base_url,
                timeout_s=cfg.planner_timeout_s,
            ),
            model=cfg.planner_model,
        )
        planner = FallbackPlanner(llm, metrics=metrics)
    else:
        planner = RulePlanner()
    runner = PlanRunner(executor, operations, step_delay_s=cfg.plan_step_delay_s)

    endpoints = await load_endpoints(http, cfg.docs_base_url, timeout_s=cfg.timeout_s, metrics=metrics)
    catalog = EndpointCatalog.from_endpoints(endpoints)

    dispatcher = ToolDispatcher(
        settings=cfg,
        context_store=context_store,
        executor=executor,
        operations=operations,
        planner=planner,
        runner=runner,
        catalog=catalog,
        rate_limiter=rate_limiter,
        metrics=metrics,
    )

    if not cfg.api_key:
        logger.warning("api_key_missing", setting="ZAPMAIL_API_KEY")
    logger.info(
        "gateway_ready",
        endpoints=len(catalog),
        dynamic_tools=len(catalog.tool_map),
        planner="llm" if llm else "rules",
        cache=cache is not None,
    )

    return Gateway(
        settings=cfg,
        context_store=context_store,
        cache=cache,
        rate_limiter=rate_limiter,
        metrics=metrics,
        executor=executor,
        resolver=resolver,
        operations=operations,
        planner=planner,
        runner=runner,
        catalog=catalog,
        dispatcher=dispatcher,
        _http=http,
        _owns_http=owns_http,
        _llm=llm,
    )
