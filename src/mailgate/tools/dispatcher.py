"""Tool dispatcher: maps a tool name and a JSON input object to an operation.

Inputs use the wire's camelCase keys. Every tool accepts optional
``workspaceKey``/``serviceProvider`` overrides that apply to that call
only; ``set_context`` is the only tool that changes the process default.

Errors propagate as ``MailgateError``s for the caller to render with
``error_report``. ``plan_and_execute`` is the exception: an execution
failure is returned in-band together with the partial step results.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import structlog

from mailgate import __version__
from mailgate.config import Settings
from mailgate.core.context import ContextStore, RequestContext
from mailgate.core.errors import ValidationError, error_report
from mailgate.core.executor import RequestExecutor
from mailgate.core.rate_limiter import SlidingWindowRateLimiter
from mailgate.core.validation import validate_positive_int, validate_string, validate_string_list
from mailgate.integrations.catalog import EndpointCatalog
from mailgate.integrations.zapmail import ExportApp, ZapmailOperations
from mailgate.observability.metrics import MetricsCollector
from mailgate.planner.models import StepResult
from mailgate.planner.runner import PlanRunner
from mailgate.planner.strategy import Planner

logger = structlog.get_logger()

ToolInput = dict[str, Any]
ToolHandler = Callable[[ToolInput, RequestContext], Awaitable[dict[str, Any]]]

HEALTH_CHECK_TIMEOUT_S = 5.0


def _optional_str(params: ToolInput, key: str) -> str | None:
    value = params.get(key)
    return validate_string(value, key) if value is not None else None


class ToolDispatcher:
    def __init__(
        self,
        *,
        settings: Settings,
        context_store: ContextStore,
        executor: RequestExecutor,
        operations: ZapmailOperations,
        planner: Planner,
        runner: PlanRunner,
        catalog: EndpointCatalog,
        rate_limiter: SlidingWindowRateLimiter,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._settings = settings
        self._context_store = context_store
        self._executor = executor
        self._ops = operations
        self._planner = planner
        self._runner = runner
        self._catalog = catalog
        self._rate_limiter = rate_limiter
        self._metrics = metrics

        self._handlers: dict[str, ToolHandler] = {
            "set_context": self._set_context,
            "wallet_balance": self._wallet_balance,
            "list_workspaces": self._list_workspaces,
            "list_domains": self._list_domains,
            "check_domain_availability": self._check_domain_availability,
            "check_domain_availability_batch": self._check_domain_availability_batch,
            "purchase_domains": self._purchase_domains,
            "create_mailboxes_for_zero_domains": self._create_mailboxes_for_zero_domains,
            "add_third_party_account": self._add_third_party_account,
            "export_mailboxes": self._export_mailboxes,
            "bulk_update_mailboxes": self._bulk_update_mailboxes,
            "search_mailboxes": self._search_mailboxes,
            "call_endpoint": self._call_endpoint,
            "plan_and_execute": self._plan_and_execute,
            "get_metrics": self._get_metrics,
            "clear_cache": self._clear_cache,
            "health_check": self._health_check,
            "get_server_info": self._get_server_info,
        }

    @property
    def tool_names(self) -> list[str]:
        return [*self._handlers, *self._catalog.tool_map]

    async def dispatch(self, name: str, params: ToolInput | None = None) -> dict[str, Any]:
        params = dict(params or {})
        context = self._context_store.get().with_overrides(
            params.get("workspaceKey"), params.get("serviceProvider"),
        )

        handler = self._handlers.get(name)
        if handler is not None:
            logger.info("tool_dispatch", tool=name)
            return await handler(params, context)

        slug = self._catalog.slug_for_tool(name)
        if slug is not None:
            logger.info("tool_dispatch", tool=name, slug=slug)
            data = await self._ops.call_endpoint(
                context=context,
                slug=slug,
                method=params.get("method"),
                path=params.get("path"),
                path_params=params.get("pathParams"),
                query=params.get("query"),
                body=params.get("body"),
            )
            return {"slug": slug, "data": data}

        raise ValidationError(f"Unknown tool '{name}'", "tool_name", name)

    # ── Context ─────────────────────────────────────────────

    async def _set_context(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        updated = self._context_store.set(params.get("workspaceKey"), params.get("serviceProvider"))
        logger.info("context_updated", **updated.to_dict())
        return {"message": "Context updated", "context": updated.to_dict()}

    # ── Reads ───────────────────────────────────────────────

    async def _wallet_balance(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        balance = await self._ops.wallet_balance(context=context)
        return {"balance": balance, "context": context.to_dict()}

    async def _list_workspaces(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        return {"workspaces": await self._ops.list_workspaces(context=context)}

    async def _list_domains(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        data = await self._ops.list_domains(context=context, contains=_optional_str(params, "contains"))
        return {"domains": data}

    # ── Domains ─────────────────────────────────────────────

    async def _check_domain_availability(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        domain = validate_string(params.get("domainName"), "domainName")
        data = await self._ops.check_domain_availability(
            domain, params.get("years", 1), context=context,
        )
        return {"domainName": domain, "availability": data}

    async def _check_domain_availability_batch(
        self, params: ToolInput, context: RequestContext,
    ) -> dict[str, Any]:
        domains = validate_string_list(params.get("domains"), "domains")
        results = await self._ops.check_domain_availability_batch(
            domains, params.get("years", 1), context=context,
        )
        return {"results": results}

    async def _purchase_domains(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        return await self._ops.purchase_domains(
            validate_string_list(params.get("domains"), "domains"),
            params.get("years", 1),
            prefer_wallet=params.get("preferWallet", True) is not False,
            context=context,
        )

    # ── Mailboxes ───────────────────────────────────────────

    async def _create_mailboxes_for_zero_domains(
        self, params: ToolInput, context: RequestContext,
    ) -> dict[str, Any]:
        return await self._ops.create_mailboxes_for_zero_domains(
            params.get("countPerDomain", 3), context=context,
        )

    async def _bulk_update_mailboxes(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        return await self._ops.bulk_update_mailboxes(params.get("updates"), context=context)

    async def _search_mailboxes(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        return await self._ops.search_mailboxes(
            context=context,
            first_name=_optional_str(params, "firstName"),
            last_name=_optional_str(params, "lastName"),
            username=_optional_str(params, "username"),
            domain=_optional_str(params, "domain"),
            status=_optional_str(params, "status"),
        )

    # ── Exports ─────────────────────────────────────────────

    async def _add_third_party_account(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        data = await self._ops.add_third_party_account(
            params.get("email"), params.get("password"), params.get("app"), context=context,
        )
        return {"app": str(params.get("app")).upper(), "result": data}

    async def _export_mailboxes(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        data = await self._ops.export_mailboxes(
            params.get("apps"),
            context=context,
            ids=params.get("ids"),
            exclude_ids=params.get("excludeIds"),
            tag_ids=params.get("tagIds"),
            contains=_optional_str(params, "contains"),
            status=_optional_str(params, "status"),
        )
        return {"result": data}

    # ── Generic ─────────────────────────────────────────────

    async def _call_endpoint(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        data = await self._ops.call_endpoint(
            context=context,
            slug=params.get("slug"),
            method=params.get("method"),
            path=params.get("path"),
            path_params=params.get("pathParams"),
            query=params.get("query"),
            body=params.get("body"),
        )
        return {"data": data}

    # ── Planner ─────────────────────────────────────────────

    async def _plan_and_execute(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        instruction = validate_string(params.get("instruction"), "instruction", max_length=2000)
        plan = await self._planner.plan(
            instruction, email=params.get("email"), password=params.get("password"),
        )
        steps = [step.to_dict() for step in plan.steps]

        if params.get("execute") is not True:
            return {"mode": "dry-run", "strategy": plan.strategy.value, "steps": steps}

        results: list[StepResult] = []
        try:
            await self._runner.run(plan, context, results)
        except Exception as e:
            logger.error(
                "plan_execution_failed",
                strategy=plan.strategy.value,
                completed=len(results),
                total=len(plan.steps),
                error=str(e),
            )
            return {
                "mode": "execute",
                "strategy": plan.strategy.value,
                "steps": steps,
                "results": [r.to_dict() for r in results],
                "error": error_report(e),
            }

        return {
            "mode": "execute",
            "strategy": plan.strategy.value,
            "steps": steps,
            "results": [r.to_dict() for r in results],
        }

    # ── Operational ─────────────────────────────────────────

    async def _get_metrics(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        result: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server": {"version": __version__},
        }
        snapshot = await self._metrics.snapshot() if self._metrics else None
        if snapshot is not None:
            result["server"]["uptime_seconds"] = snapshot["uptime_seconds"]
            if params.get("includeCounters", True):
                result["metrics"] = {
                    "counters": snapshot["counters"],
                    "labeled_counters": snapshot["labeled_counters"],
                }
            if params.get("includeTimers", True):
                result["timers"] = snapshot["histograms"]
        if params.get("includeCache", True):
            cache = self._executor.cache
            result["cache"] = {"enabled": cache is not None, "size": cache.size() if cache else 0}
        result["rateLimiter"] = self._rate_limiter.metrics
        return result

    async def _clear_cache(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        if params.get("confirm") is not True:
            raise ValidationError(
                "Cache clear requires confirmation. Set confirm: true to proceed.", "confirm",
                params.get("confirm"),
            )
        if self._executor.clear_cache():
            return {"message": "Cache cleared successfully", "cacheSize": 0}
        return {"message": "Cache is not enabled", "cacheSize": 0}

    async def _health_check(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        detailed = bool(params.get("detailed", False))
        checks: dict[str, Any] = {}
        health: dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        }

        checks["apiKey"] = "configured" if self._executor.has_api_key else "missing"
        if self._executor.has_api_key:
            try:
                profile = await self._ops.user_profile(context=context, timeout_s=HEALTH_CHECK_TIMEOUT_S)
                checks["apiConnectivity"] = "connected"
                if detailed:
                    checks["apiResponse"] = profile
            except Exception as e:
                health["status"] = "degraded"
                checks["apiConnectivity"] = "failed"
                if detailed:
                    checks["apiError"] = str(e)
        else:
            checks["apiConnectivity"] = "no_api_key"

        s = self._settings
        checks["configuration"] = {
            "logLevel": s.log_level,
            "maxRetries": s.max_retries,
            "timeoutSeconds": s.timeout_s,
            "enableCaching": s.enable_cache,
            "enableMetrics": s.enable_metrics,
        }
        cache = self._executor.cache
        checks["cache"] = (
            {"enabled": True, "size": cache.size(), "maxSize": cache.max_size}
            if cache is not None
            else {"enabled": False}
        )
        if self._metrics:
            counters = self._metrics.snapshot_sync()["counters"]
            checks["metrics"] = {
                "enabled": True,
                "totalRequests": counters.get("api_requests_success", 0)
                + counters.get("api_requests_failed", 0),
                "successRate": self._metrics.success_rate(),
            }
        else:
            checks["metrics"] = {"enabled": False}
        checks["catalog"] = {"endpoints": len(self._catalog)}
        return health

    async def _get_server_info(self, params: ToolInput, context: RequestContext) -> dict[str, Any]:
        """Read-only summary of features and configuration. Never returns secrets."""
        s = self._settings
        info: dict[str, Any] = {
            "version": __version__,
            "features": {
                "llmPlanner": s.llm_planner_enabled,
                "caching": self._executor.cache is not None,
                "metrics": self._metrics is not None,
                "rateLimiting": True,
            },
            "configuration": {
                "logLevel": s.log_level,
                "maxRetries": s.max_retries,
                "timeoutSeconds": s.timeout_s,
                "rateLimitMaxRequests": s.rate_limit_max_requests,
                "rateLimitWindowSeconds": s.rate_limit_window_s,
            },
            "context": {
                "workspaceKey": "configured" if context.workspace_key else "not_set",
                "serviceProvider": context.service_provider.value if context.service_provider else None,
            },
            "endpoints": {
                "total": len(self._catalog),
                "dynamic": len(self._catalog.tool_map),
            },
            "exportApps": [app.value for app in ExportApp],
        }
        if params.get("includeSecrets") is True:
            info["configuration"]["apiKey"] = "configured" if self._executor.has_api_key else "not_set"
            info["configuration"]["openaiKey"] = "configured" if s.openai_api_key else "not_set"
        return info
