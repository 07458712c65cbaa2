"""Endpoint catalog discovered from the documentation manifest.

The docs site publishes ``llms.txt``: one markdown link per documented
operation, ``[Title](<docs>/<slug>.md): description``. Each slug becomes
a dynamic tool named ``slug.replace("-", "_")``. A failed load yields an
empty catalog; the gateway still serves its built-in tools.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

import httpx
import structlog

from mailgate.core.context import USER_AGENT
from mailgate.observability.metrics import MetricsCollector

logger = structlog.get_logger()

RESERVED_TOOL_NAMES: frozenset[str] = frozenset({
    "set_context",
    "wallet_balance",
    "list_workspaces",
    "list_domains",
    "check_domain_availability",
    "check_domain_availability_batch",
    "purchase_domains",
    "create_mailboxes_for_zero_domains",
    "add_third_party_account",
    "export_mailboxes",
    "bulk_update_mailboxes",
    "search_mailboxes",
    "call_endpoint",
    "plan_and_execute",
    "get_metrics",
    "clear_cache",
    "health_check",
    "get_server_info",
})


@dataclass(frozen=True)
class Endpoint:
    slug: str
    title: str
    description: str


@dataclass(frozen=True)
class EndpointCatalog:
    endpoints: tuple[Endpoint, ...] = ()
    tool_map: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_endpoints(cls, endpoints: Iterable[Endpoint]) -> EndpointCatalog:
        items = tuple(endpoints)
        return cls(endpoints=items, tool_map=build_tool_map(items))

    def slug_for_tool(self, name: str) -> str | None:
        return self.tool_map.get(name)

    def get(self, slug: str) -> Endpoint | None:
        for endpoint in self.endpoints:
            if endpoint.slug == slug:
                return endpoint
        return None

    def __len__(self) -> int:
        return len(self.endpoints)


def tool_name_for_slug(slug: str) -> str:
    return slug.replace("-", "_")


def build_tool_map(endpoints: Iterable[Endpoint]) -> Mapping[str, str]:
    """Derive ``tool name -> slug``; reserved names dropped, first slug wins."""
    mapping: dict[str, str] = {}
    for endpoint in endpoints:
        name = tool_name_for_slug(endpoint.slug)
        if name in RESERVED_TOOL_NAMES or name in mapping:
            continue
        mapping[name] = endpoint.slug
    return MappingProxyType(mapping)


def parse_manifest(text: str, docs_base_url: str) -> list[Endpoint]:
    pattern = re.compile(
        r"\[([^\]]+)\]\(" + re.escape(docs_base_url.rstrip("/")) + r"/([^)]+?)\.md\):\s*(.*)"
    )
    return [
        Endpoint(slug=m.group(2).strip(), title=m.group(1).strip(), description=m.group(3).strip())
        for m in pattern.finditer(text)
    ]


async def load_endpoints(
    client: httpx.AsyncClient,
    docs_base_url: str,
    *,
    timeout_s: float = 30.0,
    metrics: MetricsCollector | None = None,
) -> list[Endpoint]:
    """Fetch and parse the manifest. Never raises; failures give ``[]``."""
    url = f"{docs_base_url.rstrip('/')}/llms.txt"
    t0 = time.monotonic()
    try:
        logger.info("endpoint_manifest_loading", url=url)
        resp = await client.get(url, headers={"user-agent": USER_AGENT}, timeout=timeout_s)
        resp.raise_for_status()
        endpoints = parse_manifest(resp.text, docs_base_url)
    except Exception as e:
        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.error("endpoint_manifest_load_failed", url=url, error=str(e), duration_ms=duration_ms)
        if metrics:
            await metrics.inc("endpoint_load_errors")
            await metrics.record("endpoint_load_duration_ms", duration_ms)
        return []

    duration_ms = round((time.monotonic() - t0) * 1000, 2)
    logger.info("endpoint_manifest_loaded", count=len(endpoints), duration_ms=duration_ms)
    if metrics:
        await metrics.inc("endpoints_loaded", len(endpoints))
        await metrics.record("endpoint_load_duration_ms", duration_ms)
    return endpoints
