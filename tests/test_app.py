"""Gateway wiring: settings flow into components and tools are reachable."""

from __future__ import annotations

import httpx
import pytest
import structlog

from conftest import API_BASE, DOCS_BASE
from mailgate.app import configure_logging, create_gateway
from mailgate.config import Settings
from mailgate.planner.strategy import FallbackPlanner, RulePlanner

MANIFEST = f"- [List tags]({DOCS_BASE}/get-all-tags-99.md): Every tag.\n"


def _settings(**overrides) -> Settings:
    options = {
        "api_key": "test-key",
        "api_base": API_BASE,
        "docs_base_url": DOCS_BASE,
        "workspace_key": "ws-app",
        "openai_api_key": None,
        "_env_file": None,
    }
    options.update(overrides)
    return Settings(**options)


@pytest.fixture()
def app_client(upstream) -> httpx.AsyncClient:
    upstream.add("GET", "/llms.txt", (200, MANIFEST))
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.mark.asyncio
async def test_gateway_exposes_catalog_tools(app_client):
    gateway = await create_gateway(_settings(), client=app_client)
    try:
        assert len(gateway.catalog) == 1
        assert "get_all_tags_99" in gateway.dispatcher.tool_names
        assert isinstance(gateway.planner, RulePlanner)
        assert gateway.context_store.get().workspace_key == "ws-app"
    finally:
        await gateway.aclose()
    # caller-supplied client stays open
    assert not app_client.is_closed


@pytest.mark.asyncio
async def test_gateway_routes_tool_calls(app_client, upstream):
    upstream.add("GET", "/api/v2/workspaces", (200, [{"id": "w1"}]))
    gateway = await create_gateway(_settings(), client=app_client)

    result = await gateway.dispatcher.dispatch("list_workspaces")

    assert result == {"workspaces": [{"id": "w1"}]}
    request = upstream.calls_to("GET", "/api/v2/workspaces")[0]
    assert request.headers["x-workspace-key"] == "ws-app"
    assert request.headers["x-auth-zapmail"] == "test-key"
    await gateway.aclose()


@pytest.mark.asyncio
async def test_reasoning_planner_enabled_by_key(app_client):
    gateway = await create_gateway(_settings(openai_api_key="sk-test"), client=app_client)
    try:
        assert isinstance(gateway.planner, FallbackPlanner)
    finally:
        await gateway.aclose()


@pytest.mark.asyncio
async def test_cache_disabled(app_client):
    gateway = await create_gateway(_settings(enable_cache=False), client=app_client)
    assert gateway.cache is None
    assert gateway.executor.clear_cache() is False
    await gateway.aclose()


@pytest.mark.asyncio
async def test_manifest_failure_leaves_builtin_tools(upstream):
    upstream.add("GET", "/llms.txt", (503, "down"))
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))

    gateway = await create_gateway(_settings(), client=client)

    assert len(gateway.catalog) == 0
    assert "plan_and_execute" in gateway.dispatcher.tool_names
    await gateway.aclose()


@pytest.mark.parametrize("env", ["production", "development"])
def test_configure_logging(env):
    try:
        configure_logging(_settings(env=env, log_level="debug"))
        structlog.get_logger().debug("configured")
    finally:
        structlog.reset_defaults()
