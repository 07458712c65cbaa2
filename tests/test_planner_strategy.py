"""Plan model serialisation, reasoning-tier parsing and fallback behaviour."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from mailgate.core.errors import ValidationError
from mailgate.planner.llm import (
    LLMPlanner,
    PlannerError,
    ReasoningClient,
    parse_plan_document,
)
from mailgate.planner.models import CompositeOperation, Plan, PlanStep, PlanStrategy, StepAction
from mailgate.planner.rules import plan_from_rules
from mailgate.planner.strategy import FallbackPlanner, RulePlanner


# ---------------------------------------------------------------------------
# PlanStep
# ---------------------------------------------------------------------------


class TestPlanStep:
    def test_to_dict_uses_wire_names(self):
        step = PlanStep.api(
            "POST", "/v2/domains/buy", "Purchase",
            body_from=CompositeOperation.PURCHASE_DOMAINS,
            domains=("a.com",),
            years=2,
        )
        assert step.to_dict() == {
            "action": "api",
            "method": "POST",
            "path": "/v2/domains/buy",
            "bodyFrom": "purchaseDomains",
            "domains": ["a.com"],
            "years": 2,
            "description": "Purchase",
        }

    def test_note_steps_omit_api_fields(self):
        assert PlanStep.compute("filter").to_dict() == {"action": "compute", "note": "filter"}

    def test_from_dict_round_trips_rule_plan(self):
        plan = plan_from_rules("create 3 mailboxes on zero domains and connect to instantly")
        rebuilt = tuple(PlanStep.from_dict(s.to_dict()) for s in plan.steps)
        assert rebuilt == plan.steps

    def test_from_dict_defaults_method_to_get(self):
        step = PlanStep.from_dict({"action": "api", "path": "/v2/domains"})
        assert step.method == "GET"

    @pytest.mark.parametrize(
        "raw,field",
        [
            ("not-a-step", "step"),
            ({"action": "dance"}, "action"),
            ({"action": "api"}, "path"),
            ({"action": "api", "path": "/x", "method": "TRACE"}, "method"),
            ({"action": "api", "path": "/x", "bodyFrom": "launchRockets"}, "bodyFrom"),
            ({"action": "api", "path": "/x", "query": [1]}, "query"),
            ({"action": "api", "path": "/x", "domains": "a.com"}, "domains"),
            ({"action": "api", "path": "/x", "count": "3"}, "count"),
        ],
    )
    def test_from_dict_rejects_invalid(self, raw, field):
        with pytest.raises(ValidationError) as exc_info:
            PlanStep.from_dict(raw)
        assert exc_info.value.field == field


# ---------------------------------------------------------------------------
# Reasoning tier
# ---------------------------------------------------------------------------


class TestParsePlanDocument:
    def test_valid_document(self):
        steps = parse_plan_document(json.dumps({"steps": [
            {"action": "api", "method": "GET", "path": "/v2/workspaces"},
            {"action": "info", "note": "done"},
        ]}))
        assert [s.action for s in steps] == [StepAction.API, StepAction.INFO]

    @pytest.mark.parametrize("text", ["not json", "[]", '{"plan": []}', '{"steps": [{"action": "x"}]}'])
    def test_invalid_documents(self, text):
        with pytest.raises(PlannerError):
            parse_plan_document(text)


class TestReasoningClient:
    @pytest.mark.asyncio
    async def test_returns_message_content(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"choices": [{"message": {"content": '{"steps": []}'}}]})

        client = ReasoningClient(
            "sk-test",
            base_url="https://llm.test/v1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        planner = LLMPlanner(client, model="gpt-4o-mini")

        plan = await planner.plan("list workspaces")

        assert plan.strategy is PlanStrategy.LLM
        assert plan.steps == ()
        payload = seen[0]
        assert payload["model"] == "gpt-4o-mini"
        assert payload["temperature"] == 0.2
        assert payload["response_format"] == {"type": "json_object"}
        assert "User: list workspaces" in payload["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_client_error_raises_planner_error(self):
        client = ReasoningClient(
            "sk-test",
            base_url="https://llm.test/v1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(
                lambda request: httpx.Response(401, json={"error": "bad key"})
            )),
        )
        with pytest.raises(PlannerError) as exc_info:
            await client.complete([], MagicMock(model="m", temperature=0.2, max_tokens=10))
        assert exc_info.value.status_code == 401


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class TestRulePlanner:
    @pytest.mark.asyncio
    async def test_matches_rule_function(self):
        plan = await RulePlanner().plan("list all workspaces")
        assert plan == plan_from_rules("list all workspaces")


class TestFallbackPlanner:
    @pytest.mark.asyncio
    async def test_uses_llm_plan_when_valid(self, metrics):
        llm_plan = Plan(PlanStrategy.LLM, (PlanStep.info("from llm"),))
        llm = MagicMock(plan=AsyncMock(return_value=llm_plan))

        plan = await FallbackPlanner(llm, metrics=metrics).plan("list all workspaces")

        assert plan is llm_plan
        assert "planner_fallbacks_total" not in metrics.snapshot_sync()["counters"]

    @pytest.mark.asyncio
    async def test_llm_error_falls_back_to_rules(self, metrics):
        llm = MagicMock(plan=AsyncMock(side_effect=PlannerError("not json")))

        plan = await FallbackPlanner(llm, metrics=metrics).plan("list all workspaces")

        assert plan.strategy is PlanStrategy.LLM_FAILED
        assert plan.steps == plan_from_rules("list all workspaces").steps
        assert metrics.snapshot_sync()["counters"]["planner_fallbacks_total"] == 1

    @pytest.mark.asyncio
    async def test_network_error_falls_back(self):
        llm = MagicMock(plan=AsyncMock(side_effect=httpx.ConnectError("down")))
        plan = await FallbackPlanner(llm).plan("show domains")
        assert plan.strategy is PlanStrategy.LLM_FAILED
        assert plan.steps[0].path == "/v2/domains"

    @pytest.mark.asyncio
    async def test_empty_llm_plan_falls_back(self):
        llm = MagicMock(plan=AsyncMock(return_value=Plan(PlanStrategy.LLM, ())))
        plan = await FallbackPlanner(llm).plan("list all workspaces")
        assert plan.strategy is PlanStrategy.LLM_FAILED
        assert len(plan.steps) == 1

    @pytest.mark.asyncio
    async def test_credentials_reach_rule_plan(self):
        llm = MagicMock(plan=AsyncMock(side_effect=PlannerError("x")))
        plan = await FallbackPlanner(llm).plan("connect smartlead", email="a@b.com", password="pw")
        assert plan.steps[0].body["email"] == "a@b.com"
