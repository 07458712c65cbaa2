"""Planning strategies.

``RulePlanner`` is the deterministic tier. ``FallbackPlanner`` wraps the
reasoning tier: the rule plan is always computed first and is returned,
marked ``llm-failed``, whenever the reasoning tier errors or comes back
empty. Reasoning failures never reach the caller as exceptions.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from mailgate.observability.metrics import MetricsCollector
from mailgate.planner.llm import LLMPlanner
from mailgate.planner.models import Plan, PlanStrategy
from mailgate.planner.rules import plan_from_rules

logger = structlog.get_logger()


class Planner(Protocol):
    async def plan(
        self, instruction: str, *, email: str | None = None, password: str | None = None,
    ) -> Plan: ...


class RulePlanner:
    async def plan(
        self, instruction: str, *, email: str | None = None, password: str | None = None,
    ) -> Plan:
        return plan_from_rules(instruction, email=email, password=password)


class FallbackPlanner:
    def __init__(self, llm: LLMPlanner, *, metrics: MetricsCollector | None = None) -> None:
        self._llm = llm
        self._metrics = metrics

    async def plan(
        self, instruction: str, *, email: str | None = None, password: str | None = None,
    ) -> Plan:
        rule_plan = plan_from_rules(instruction, email=email, password=password)
        try:
            llm_plan = await self._llm.plan(instruction)
        except Exception as e:
            return await self._degrade(rule_plan, str(e))

        if not llm_plan.steps:
            return await self._degrade(rule_plan, "empty step list")
        return llm_plan

    async def _degrade(self, rule_plan: Plan, reason: str) -> Plan:
        logger.warning("llm_plan_fallback", reason=reason, steps=len(rule_plan.steps))
        if self._metrics:
            await self._metrics.inc("planner_fallbacks_total")
        return Plan(PlanStrategy.LLM_FAILED, rule_plan.steps)
