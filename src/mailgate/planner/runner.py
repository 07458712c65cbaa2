"""Sequential plan execution.

Steps run strictly in order. ``api`` steps with ``bodyFrom`` go to the
matching composite operation; other ``api`` steps are single executor
calls. Non-api steps are recorded as successful no-ops. A failing step
stops the run by propagating its exception; whatever was appended to
``results`` before that point stays available to the caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from mailgate.core.context import RequestContext
from mailgate.core.executor import RequestExecutor
from mailgate.integrations.zapmail import ZapmailOperations
from mailgate.planner.models import CompositeOperation, Plan, PlanStep, StepAction, StepResult
from mailgate.planner.rules import DEFAULT_MAILBOX_COUNT, DEFAULT_YEARS

logger = structlog.get_logger()


class PlanRunner:
    def __init__(
        self,
        executor: RequestExecutor,
        operations: ZapmailOperations,
        *,
        step_delay_s: float = 0.25,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._operations = operations
        self._step_delay_s = step_delay_s
        self._sleep = sleep

    async def run(
        self,
        plan: Plan,
        context: RequestContext,
        results: list[StepResult],
    ) -> list[StepResult]:
        for index, step in enumerate(plan.steps):
            if step.action is not StepAction.API:
                results.append(StepResult(step, ok=True))
                continue

            logger.info(
                "plan_step_started",
                index=index,
                method=step.method,
                path=step.path,
                body_from=step.body_from.value if step.body_from else None,
            )
            data = await self._run_api_step(step, context)
            results.append(StepResult(step, ok=True, data=data))
            await self._sleep(self._step_delay_s)

        logger.info("plan_completed", strategy=plan.strategy.value, steps=len(plan.steps))
        return results

    async def _run_api_step(self, step: PlanStep, context: RequestContext) -> Any:
        if step.body_from is CompositeOperation.PURCHASE_DOMAINS:
            return await self._operations.purchase_domains(
                list(step.domains or ()),
                step.years or DEFAULT_YEARS,
                prefer_wallet=True,
                context=context,
            )
        if step.body_from is CompositeOperation.CREATE_MAILBOXES_FOR_ZERO_DOMAINS:
            return await self._operations.create_mailboxes_for_zero_domains(
                step.count or DEFAULT_MAILBOX_COUNT,
                context=context,
            )
        return await self._executor.execute(
            step.path,
            step.method or "GET",
            body=step.body,
            query=step.query,
            context=context,
        )
