"""Reasoning-tier planner backed by an OpenAI-compatible chat completion API.

The service is asked for a JSON document ``{"steps": [...]}`` using the
same step shape the rule tier emits. Anything else (HTTP error, non-JSON
content, a missing or invalid ``steps`` array) is raised as a
``PlannerError``; the fallback strategy turns that into the rule plan.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

import certifi
import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from mailgate.config import LLMPreset, LLMPresets
from mailgate.core.errors import MailgateError, ValidationError
from mailgate.planner.models import Plan, PlanStep, PlanStrategy

logger = structlog.get_logger()

_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

SYSTEM_PROMPT = "You output JSON only."

PLANNER_PROMPT = """\
You are a planner for the Zapmail API. Given a user instruction, output a JSON plan with steps.
Each step has: {{action: "api"|"compute"|"decision"|"info", method?, path?, slug?, body?, note?, description?}}
Constraints:
- Prefer wallet-first for purchases; call /v2/wallet/balance before buying.
- Always include x-workspace-key and x-service-provider headers (handled by the executor).
- Use documented endpoints: list workspaces (/v2/workspaces), list domains (/v2/domains), check availability (POST /v2/domains/available), purchase (/v2/domains/buy), create mailboxes (POST /v2/mailboxes), connect export (/v2/exports/accounts/third-party).
- If natural language asks for "setup N mailboxes and connect to instantly", plan both mailbox creation then export account connection.
Return ONLY JSON.

User: {instruction}"""


class PlannerError(MailgateError):
    """The reasoning service did not produce a usable plan."""

    code = "PLANNER_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, {"status": status_code})
        self.status_code = status_code


def _is_retryable_llm_error(exc: BaseException) -> bool:
    if isinstance(exc, PlannerError) and exc.status_code in _RETRYABLE_STATUS_CODES:
        return True
    if isinstance(exc, httpx.ReadTimeout | httpx.ConnectTimeout | httpx.PoolTimeout):
        return True
    return False


@dataclass
class ChatConfig:
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 2000

    @classmethod
    def from_preset(cls, model: str, preset: LLMPreset) -> ChatConfig:
        return cls(model=model, temperature=preset.temperature, max_tokens=preset.max_tokens)


class ReasoningClient:
    """Thin chat-completions client; returns the assistant message text."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_s, connect=10.0),
            verify=certifi.where(),
        )
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._url = f"{base_url.rstrip('/')}/chat/completions"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def complete(self, messages: list[dict[str, Any]], config: ChatConfig) -> str:
        payload: dict[str, Any] = {
            "model": config.model,
            "messages": messages,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "response_format": {"type": "json_object"},
        }

        @retry(
            retry=retry_if_exception(_is_retryable_llm_error),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=1, max=4),
            reraise=True,
        )
        async def _do_request() -> str:
            t0 = time.monotonic()
            try:
                response = await self._client.post(self._url, json=payload, headers=self._headers)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.error(
                    "planner_completion_failed",
                    status_code=status,
                    response=e.response.text[:500],
                )
                raise PlannerError(f"Chat completion failed: {status}", status_code=status)
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout) as e:
                logger.warning("planner_completion_timeout", error=str(e))
                raise
            except (httpx.HTTPError, ValueError) as e:
                logger.error("planner_completion_error", error=str(e))
                raise PlannerError(f"Chat completion error: {e}")

            choices = (data.get("choices") or []) if isinstance(data, dict) else []
            content = ""
            if choices:
                content = (choices[0].get("message") or {}).get("content") or ""
            logger.info(
                "planner_completion_success",
                model=config.model,
                llm_ms=round((time.monotonic() - t0) * 1000),
                content_length=len(content),
            )
            return content

        return await _do_request()


def parse_plan_document(text: str) -> tuple[PlanStep, ...]:
    """Validate a reasoning-service reply into plan steps."""
    try:
        document = json.loads(text or "{}")
    except json.JSONDecodeError as e:
        raise PlannerError(f"Planner reply is not JSON: {e}") from e
    if not isinstance(document, dict) or not isinstance(document.get("steps"), list):
        raise PlannerError("Planner reply has no 'steps' array")
    try:
        return tuple(PlanStep.from_dict(raw) for raw in document["steps"])
    except ValidationError as e:
        raise PlannerError(f"Invalid plan step: {e.message}") from e


class LLMPlanner:
    def __init__(self, client: ReasoningClient, *, model: str = "gpt-4o-mini") -> None:
        self._client = client
        self._config = ChatConfig.from_preset(model, LLMPresets.PLANNER)

    async def plan(self, instruction: str) -> Plan:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": PLANNER_PROMPT.format(instruction=instruction)},
        ]
        text = await self._client.complete(messages, self._config)
        steps = parse_plan_document(text)
        logger.info("llm_plan_built", steps=len(steps))
        return Plan(PlanStrategy.LLM, steps)

    async def aclose(self) -> None:
        await self._client.aclose()
