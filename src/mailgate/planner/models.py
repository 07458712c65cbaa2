"""Plan data model shared by the rule tier, the reasoning tier and the runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from mailgate.core.errors import ValidationError


class StepAction(str, Enum):
    API = "api"
    COMPUTE = "compute"
    DECISION = "decision"
    INFO = "info"


class PlanStrategy(str, Enum):
    RULES = "rules"
    LLM = "llm"
    LLM_FAILED = "llm-failed"


class CompositeOperation(str, Enum):
    """Multi-call flows a single ``api`` step can delegate to via ``bodyFrom``."""

    PURCHASE_DOMAINS = "purchaseDomains"
    CREATE_MAILBOXES_FOR_ZERO_DOMAINS = "createMailboxesForZeroDomains"


_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})


@dataclass(frozen=True)
class PlanStep:
    """One step of a plan.

    ``api`` steps carry method/path (and optionally body, query or a
    composite reference); the other actions carry only a ``note``.
    Composite parameters (``domains``, ``years``, ``count``) sit at the top
    level of the serialised step, next to ``bodyFrom``.
    """

    action: StepAction
    method: str | None = None
    path: str | None = None
    slug: str | None = None
    body: Any = None
    query: Mapping[str, Any] | None = None
    body_from: CompositeOperation | None = None
    domains: tuple[str, ...] | None = None
    years: int | None = None
    count: int | None = None
    description: str | None = None
    note: str | None = None

    @classmethod
    def api(cls, method: str, path: str, description: str, **kwargs: Any) -> PlanStep:
        return cls(StepAction.API, method=method, path=path, description=description, **kwargs)

    @classmethod
    def compute(cls, note: str) -> PlanStep:
        return cls(StepAction.COMPUTE, note=note)

    @classmethod
    def decision(cls, note: str) -> PlanStep:
        return cls(StepAction.DECISION, note=note)

    @classmethod
    def info(cls, note: str) -> PlanStep:
        return cls(StepAction.INFO, note=note)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"action": self.action.value}
        for key, value in (
            ("method", self.method),
            ("path", self.path),
            ("slug", self.slug),
            ("body", self.body),
            ("query", dict(self.query) if self.query is not None else None),
            ("bodyFrom", self.body_from.value if self.body_from else None),
            ("domains", list(self.domains) if self.domains is not None else None),
            ("years", self.years),
            ("count", self.count),
            ("description", self.description),
            ("note", self.note),
        ):
            if value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: Any) -> PlanStep:
        """Build a step from untrusted JSON (e.g. a reasoning-service reply)."""
        if not isinstance(data, Mapping):
            raise ValidationError("step must be an object", "step", data)

        try:
            action = StepAction(data.get("action"))
        except ValueError:
            raise ValidationError(
                f"unknown step action: {data.get('action')!r}", "action", data.get("action"),
            ) from None

        body_from = None
        if data.get("bodyFrom") is not None:
            try:
                body_from = CompositeOperation(data["bodyFrom"])
            except ValueError:
                raise ValidationError(
                    f"unknown composite operation: {data['bodyFrom']!r}", "bodyFrom", data["bodyFrom"],
                ) from None

        method = data.get("method")
        path = data.get("path")
        if action is StepAction.API:
            if body_from is None and not isinstance(path, str):
                raise ValidationError("api step requires a path", "path", path)
            method = str(method or "GET").upper()
            if method not in _METHODS:
                raise ValidationError(f"unsupported method: {method}", "method", method)

        query = data.get("query")
        if query is not None and not isinstance(query, Mapping):
            raise ValidationError("query must be an object", "query", query)

        domains = data.get("domains")
        if domains is not None:
            if not isinstance(domains, list) or not all(isinstance(d, str) for d in domains):
                raise ValidationError("domains must be a list of strings", "domains", domains)
            domains = tuple(domains)

        for name in ("years", "count"):
            value = data.get(name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValidationError(f"{name} must be an integer", name, value)

        return cls(
            action=action,
            method=method,
            path=path,
            slug=data.get("slug") if isinstance(data.get("slug"), str) else None,
            body=data.get("body"),
            query=query,
            body_from=body_from,
            domains=domains,
            years=data.get("years"),
            count=data.get("count"),
            description=data.get("description"),
            note=data.get("note"),
        )


@dataclass(frozen=True)
class Plan:
    strategy: PlanStrategy
    steps: tuple[PlanStep, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"strategy": self.strategy.value, "steps": [s.to_dict() for s in self.steps]}


@dataclass
class StepResult:
    step: PlanStep
    ok: bool
    data: Any = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"step": self.step.to_dict(), "ok": self.ok}
        if self.data is not None:
            out["data"] = self.data
        return out
