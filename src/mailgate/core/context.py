"""Workspace / provider context applied to every outbound call.

The upstream scopes most operations by two headers, ``x-workspace-key``
and ``x-service-provider``. ``RequestContext`` is an immutable value that
request-building code receives explicitly; ``ContextStore`` owns the
process-level default and is the only place it changes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum

from mailgate.core.errors import ValidationError

USER_AGENT = "mailgate/0.1"


class ServiceProvider(str, Enum):
    GOOGLE = "GOOGLE"
    MICROSOFT = "MICROSOFT"


def coerce_provider(value: str | ServiceProvider | None) -> ServiceProvider | None:
    """Normalise user input ("google", " Microsoft ") to the enum."""
    if value is None or isinstance(value, ServiceProvider):
        return value
    try:
        return ServiceProvider(str(value).strip().upper())
    except ValueError:
        raise ValidationError(
            f"serviceProvider must be one of {[p.value for p in ServiceProvider]}",
            "serviceProvider",
            value,
        ) from None


@dataclass(frozen=True)
class RequestContext:
    workspace_key: str | None = None
    service_provider: ServiceProvider | None = ServiceProvider.GOOGLE

    def with_overrides(
        self,
        workspace_key: str | None = None,
        service_provider: str | ServiceProvider | None = None,
    ) -> RequestContext:
        """Per-call overrides; ``None`` means inherit."""
        return replace(
            self,
            workspace_key=workspace_key if workspace_key is not None else self.workspace_key,
            service_provider=(
                coerce_provider(service_provider)
                if service_provider is not None
                else self.service_provider
            ),
        )

    def headers(self, api_key: str | None) -> dict[str, str]:
        headers = {
            "content-type": "application/json",
            "x-auth-zapmail": api_key or "",
            "user-agent": USER_AGENT,
        }
        if self.workspace_key:
            headers["x-workspace-key"] = self.workspace_key
        if self.service_provider:
            headers["x-service-provider"] = self.service_provider.value
        return headers

    @property
    def scope(self) -> str:
        """Stable label for the headers this context produces."""
        provider = self.service_provider.value if self.service_provider else ""
        return f"{self.workspace_key or ''}/{provider}"

    def to_dict(self) -> dict[str, str | None]:
        return {
            "workspaceKey": self.workspace_key,
            "serviceProvider": self.service_provider.value if self.service_provider else None,
        }


class ContextStore:
    """Holds the process-level default context.

    Readers get an immutable snapshot, so in-flight requests are never
    affected by a concurrent ``set``.
    """

    def __init__(self, initial: RequestContext | None = None) -> None:
        self._current = initial or RequestContext()
        self._lock = threading.Lock()

    def get(self) -> RequestContext:
        return self._current

    def set(
        self,
        workspace_key: str | None = None,
        service_provider: str | ServiceProvider | None = None,
    ) -> RequestContext:
        with self._lock:
            self._current = self._current.with_overrides(workspace_key, service_provider)
            return self._current
