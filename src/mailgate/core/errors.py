"""Error kinds raised by the request core and the planner.

Every terminal failure is a ``MailgateError`` subclass with a stable
machine-readable ``code`` and a ``details`` dict, so the tool layer can
report ``{kind, code, message, details}`` without inspecting messages.
Credentials never appear in ``details``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


class MailgateError(Exception):
    """Root exception for all gateway domain errors."""

    code = "MAILGATE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(MailgateError):
    """A required setting (usually the API key) is missing. Never retried."""

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, setting: str) -> None:
        super().__init__(message, {"setting": setting})
        self.setting = setting


class ValidationError(MailgateError):
    """Malformed input to an executor, operation or planner entry point."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str, value: Any = None) -> None:
        super().__init__(message, {"field": field, "value": value})
        self.field = field
        self.value = value


_TRANSIENT_STATUSES = frozenset({429})


class ApiError(MailgateError):
    """Upstream answered with a non-2xx status (after any retries)."""

    code = "API_ERROR"

    def __init__(self, message: str, status: int, response: Any = None) -> None:
        super().__init__(message, {"status": status, "response": response})
        self.status = status
        self.response = response

    @property
    def is_transient(self) -> bool:
        """429 and 5xx are retried by the executor before surfacing."""
        return self.status in _TRANSIENT_STATUSES or self.status >= 500


class ResolutionError(MailgateError):
    """A documentation slug could not be turned into a method and path."""

    code = "RESOLUTION_ERROR"

    def __init__(self, message: str, slug: str | None, **details: Any) -> None:
        super().__init__(message, {"slug": slug, **details})
        self.slug = slug


class NetworkError(MailgateError):
    """Timeout or connection-level failure talking to the upstream."""

    code = "NETWORK_ERROR"

    def __init__(self, message: str, *, url: str | None = None, timeout: bool = False) -> None:
        super().__init__(message, {"url": url, "timeout": timeout})
        self.url = url
        self.timeout = timeout


def error_report(exc: BaseException) -> dict[str, Any]:
    """Render any exception as a short, credential-free report."""
    if isinstance(exc, MailgateError):
        return exc.to_dict()
    return {
        "kind": "InternalError",
        "code": "INTERNAL_ERROR",
        "message": str(exc) or type(exc).__name__,
        "details": {"type": type(exc).__name__},
    }
