"""Slug → (method, path) resolution against the per-slug documentation.

When a caller names a documented operation by slug without giving both
the HTTP method and the path, the slug's markdown page is fetched and
scanned for the verb and path template. Recognised shapes, in order:

    1. Inline token            ``POST /v2/domains/available``
    2. OpenAPI-style block     ``/v2/domains:`` followed by ``get:``
    3. Verb line + path line   ``GET`` on one line, ``/v2/...`` on the next

The first shape that matches wins. No match is a ``ResolutionError``; the
resolver never guesses. The doc fetch is a single attempt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

import httpx
import structlog

from mailgate.core.context import USER_AGENT, RequestContext
from mailgate.core.errors import NetworkError, ResolutionError, ValidationError
from mailgate.core.executor import RequestExecutor

logger = structlog.get_logger()

_VERBS = "GET|POST|PUT|DELETE|PATCH"

_INLINE_RE = re.compile(rf"\b({_VERBS})\s+/([^\s`]+)", re.IGNORECASE)
_BLOCK_RE = re.compile(
    r"^[\t ]*/([^:\r\n]+):\s*[\r\n]+[\t ]*(get|post|put|delete|patch):",
    re.IGNORECASE | re.MULTILINE,
)
_VERB_LINE_RE = re.compile(rf"^({_VERBS})$")
_API_PREFIX_RE = re.compile(r"^/api(?=/|$)", re.IGNORECASE)
_PLACEHOLDER_RE = re.compile(r"\{([^{}/]+)\}")

# Same unreserved set as JavaScript's encodeURIComponent.
_PATH_PARAM_SAFE = "-_.!~*'()"


@dataclass(frozen=True)
class ResolvedEndpoint:
    method: str
    path: str


def normalize_path(path: str) -> str:
    """Single leading slash; drop an ``/api`` prefix the base already has."""
    path = "/" + path.strip().lstrip("/")
    path = _API_PREFIX_RE.sub("", path, count=1)
    return path or "/"


def parse_method_and_path(doc: str) -> ResolvedEndpoint | None:
    match = _INLINE_RE.search(doc)
    if match:
        return ResolvedEndpoint(match.group(1).upper(), normalize_path(match.group(2)))

    match = _BLOCK_RE.search(doc)
    if match:
        return ResolvedEndpoint(match.group(2).upper(), normalize_path(match.group(1)))

    lines = doc.splitlines()
    for current, following in zip(lines, lines[1:]):
        verb = current.strip().upper()
        if _VERB_LINE_RE.match(verb):
            candidate = following.strip()
            if candidate.startswith("/"):
                return ResolvedEndpoint(verb, normalize_path(candidate))
    return None


def substitute_path_params(path: str, path_params: Mapping[str, Any] | None) -> str:
    """Fill ``{name}`` placeholders; unknown placeholders are left as-is."""
    if not path_params:
        return path

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in path_params or path_params[name] is None:
            return match.group(0)
        return quote(str(path_params[name]), safe=_PATH_PARAM_SAFE)

    return _PLACEHOLDER_RE.sub(_replace, path)


class EndpointResolver:
    """Resolves slugs and delegates the actual call to the executor."""

    def __init__(
        self,
        executor: RequestExecutor,
        docs_client: httpx.AsyncClient,
        docs_base_url: str,
        *,
        timeout_s: float = 30.0,
    ) -> None:
        self._executor = executor
        self._docs_client = docs_client
        self._docs_base_url = docs_base_url.rstrip("/")
        self._timeout_s = timeout_s

    async def fetch_doc(self, slug: str) -> str:
        url = f"{self._docs_base_url}/{slug}.md"
        try:
            resp = await self._docs_client.get(
                url, headers={"user-agent": USER_AGENT}, timeout=self._timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Timed out fetching documentation for {slug}", url=url, timeout=True) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Could not fetch documentation for {slug}: {exc}", url=url) from exc

        if not resp.is_success:
            raise ResolutionError(
                f"Failed to fetch documentation for {slug}. HTTP {resp.status_code}",
                slug,
                status=resp.status_code,
            )
        return resp.text

    async def resolve(
        self,
        slug: str | None,
        method: str | None = None,
        path: str | None = None,
        path_params: Mapping[str, Any] | None = None,
    ) -> ResolvedEndpoint:
        if not method or not path:
            if not slug:
                raise ValidationError("'slug' or both 'method' and 'path' are required", "slug", slug)
            doc = await self.fetch_doc(slug)
            guess = parse_method_and_path(doc)
            if guess is None:
                logger.warning("endpoint_resolution_failed", slug=slug, doc_chars=len(doc))
                raise ResolutionError(
                    f"Unable to determine method/path for slug '{slug}'. Provide both explicitly.",
                    slug,
                )
            method = method or guess.method
            path = path or guess.path
            logger.debug("endpoint_resolved", slug=slug, method=method, path=path)

        resolved_path = normalize_path(substitute_path_params(path, path_params))
        return ResolvedEndpoint(method.upper(), resolved_path)

    async def invoke(
        self,
        slug: str | None,
        *,
        method: str | None = None,
        path: str | None = None,
        path_params: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
        context: RequestContext | None = None,
    ) -> Any:
        resolved = await self.resolve(slug, method, path, path_params)
        return await self._executor.execute(
            resolved.path,
            resolved.method,
            query=query,
            body=body,
            headers=headers,
            context=context,
        )
