"""High-level Zapmail operations built on the executor and resolver.

Simple reads map to one call. Composite operations (purchase, mailbox
creation on empty domains) chain several dependent calls and return one
aggregated result; the planner invokes them from a single step.

Every function takes the request context explicitly; the tool layer
decides which workspace/provider applies.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import structlog

from mailgate.core.context import RequestContext
from mailgate.core.errors import MailgateError, ValidationError
from mailgate.core.executor import RequestExecutor
from mailgate.core.validation import (
    validate_array,
    validate_positive_int,
    validate_string,
    validate_string_list,
)
from mailgate.integrations.generators import MailboxGenerator, mailbox_generator
from mailgate.integrations.resolver import EndpointResolver

logger = structlog.get_logger()


class ExportApp(str, Enum):
    REACHINBOX = "REACHINBOX"
    INSTANTLY = "INSTANTLY"
    SMARTLEAD = "SMARTLEAD"
    REPLY_IO = "REPLY_IO"
    MANUAL = "MANUAL"


# Documentation slugs for the operations called by fixed method/path.
SLUG_CHECK_AVAILABILITY = "get-available-domains-for-registration-13521189e0"
SLUG_PURCHASE_DOMAINS = "get-domains-purchase-payment-link-13521209e0"
SLUG_ASSIGN_MAILBOXES = "assign-new-mailboxes-to-domains-13490321e0"
SLUG_ADD_THIRD_PARTY = "add-third-party-account-details-13490752e0"

PATH_WALLET_BALANCE = "/v2/wallet/balance"
PATH_WORKSPACES = "/v2/workspaces"
PATH_DOMAINS = "/v2/domains"
PATH_DOMAINS_AVAILABLE = "/v2/domains/available"
PATH_DOMAINS_BUY = "/v2/domains/buy"
PATH_MAILBOXES = "/v2/mailboxes"
PATH_MAILBOXES_LIST = "/v2/mailboxes/list"
PATH_THIRD_PARTY_ACCOUNTS = "/v2/exports/accounts/third-party"
PATH_EXPORT_MAILBOXES = "/v2/exports/mailboxes"
PATH_USER = "/v2/user"

# Pause between sequential per-domain calls.
_DOMAIN_CALL_GAP_S = 0.15
_MAILBOX_CALL_GAP_S = 0.25


def validate_app(value: Any, field: str = "app") -> ExportApp:
    if isinstance(value, ExportApp):
        return value
    try:
        return ExportApp(str(value).strip().upper())
    except ValueError:
        raise ValidationError(f"Unsupported app: {value}", field, value) from None


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def extract_wallet_balance(data: Any) -> float:
    if not isinstance(data, dict):
        return 0.0
    inner = data.get("data") if isinstance(data.get("data"), dict) else {}
    for candidate in (data.get("walletBalance"), data.get("balance"), inner.get("walletBalance")):
        if isinstance(candidate, (int, float)) and not isinstance(candidate, bool):
            return float(candidate)
    return 0.0


def extract_domain_price(availability: Any, domain: str) -> float:
    """Price for ``domain`` from an availability response, 0 if unknown."""
    if not isinstance(availability, dict):
        return 0.0
    inner = availability.get("data") if isinstance(availability.get("data"), dict) else {}
    listing = availability.get("availableDomains") or inner.get("availableDomains")
    price: float | None = None
    if isinstance(listing, list) and listing:
        match = next(
            (
                item for item in listing
                if isinstance(item, dict)
                and isinstance(item.get("domainName"), str)
                and item["domainName"].lower() == domain.lower()
            ),
            None,
        )
        if match is not None and match.get("domainPrice") is not None:
            price = _number(match["domainPrice"])
        elif isinstance(listing[0], dict) and listing[0].get("domainPrice") is not None:
            price = _number(listing[0]["domainPrice"])
    if not price:
        fallback = availability.get("price")
        if fallback is None:
            fallback = inner.get("price")
        price = _number(fallback)
    return price or 0.0


def extract_domain_items(data: Any) -> list[dict[str, Any]]:
    """Domain list responses come in several envelopes; normalise to a list."""
    if isinstance(data, list):
        candidates: Any = data
    elif isinstance(data, dict):
        inner = data.get("data")
        candidates = (
            data.get("domains")
            or (inner.get("domains") if isinstance(inner, dict) else None)
            or (inner if isinstance(inner, list) else None)
            or []
        )
    else:
        candidates = []
    return [item for item in candidates if isinstance(item, dict)]


def assigned_mailbox_count(domain: Mapping[str, Any]) -> Any:
    for key in ("assignedMailboxesCount", "mailboxes", "mailboxesCount"):
        if domain.get(key) is not None:
            return domain[key]
    return 0


class ZapmailOperations:
    """Named operations exposed as tools and used by plan execution."""

    def __init__(
        self,
        executor: RequestExecutor,
        resolver: EndpointResolver,
        *,
        bulk_update_delay_s: float = 1.0,
        generator: MailboxGenerator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._resolver = resolver
        self._bulk_update_delay_s = bulk_update_delay_s
        self._generator = generator or mailbox_generator()
        self._sleep = sleep

    # ── Reads ────────────────────────────────────────────────

    async def wallet_balance(self, *, context: RequestContext) -> float:
        data = await self._executor.execute(PATH_WALLET_BALANCE, "GET", context=context)
        return extract_wallet_balance(data)

    async def list_workspaces(self, *, context: RequestContext) -> Any:
        return await self._executor.execute(PATH_WORKSPACES, "GET", context=context)

    async def list_domains(
        self, *, context: RequestContext, contains: str | None = None,
    ) -> Any:
        return await self._executor.execute(
            PATH_DOMAINS,
            "GET",
            query={"contains": contains} if contains else None,
            context=context,
        )

    async def user_profile(self, *, context: RequestContext, timeout_s: float | None = None) -> Any:
        return await self._executor.execute(PATH_USER, "GET", context=context, timeout_s=timeout_s)

    # ── Domains ──────────────────────────────────────────────

    async def check_domain_availability(
        self, domain_name: str, years: int = 1, *, context: RequestContext,
    ) -> Any:
        validate_string(domain_name, "domainName", max_length=253)
        years = validate_positive_int(years, "years")
        return await self._resolver.invoke(
            SLUG_CHECK_AVAILABILITY,
            method="POST",
            path=PATH_DOMAINS_AVAILABLE,
            body={"domainName": domain_name, "years": years},
            context=context,
        )

    async def check_domain_availability_batch(
        self, domains: list[str], years: int = 1, *, context: RequestContext,
    ) -> list[dict[str, Any]]:
        validate_string_list(domains, "domains")
        results = []
        for domain in domains:
            result = await self.check_domain_availability(domain, years, context=context)
            results.append({"domainName": domain, "result": result})
            await self._sleep(_DOMAIN_CALL_GAP_S)
        return results

    async def purchase_domains(
        self,
        domains: list[str],
        years: int = 1,
        *,
        prefer_wallet: bool = True,
        context: RequestContext,
    ) -> dict[str, Any]:
        """Price every domain, decide wallet vs payment link, then buy.

        Prices are looked up one domain at a time with a short pause so a
        large order does not burst the upstream rate limit.
        """
        validate_string_list(domains, "domains")
        years = validate_positive_int(years, "years")

        total = 0.0
        specs = []
        for index, domain in enumerate(domains):
            if index:
                await self._sleep(_DOMAIN_CALL_GAP_S)
            availability = await self.check_domain_availability(domain, years, context=context)
            price = extract_domain_price(availability, domain)
            specs.append({"domainName": domain, "years": years, "price": price})
            total += price * years

        use_wallet = False
        if prefer_wallet:
            balance = await self.wallet_balance(context=context)
            use_wallet = balance >= total
            logger.info(
                "purchase_wallet_decision",
                balance=balance,
                total=total,
                use_wallet=use_wallet,
                domains=len(domains),
            )

        payload = {
            "domains": [{"domainName": s["domainName"], "years": s["years"]} for s in specs],
            "useWallet": use_wallet,
        }
        result = await self._resolver.invoke(
            SLUG_PURCHASE_DOMAINS,
            method="POST",
            path=PATH_DOMAINS_BUY,
            body=payload,
            context=context,
        )
        return {"useWallet": use_wallet, "total": total, "result": result}

    # ── Mailboxes ────────────────────────────────────────────

    async def create_mailboxes_for_zero_domains(
        self,
        count_per_domain: int = 3,
        *,
        context: RequestContext,
        generator: MailboxGenerator | None = None,
    ) -> dict[str, Any]:
        count_per_domain = validate_positive_int(count_per_domain, "countPerDomain")
        generate = generator or self._generator

        domains_data = await self.list_domains(context=context)
        empty = [d for d in extract_domain_items(domains_data) if assigned_mailbox_count(d) == 0]

        created = []
        for domain in empty:
            domain_id = domain.get("id") or domain.get("domainId") or domain.get("domainID")
            domain_name = domain.get("domain") or domain.get("name")
            if not domain_id or not domain_name:
                continue

            mailboxes = [
                {
                    "firstName": m["firstName"],
                    "lastName": m["lastName"],
                    "mailboxUsername": m["mailboxUsername"],
                    "domainName": m["domainName"],
                }
                for m in generate(domain_name, count_per_domain)
            ]
            response = await self._resolver.invoke(
                SLUG_ASSIGN_MAILBOXES,
                method="POST",
                path=PATH_MAILBOXES,
                body={str(domain_id): mailboxes},
                context=context,
            )
            created.append({"domain": domain_name, "domainId": domain_id, "response": response})
            await self._sleep(_MAILBOX_CALL_GAP_S)

        logger.info("mailboxes_created_for_empty_domains", empty_domains=len(empty), created=len(created))
        return {"createdCount": len(created), "details": created}

    async def bulk_update_mailboxes(
        self, updates: list[dict[str, Any]], *, context: RequestContext,
    ) -> dict[str, Any]:
        """Apply name/username edits one mailbox at a time.

        Per-item failures are collected rather than raised so one bad entry
        does not abandon the rest of the batch.
        """
        validate_array(updates, "updates", min_length=1)
        results: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []

        for index, update in enumerate(updates):
            mailbox_id = update.get("mailboxId") if isinstance(update, dict) else None
            try:
                if not isinstance(update, dict):
                    raise ValidationError("update must be an object", "updates", update)
                validate_string(mailbox_id, "mailboxId")
                fields = {
                    key: validate_string(update[key], key)
                    for key in ("firstName", "lastName", "username")
                    if update.get(key)
                }
                if not fields:
                    errors.append({"index": index, "mailboxId": mailbox_id, "error": "No valid update fields provided"})
                    continue
                data = await self._executor.execute(
                    PATH_MAILBOXES,
                    "PUT",
                    body={"mailboxData": [{"mailboxId": mailbox_id, **fields}]},
                    context=context,
                )
                results.append({"index": index, "mailboxId": mailbox_id, "status": "success", "data": data})
                if index < len(updates) - 1:
                    await self._sleep(self._bulk_update_delay_s)
            except MailgateError as exc:
                errors.append({"index": index, "mailboxId": mailbox_id, "error": exc.message, "code": exc.code})

        return {
            "total": len(updates),
            "successful": len(results),
            "failed": len(errors),
            "results": results,
            "errors": errors,
        }

    async def search_mailboxes(
        self,
        *,
        context: RequestContext,
        first_name: str | None = None,
        last_name: str | None = None,
        username: str | None = None,
        domain: str | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        data = await self._executor.execute(PATH_MAILBOXES_LIST, "GET", context=context)
        inner = data.get("data") if isinstance(data, dict) else None
        domains = inner.get("domains") if isinstance(inner, dict) else None
        if not isinstance(domains, list):
            return {"mailboxes": [], "total": 0}

        def _contains(haystack: Any, needle: str | None) -> bool:
            return needle is None or (
                isinstance(haystack, str) and needle.lower() in haystack.lower()
            )

        matches = []
        for entry in domains:
            if not isinstance(entry, dict) or not _contains(entry.get("domain"), domain):
                continue
            for mailbox in entry.get("mailboxes") or []:
                if (
                    _contains(mailbox.get("firstName"), first_name)
                    and _contains(mailbox.get("lastName"), last_name)
                    and _contains(mailbox.get("username"), username)
                    and (status is None or str(mailbox.get("status", "")).upper() == status.upper())
                ):
                    matches.append({**mailbox, "domain": entry.get("domain")})
        return {"mailboxes": matches, "total": len(matches)}

    # ── Exports ──────────────────────────────────────────────

    async def add_third_party_account(
        self, email: str, password: str, app: str, *, context: RequestContext,
    ) -> Any:
        validate_string(email, "email")
        validate_string(password, "password")
        export_app = validate_app(app)
        return await self._resolver.invoke(
            SLUG_ADD_THIRD_PARTY,
            method="POST",
            path=PATH_THIRD_PARTY_ACCOUNTS,
            body={"email": email, "password": password, "app": export_app.value},
            context=context,
        )

    async def export_mailboxes(
        self,
        apps: list[str],
        *,
        context: RequestContext,
        ids: list[str] | None = None,
        exclude_ids: list[str] | None = None,
        tag_ids: list[str] | None = None,
        contains: str | None = None,
        status: str | None = None,
    ) -> Any:
        validate_array(apps, "apps", min_length=1)
        body: dict[str, Any] = {"apps": [validate_app(a, "apps").value for a in apps]}
        for key, value in (
            ("ids", ids),
            ("excludeIds", exclude_ids),
            ("tagIds", tag_ids),
            ("contains", contains),
            ("status", status),
        ):
            if value is not None:
                body[key] = value
        return await self._executor.execute(PATH_EXPORT_MAILBOXES, "POST", body=body, context=context)

    # ── Generic ──────────────────────────────────────────────

    async def call_endpoint(
        self,
        *,
        context: RequestContext,
        slug: str | None = None,
        method: str | None = None,
        path: str | None = None,
        path_params: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        if not isinstance(slug, str) and not isinstance(path, str):
            raise ValidationError("'slug' or 'path' is required", "slug", slug)
        return await self._resolver.invoke(
            slug,
            method=method,
            path=path,
            path_params=path_params,
            query=query,
            body=body,
            context=context,
        )
