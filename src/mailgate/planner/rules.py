"""Rule-based planner: free text → ordered plan steps.

Intents are tried in a fixed order and the first match wins, so more
specific phrasings (create *and* connect, export *to a platform*) sit
ahead of the generic ones they would otherwise be swallowed by. Each
intent has a handler that emits a fixed step sequence, filling in values
parsed from the instruction (domains, years, mailbox count, export app).
Missing credentials become literal placeholder values, never omissions.

Planning is pure: no I/O, and the same text always yields the same plan.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from mailgate.integrations.zapmail import (
    PATH_DOMAINS,
    PATH_DOMAINS_AVAILABLE,
    PATH_DOMAINS_BUY,
    PATH_EXPORT_MAILBOXES,
    PATH_MAILBOXES,
    PATH_THIRD_PARTY_ACCOUNTS,
    PATH_WALLET_BALANCE,
    PATH_WORKSPACES,
    SLUG_CHECK_AVAILABILITY,
    ExportApp,
)
from mailgate.planner.models import CompositeOperation, Plan, PlanStep, PlanStrategy

# ═══════════════════════════════════════════════════════════════════════════
# PARAMETER EXTRACTION
# ═══════════════════════════════════════════════════════════════════════════

_HOSTNAME = r"[a-z0-9-]+\.(?:com|net|org|io|ai|app|co|in)"
_DOMAIN_RE = re.compile(rf"\b({_HOSTNAME})\b", re.IGNORECASE)
_YEARS_RE = re.compile(r"\b(\d+)\s*(?:year|years|yr|yrs)\b", re.IGNORECASE)
_MAILBOX_COUNT_RE = re.compile(r"\b(\d+)\s*(?:mailbox(?:es)?|inbox(?:es)?)\b", re.IGNORECASE)
_EXPORT_DOMAIN_RE = re.compile(
    r"\b(?:from|in|to)\s+([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b", re.IGNORECASE,
)

DEFAULT_YEARS = 1
DEFAULT_MAILBOX_COUNT = 3

CONNECT_EMAIL_PLACEHOLDER = "placeholder@example.com"
CONNECT_PASSWORD_PLACEHOLDER = "APP_PASSWORD"
REQUIRED_PLACEHOLDER = "REQUIRED"
MAILBOX_IDS_PLACEHOLDER = "REQUIRED_MAILBOX_IDS"
DOMAIN_NAME_PLACEHOLDER = "DOMAIN_NAME"


def parse_domains(text: str) -> list[str]:
    """Bare hostnames with a known TLD, lowercased, deduplicated in order."""
    seen: dict[str, None] = {}
    for match in _DOMAIN_RE.finditer(text):
        seen.setdefault(match.group(1).lower(), None)
    return list(seen)


def parse_years(text: str) -> int:
    match = _YEARS_RE.search(text)
    return max(1, int(match.group(1))) if match else DEFAULT_YEARS


def parse_mailbox_count(text: str) -> int:
    match = _MAILBOX_COUNT_RE.search(text)
    return max(1, int(match.group(1))) if match else DEFAULT_MAILBOX_COUNT


def choose_export_app(text: str) -> ExportApp:
    lowered = text.lower()
    if "reachinbox" in lowered:
        return ExportApp.REACHINBOX
    if "smartlead" in lowered:
        return ExportApp.SMARTLEAD
    if re.search(r"reply\.?io", lowered):
        return ExportApp.REPLY_IO
    return ExportApp.INSTANTLY


# ═══════════════════════════════════════════════════════════════════════════
# INTENTS
# ═══════════════════════════════════════════════════════════════════════════


class Intent(str, Enum):
    LIST_WORKSPACES = "LIST_WORKSPACES"
    LIST_DOMAINS = "LIST_DOMAINS"
    CHECK_DOMAIN = "CHECK_DOMAIN"
    BUY_DOMAINS = "BUY_DOMAINS"
    CREATE_AND_CONNECT = "CREATE_AND_CONNECT"
    CREATE_MAILBOXES_EMPTY = "CREATE_MAILBOXES_EMPTY"
    CONNECT_EXPORT_APP = "CONNECT_EXPORT_APP"
    EXPORT_TO_REACHINBOX = "EXPORT_TO_REACHINBOX"
    EXPORT_TO_INSTANTLY = "EXPORT_TO_INSTANTLY"
    EXPORT_TO_SMARTLEAD = "EXPORT_TO_SMARTLEAD"
    EXPORT_TO_REPLYIO = "EXPORT_TO_REPLYIO"
    EXPORT_SPECIFIC = "EXPORT_SPECIFIC"
    EXPORT_BY_DOMAIN = "EXPORT_BY_DOMAIN"
    EXPORT_CSV = "EXPORT_CSV"
    EXPORT_MAILBOXES = "EXPORT_MAILBOXES"


@dataclass(frozen=True)
class IntentRule:
    intent: Intent
    pattern: re.Pattern[str]

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rule(intent: Intent, pattern: str) -> IntentRule:
    return IntentRule(intent, re.compile(pattern, re.IGNORECASE))


_DOMAIN_WORD = rf"(?:\bdomains?\b|\b{_HOSTNAME}\b)"
_EXPORT_VERB = r"\b(?:export|send|transfer)\b"

INTENT_RULES: tuple[IntentRule, ...] = (
    _rule(Intent.LIST_WORKSPACES, r"\b(?:list|show|get)\b.*\bworkspaces?\b"),
    _rule(Intent.LIST_DOMAINS, r"\b(?:list|show|get)\b.*\bdomains?\b"),
    _rule(Intent.CHECK_DOMAIN, rf"\b(?:check|is|are)\b.*{_DOMAIN_WORD}.*\bavailable\b"),
    _rule(Intent.BUY_DOMAINS, rf"\b(?:buy|purchase|register)\b.*{_DOMAIN_WORD}"),
    _rule(
        Intent.CREATE_AND_CONNECT,
        r"\b(?:create|add|setup|set up)\b.*\b(?:mailbox(?:es)?|inbox(?:es)?)\b.*\b(?:connect|link)\b",
    ),
    _rule(
        Intent.CREATE_MAILBOXES_EMPTY,
        r"\b(?:create|add|setup|set up)\b.*\b(?:mailbox(?:es)?|inbox(?:es)?)\b.*\b(?:0|zero|empty)\b.*\bdomains?\b",
    ),
    _rule(
        Intent.CONNECT_EXPORT_APP,
        r"\b(?:connect|link|add)\b.*\b(?:instantly|reachinbox|smartlead|reply\.?io)\b",
    ),
    _rule(Intent.EXPORT_TO_REACHINBOX, rf"{_EXPORT_VERB}.*\b(?:reachinbox|reachin)\b"),
    _rule(Intent.EXPORT_TO_INSTANTLY, rf"{_EXPORT_VERB}.*\binstantly\b"),
    _rule(Intent.EXPORT_TO_SMARTLEAD, rf"{_EXPORT_VERB}.*\bsmartlead\b"),
    _rule(Intent.EXPORT_TO_REPLYIO, rf"{_EXPORT_VERB}.*\b(?:reply\.?io|replyio)\b"),
    _rule(
        Intent.EXPORT_SPECIFIC,
        r"\b(?:export|send)\b.*\b(?:specific|certain|selected)\b.*\b(?:mailbox(?:es)?|emails?)\b",
    ),
    _rule(
        Intent.EXPORT_BY_DOMAIN,
        r"\b(?:export|send)\b.*(?:\bdomains?\b.*\b(?:mailbox(?:es)?|emails?)\b"
        r"|\b(?:mailbox(?:es)?|emails?)\b.*\b(?:from|in)\s+[a-z0-9.-]+\.[a-z]{2,}\b)",
    ),
    _rule(Intent.EXPORT_CSV, r"\b(?:export|download|get)\b.*\b(?:csv|file|spreadsheet)\b"),
    _rule(Intent.EXPORT_MAILBOXES, r"\b(?:export|download|get)\b.*\b(?:mailbox(?:es)?|emails?|contacts?)\b"),
)

# "setup 100 mailboxes and connect to instantly" without a leading verb match.
_COMPOUND_FALLBACK = re.compile(r"\b(?:mailbox(?:es)?|inbox(?:es)?)\b.*\b(?:connect|link)\b", re.IGNORECASE)

NO_MATCH_NOTE = "No rule matched. Use dynamic endpoint tools or specify slug/path."


def match_intent(text: str) -> Intent | None:
    for rule in INTENT_RULES:
        if rule.matches(text):
            return rule.intent
    if _COMPOUND_FALLBACK.search(text):
        return Intent.CREATE_AND_CONNECT
    return None


# ═══════════════════════════════════════════════════════════════════════════
# STEP BUILDERS
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Credentials:
    email: str | None = None
    password: str | None = None


def _connect_step(app: ExportApp, creds: Credentials, *, placeholder: str | None = None,
                  description: str) -> PlanStep:
    return PlanStep.api(
        "POST",
        PATH_THIRD_PARTY_ACCOUNTS,
        description,
        body={
            "email": creds.email or placeholder or CONNECT_EMAIL_PLACEHOLDER,
            "password": creds.password or placeholder or CONNECT_PASSWORD_PLACEHOLDER,
            "app": app.value,
        },
    )


def _create_on_empty_steps(text: str, note: str, description: str) -> list[PlanStep]:
    count = parse_mailbox_count(text)
    return [
        PlanStep.api("GET", PATH_DOMAINS, "List domains"),
        PlanStep.compute(note),
        PlanStep.api(
            "POST",
            PATH_MAILBOXES,
            description.format(count=count),
            body_from=CompositeOperation.CREATE_MAILBOXES_FOR_ZERO_DOMAINS,
            count=count,
        ),
    ]


def _export_step(body: dict, description: str) -> PlanStep:
    return PlanStep.api("POST", PATH_EXPORT_MAILBOXES, description, body=body)


def _list_workspaces(text: str, creds: Credentials) -> list[PlanStep]:
    return [PlanStep.api("GET", PATH_WORKSPACES, "List all workspaces")]


def _list_domains(text: str, creds: Credentials) -> list[PlanStep]:
    return [PlanStep.api("GET", PATH_DOMAINS, "List domains in current workspace")]


def _check_domain(text: str, creds: Credentials) -> list[PlanStep]:
    years = parse_years(text)
    steps = [PlanStep.decision("Wallet-first is irrelevant for availability; proceed to availability check.")]
    for domain in parse_domains(text):
        steps.append(PlanStep.api(
            "POST",
            PATH_DOMAINS_AVAILABLE,
            f"Check availability for {domain}",
            slug=SLUG_CHECK_AVAILABILITY,
            body={"domainName": domain, "years": years},
        ))
    return steps


def _buy_domains(text: str, creds: Credentials) -> list[PlanStep]:
    domains = parse_domains(text)
    return [
        PlanStep.api("GET", PATH_WALLET_BALANCE, "Get wallet balance"),
        PlanStep.compute(
            "Check availability & price for each domain, compute total, prefer wallet if sufficient."
        ),
        PlanStep.api(
            "POST",
            PATH_DOMAINS_BUY,
            f"Purchase {len(domains)} domains (wallet-first)",
            body_from=CompositeOperation.PURCHASE_DOMAINS,
            domains=tuple(domains),
            years=parse_years(text),
        ),
    ]


def _create_and_connect(text: str, creds: Credentials) -> list[PlanStep]:
    app = choose_export_app(text)
    steps = _create_on_empty_steps(
        text,
        "Filter domains with 0 mailboxes, choose target domains",
        "Create {count} mailboxes/domain",
    )
    steps.append(_connect_step(app, creds, description=f"Connect {app.value}"))
    return steps


def _create_mailboxes_empty(text: str, creds: Credentials) -> list[PlanStep]:
    return _create_on_empty_steps(
        text,
        "Filter domains with 0 mailboxes",
        "Create {count} mailboxes on each zero-mailbox domain",
    )


def _connect_export_app(text: str, creds: Credentials) -> list[PlanStep]:
    app = choose_export_app(text)
    return [_connect_step(app, creds, description=f"Connect third-party app {app.value}")]


_PLATFORM_LABELS = {
    ExportApp.REACHINBOX: "Reachinbox",
    ExportApp.INSTANTLY: "Instantly",
    ExportApp.SMARTLEAD: "Smartlead",
    ExportApp.REPLY_IO: "Reply.io",
}


def _export_to(app: ExportApp) -> Callable[[str, Credentials], list[PlanStep]]:
    label = _PLATFORM_LABELS[app]

    def handler(text: str, creds: Credentials) -> list[PlanStep]:
        return [
            PlanStep.info(
                f"Export to {label} requires credentials. "
                f"Please provide your {label} email and password."
            ),
            _connect_step(
                app, creds,
                placeholder=REQUIRED_PLACEHOLDER,
                description=f"Add {label} account credentials",
            ),
            _export_step(
                {"apps": [app.value], "status": "ACTIVE"},
                f"Export all active mailboxes to {label}",
            ),
        ]

    return handler


def _export_specific(text: str, creds: Credentials) -> list[PlanStep]:
    return [
        PlanStep.info(
            "Export specific mailboxes requires mailbox IDs. Please provide the IDs or use filters."
        ),
        _export_step(
            {"apps": [ExportApp.MANUAL.value], "ids": [MAILBOX_IDS_PLACEHOLDER]},
            "Export specific mailboxes as CSV",
        ),
    ]


def _export_by_domain(text: str, creds: Credentials) -> list[PlanStep]:
    match = _EXPORT_DOMAIN_RE.search(text)
    if match:
        domain = match.group(1)
        return [_export_step(
            {"apps": [ExportApp.MANUAL.value], "contains": domain, "status": "ACTIVE"},
            f"Export mailboxes from domain {domain} as CSV",
        )]
    return [
        PlanStep.info("Export by domain requires domain name. Please specify the domain."),
        _export_step(
            {"apps": [ExportApp.MANUAL.value], "contains": DOMAIN_NAME_PLACEHOLDER, "status": "ACTIVE"},
            "Export mailboxes from specified domain as CSV",
        ),
    ]


def _export_csv(text: str, creds: Credentials) -> list[PlanStep]:
    return [_export_step(
        {"apps": [ExportApp.MANUAL.value], "status": "ACTIVE"},
        "Export all active mailboxes as CSV file",
    )]


def _export_mailboxes(text: str, creds: Credentials) -> list[PlanStep]:
    return [
        PlanStep.info("Export mailboxes. Please specify target platform or use MANUAL for CSV export."),
        _export_step(
            {"apps": [ExportApp.MANUAL.value], "status": "ACTIVE"},
            "Export all active mailboxes as CSV",
        ),
    ]


_HANDLERS: dict[Intent, Callable[[str, Credentials], list[PlanStep]]] = {
    Intent.LIST_WORKSPACES: _list_workspaces,
    Intent.LIST_DOMAINS: _list_domains,
    Intent.CHECK_DOMAIN: _check_domain,
    Intent.BUY_DOMAINS: _buy_domains,
    Intent.CREATE_AND_CONNECT: _create_and_connect,
    Intent.CREATE_MAILBOXES_EMPTY: _create_mailboxes_empty,
    Intent.CONNECT_EXPORT_APP: _connect_export_app,
    Intent.EXPORT_TO_REACHINBOX: _export_to(ExportApp.REACHINBOX),
    Intent.EXPORT_TO_INSTANTLY: _export_to(ExportApp.INSTANTLY),
    Intent.EXPORT_TO_SMARTLEAD: _export_to(ExportApp.SMARTLEAD),
    Intent.EXPORT_TO_REPLYIO: _export_to(ExportApp.REPLY_IO),
    Intent.EXPORT_SPECIFIC: _export_specific,
    Intent.EXPORT_BY_DOMAIN: _export_by_domain,
    Intent.EXPORT_CSV: _export_csv,
    Intent.EXPORT_MAILBOXES: _export_mailboxes,
}


def plan_from_rules(
    instruction: str,
    *,
    email: str | None = None,
    password: str | None = None,
) -> Plan:
    text = str(instruction or "").strip()
    intent = match_intent(text)
    if intent is None:
        steps = [PlanStep.info(NO_MATCH_NOTE)]
    else:
        steps = _HANDLERS[intent](text, Credentials(email or None, password or None))
    return Plan(PlanStrategy.RULES, tuple(steps))
