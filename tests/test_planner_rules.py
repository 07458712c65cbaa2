"""Rule-based planner: intent priority, parameter parsing and emitted steps."""

from __future__ import annotations

import pytest

from mailgate.planner.models import CompositeOperation, PlanStrategy, StepAction
from mailgate.planner.rules import (
    NO_MATCH_NOTE,
    Intent,
    choose_export_app,
    match_intent,
    parse_domains,
    parse_mailbox_count,
    parse_years,
    plan_from_rules,
)


def _api_steps(plan):
    return [s for s in plan.steps if s.action is StepAction.API]


# ---------------------------------------------------------------------------
# Parameter extraction
# ---------------------------------------------------------------------------


class TestParsing:
    def test_domains_lowercased_and_deduplicated(self):
        assert parse_domains("Buy Alpha.COM, beta.io and alpha.com") == ["alpha.com", "beta.io"]

    def test_unknown_tld_ignored(self):
        assert parse_domains("buy example.xyz") == []

    @pytest.mark.parametrize(
        "text,expected",
        [("for 2 years", 2), ("3yrs", 3), ("1 year", 1), ("0 years", 1), ("no duration", 1)],
    )
    def test_years(self, text, expected):
        assert parse_years(text) == expected

    @pytest.mark.parametrize(
        "text,expected",
        [("create 5 mailboxes", 5), ("add 1 inbox", 1), ("create 1 mailbox", 1), ("add 2 inbox", 2), ("some mailboxes", 3)],
    )
    def test_mailbox_count(self, text, expected):
        assert parse_mailbox_count(text) == expected

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("connect reachinbox", "REACHINBOX"),
            ("link SmartLead", "SMARTLEAD"),
            ("connect reply.io", "REPLY_IO"),
            ("connect replyio", "REPLY_IO"),
            ("connect something", "INSTANTLY"),
        ],
    )
    def test_export_app_choice(self, text, expected):
        assert choose_export_app(text).value == expected


# ---------------------------------------------------------------------------
# Intent matching
# ---------------------------------------------------------------------------


class TestIntentPriority:
    @pytest.mark.parametrize(
        "text,intent",
        [
            ("list all workspaces", Intent.LIST_WORKSPACES),
            ("show my domains", Intent.LIST_DOMAINS),
            ("check if example.com is available for 1 year", Intent.CHECK_DOMAIN),
            ("is the domain foo.io available", Intent.CHECK_DOMAIN),
            ("buy alpha.com for 2 years", Intent.BUY_DOMAINS),
            ("purchase two domains", Intent.BUY_DOMAINS),
            ("create 3 mailboxes on zero domains and connect to instantly", Intent.CREATE_AND_CONNECT),
            ("create 3 mailboxes on zero domains", Intent.CREATE_MAILBOXES_EMPTY),
            ("create 1 mailbox on empty domains", Intent.CREATE_MAILBOXES_EMPTY),
            ("add an inbox on empty domains and link it", Intent.CREATE_AND_CONNECT),
            ("connect my smartlead account", Intent.CONNECT_EXPORT_APP),
            ("export mailboxes to instantly", Intent.EXPORT_TO_INSTANTLY),
            ("send everything to reachinbox", Intent.EXPORT_TO_REACHINBOX),
            ("transfer to smartlead", Intent.EXPORT_TO_SMARTLEAD),
            ("export to reply.io", Intent.EXPORT_TO_REPLYIO),
            ("export specific mailboxes", Intent.EXPORT_SPECIFIC),
            ("export domain mailboxes", Intent.EXPORT_BY_DOMAIN),
            ("export mailboxes from alpha.com", Intent.EXPORT_BY_DOMAIN),
            ("download a csv", Intent.EXPORT_CSV),
            ("export mailboxes", Intent.EXPORT_MAILBOXES),
            ("setup 100 mailboxes then link them", Intent.CREATE_AND_CONNECT),
            ("100 mailboxes please, connect them", Intent.CREATE_AND_CONNECT),
        ],
    )
    def test_first_match_wins(self, text, intent):
        assert match_intent(text) is intent

    def test_unmatched(self):
        assert match_intent("what is the weather") is None

    def test_create_and_connect_beats_create_only(self):
        plan = plan_from_rules("create 3 mailboxes on zero domains and connect to instantly")
        actions = [(s.action, s.path) for s in plan.steps]
        assert actions == [
            (StepAction.API, "/v2/domains"),
            (StepAction.COMPUTE, None),
            (StepAction.API, "/v2/mailboxes"),
            (StepAction.API, "/v2/exports/accounts/third-party"),
        ]
        assert plan.steps[2].count == 3
        assert plan.steps[3].body["app"] == "INSTANTLY"


# ---------------------------------------------------------------------------
# Emitted plans
# ---------------------------------------------------------------------------


class TestPlans:
    def test_list_workspaces(self):
        plan = plan_from_rules("list all workspaces")
        assert plan.strategy is PlanStrategy.RULES
        assert len(plan.steps) == 1
        step = plan.steps[0]
        assert step.action is StepAction.API
        assert (step.method, step.path) == ("GET", "/v2/workspaces")

    def test_check_availability(self):
        plan = plan_from_rules("check if example.com is available for 1 year")
        assert plan.steps[0].action is StepAction.DECISION
        api = _api_steps(plan)
        assert len(api) == 1
        assert (api[0].method, api[0].path) == ("POST", "/v2/domains/available")
        assert api[0].body == {"domainName": "example.com", "years": 1}

    def test_check_availability_one_step_per_domain(self):
        plan = plan_from_rules("check if a.com and b.net are available for 2 years")
        bodies = [s.body for s in _api_steps(plan)]
        assert bodies == [{"domainName": "a.com", "years": 2}, {"domainName": "b.net", "years": 2}]

    def test_buy_domains_uses_purchase_composite(self):
        plan = plan_from_rules("buy alpha.com and beta.io for 2 years")
        assert [s.action for s in plan.steps] == [StepAction.API, StepAction.COMPUTE, StepAction.API]
        assert plan.steps[0].path == "/v2/wallet/balance"
        buy = plan.steps[2]
        assert buy.body_from is CompositeOperation.PURCHASE_DOMAINS
        assert buy.domains == ("alpha.com", "beta.io")
        assert buy.years == 2

    def test_create_on_empty_domains(self):
        plan = plan_from_rules("add 5 inboxes to all empty domains")
        create = plan.steps[-1]
        assert create.body_from is CompositeOperation.CREATE_MAILBOXES_FOR_ZERO_DOMAINS
        assert create.count == 5

    def test_single_mailbox_on_empty_domains(self):
        plan = plan_from_rules("create 1 mailbox on empty domains")
        assert plan.steps[0].action is StepAction.API
        assert plan.steps[-1].count == 1

    def test_connect_uses_supplied_credentials(self):
        plan = plan_from_rules("connect smartlead", email="me@x.com", password="secret")
        assert plan.steps[0].body == {"email": "me@x.com", "password": "secret", "app": "SMARTLEAD"}

    def test_connect_placeholders(self):
        plan = plan_from_rules("connect smartlead")
        assert plan.steps[0].body["email"] == "placeholder@example.com"
        assert plan.steps[0].body["password"] == "APP_PASSWORD"

    def test_export_to_platform_without_credentials(self):
        plan = plan_from_rules("export mailboxes to instantly")
        assert [s.action for s in plan.steps] == [StepAction.INFO, StepAction.API, StepAction.API]
        link, export = plan.steps[1], plan.steps[2]
        assert link.path == "/v2/exports/accounts/third-party"
        assert link.body == {"email": "REQUIRED", "password": "REQUIRED", "app": "INSTANTLY"}
        assert export.body == {"apps": ["INSTANTLY"], "status": "ACTIVE"}

    def test_export_specific_placeholder_ids(self):
        plan = plan_from_rules("export selected mailboxes")
        assert plan.steps[-1].body == {"apps": ["MANUAL"], "ids": ["REQUIRED_MAILBOX_IDS"]}

    def test_export_by_domain_with_domain(self):
        plan = plan_from_rules("export mailboxes from alpha.com")
        assert len(plan.steps) == 1
        assert plan.steps[0].body == {"apps": ["MANUAL"], "contains": "alpha.com", "status": "ACTIVE"}

    def test_export_by_domain_without_domain(self):
        plan = plan_from_rules("export domain mailboxes")
        assert plan.steps[0].action is StepAction.INFO
        assert plan.steps[1].body["contains"] == "DOMAIN_NAME"

    def test_export_csv(self):
        plan = plan_from_rules("download a csv file")
        assert plan.steps[0].body == {"apps": ["MANUAL"], "status": "ACTIVE"}

    def test_unmatched_is_single_info_step(self):
        plan = plan_from_rules("tell me a joke")
        assert len(plan.steps) == 1
        assert plan.steps[0].action is StepAction.INFO
        assert plan.steps[0].note == NO_MATCH_NOTE

    def test_empty_instruction(self):
        assert plan_from_rules("").steps[0].note == NO_MATCH_NOTE


class TestDeterminism:
    @pytest.mark.parametrize(
        "text",
        [
            "buy alpha.com and beta.io for 2 years",
            "create 3 mailboxes on zero domains and connect to instantly",
            "export mailboxes to smartlead",
        ],
    )
    def test_same_text_same_plan(self, text):
        assert plan_from_rules(text).to_dict() == plan_from_rules(text).to_dict()
