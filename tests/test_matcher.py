"""Tests for rule applicability and rule payload validation."""

import pytest
from conftest import VAT_RULE

from rulebook_engine.errors import RuleConfigError
from rulebook_engine.matcher import is_applicable
from rulebook_engine.models import (
    ClientRuntimeProfile,
    RulebookRule,
    RuleOverride,
    parse_due_rule,
    parse_recurrence,
)


def make_rule(**changes) -> RulebookRule:
    return RulebookRule.from_row(
        {"id": "r1", "tenant_id": "t1", "version_id": "v1", **VAT_RULE, **changes}
    )


@pytest.fixture
def payer():
    return ClientRuntimeProfile.from_client_row({"id": "c1", "type": "TOV", "is_vat_payer": True})


class TestIsApplicable:
    """Tests for the rule matcher."""

    def test_matching_client(self, payer):
        assert is_applicable(make_rule(), payer) is True

    def test_non_matching_client(self):
        client = ClientRuntimeProfile.from_client_row({"id": "c2", "is_vat_payer": False})

        assert is_applicable(make_rule(), client) is False

    def test_empty_condition_applies_to_everyone(self):
        client = ClientRuntimeProfile.from_client_row({"id": "c2"})

        assert is_applicable(make_rule(match_condition=None), client) is True

    def test_disabled_override_wins(self, payer):
        override = RuleOverride(tenant_id="t1", client_id="c1", rule_id="r1", is_enabled=False)

        assert is_applicable(make_rule(), payer, override) is False

    def test_enabled_override_still_evaluates_condition(self):
        client = ClientRuntimeProfile.from_client_row({"id": "c2", "is_vat_payer": False})
        override = RuleOverride(tenant_id="t1", client_id="c2", rule_id="r1", is_enabled=True)

        assert is_applicable(make_rule(), client, override) is False

    def test_legal_form_alias(self):
        rule = make_rule(match_condition={"all": [{"field": "legal_form", "op": "eq", "value": "FOP"}]})
        client = ClientRuntimeProfile.from_client_row({"id": "c3", "type": "FOP"})

        assert is_applicable(rule, client) is True


class TestRuleValidation:
    """Illegal configuration shapes are rejected at the store boundary."""

    def test_unknown_recurrence_kind(self):
        with pytest.raises(RuleConfigError):
            parse_recurrence({"kind": "fortnightly"})

    def test_due_rule_day_out_of_range(self):
        with pytest.raises(RuleConfigError) as exc_info:
            parse_due_rule({"kind": "day_of_month", "day": 32})

        assert "day" in str(exc_info.value)

    def test_due_rule_strict_types(self):
        """Numeric strings are not coerced."""
        with pytest.raises(RuleConfigError):
            parse_due_rule({"kind": "days_after_period_end", "days": "10"})

    def test_unknown_shift(self):
        with pytest.raises(RuleConfigError):
            parse_due_rule({"kind": "day_of_month", "day": 5, "shift_if_non_business_day": "nearest"})

    def test_rule_row_reports_code(self):
        with pytest.raises(RuleConfigError) as exc_info:
            make_rule(recurrence={"kind": "weekly"})

        assert exc_info.value.rule_code == "vat_declaration_monthly"

    def test_override_parses_replacement_configs(self):
        override = RuleOverride.from_row(
            {
                "tenant_id": "t1",
                "client_id": "c1",
                "rule_id": "r1",
                "is_enabled": True,
                "due_rule_override": {"kind": "day_of_month", "day": 10},
                "task_template_override": {"title": "Custom VAT"},
            }
        )

        assert override.due_rule_override is not None
        assert override.due_rule_override.kind == "day_of_month"
        assert override.task_template_override is not None
        assert override.task_template_override.title == "Custom VAT"
