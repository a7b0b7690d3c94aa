"""Tests for condition tree evaluation."""

import pytest

from rulebook_engine.conditions import evaluate, resolve_field
from rulebook_engine.models import ClientRuntimeProfile

PROFILE = {
    "client_type": "FOP",
    "tax_system": "single_tax_group3",
    "is_vat_payer": True,
    "employee_count": 12,
    "has_employees": True,
    "tax_tags": ["vat", "excise"],
    "payroll_advance_day": None,
    "nested": {"value": 7},
}


class TestPredicates:
    """Tests for single predicates."""

    @pytest.mark.parametrize(
        ("node", "expected"),
        [
            ({"field": "client_type", "op": "eq", "value": "FOP"}, True),
            ({"field": "client_type", "op": "neq", "value": "FOP"}, False),
            ({"field": "employee_count", "op": "gt", "value": 10}, True),
            ({"field": "employee_count", "op": "gte", "value": 12}, True),
            ({"field": "employee_count", "op": "lt", "value": 12}, False),
            ({"field": "employee_count", "op": "lte", "value": 12}, True),
            ({"field": "tax_system", "op": "in", "value": ["single_tax_group3"]}, True),
            ({"field": "tax_system", "op": "nin", "value": ["single_tax_group3"]}, False),
            ({"field": "tax_tags", "op": "contains", "value": "excise"}, True),
            ({"field": "tax_tags", "op": "contains", "value": "land_tax"}, False),
            ({"field": "tax_system", "op": "contains", "value": "group3"}, True),
            ({"field": "is_vat_payer", "op": "exists"}, True),
            ({"field": "payroll_advance_day", "op": "exists"}, False),
            ({"field": "nested.value", "op": "eq", "value": 7}, True),
        ],
    )
    def test_operators(self, node, expected):
        """Each supported operator evaluates against the profile."""
        assert evaluate(node, PROFILE) is expected

    def test_operator_key_alias(self):
        """``operator`` is accepted in place of ``op``."""
        node = {"field": "client_type", "operator": "eq", "value": "FOP"}
        assert evaluate(node, PROFILE) is True

    def test_boolean_equality_is_strict(self):
        """``True`` does not equal ``1``."""
        assert evaluate({"field": "is_vat_payer", "op": "eq", "value": 1}, PROFILE) is False

    def test_numeric_comparison_rejects_non_numbers(self):
        """Ordering operators never match strings or booleans."""
        assert evaluate({"field": "client_type", "op": "gt", "value": 1}, PROFILE) is False
        assert evaluate({"field": "is_vat_payer", "op": "gte", "value": 0}, PROFILE) is False

    def test_in_requires_list(self):
        assert evaluate({"field": "client_type", "op": "in", "value": "FOP"}, PROFILE) is False


class TestFailClosed:
    """Malformed conditions skip the client instead of raising."""

    def test_unknown_operator(self):
        assert evaluate({"field": "client_type", "op": "matches", "value": "F"}, PROFILE) is False

    def test_missing_field(self):
        """A field absent from the profile is a non-match, not an error."""
        assert evaluate({"field": "does_not_exist", "op": "eq", "value": True}, {}) is False

    def test_malformed_node(self):
        assert evaluate({"foo": "bar"}, PROFILE) is False

    def test_group_value_not_a_list(self):
        assert evaluate({"all": {"field": "client_type"}}, PROFILE) is False

    def test_non_mapping_child(self):
        assert evaluate({"all": ["client_type"]}, PROFILE) is False


class TestGroups:
    """Tests for all/any groups."""

    def test_empty_root_matches_everything(self):
        assert evaluate(None, PROFILE) is True
        assert evaluate({}, PROFILE) is True

    def test_empty_all_is_true(self):
        assert evaluate({"all": []}, PROFILE) is True

    def test_empty_any_is_false(self):
        assert evaluate({"any": []}, PROFILE) is False

    def test_nested_groups(self):
        node = {
            "all": [
                {"field": "client_type", "op": "eq", "value": "FOP"},
                {
                    "any": [
                        {"field": "tax_tags", "op": "contains", "value": "land_tax"},
                        {"field": "employee_count", "op": "gt", "value": 10},
                    ]
                },
            ]
        }
        assert evaluate(node, PROFILE) is True

    def test_all_and_any_must_both_pass(self):
        node = {
            "all": [{"field": "client_type", "op": "eq", "value": "FOP"}],
            "any": [{"field": "tax_tags", "op": "contains", "value": "land_tax"}],
        }
        assert evaluate(node, PROFILE) is False


class TestProfileContext:
    """Conditions evaluated against a normalized client profile."""

    def test_vat_condition_against_profiles(self):
        """Only VAT payers match; a client with unknown VAT status does not."""
        node = {"all": [{"field": "is_vat_payer", "op": "eq", "value": True}]}
        payer = ClientRuntimeProfile.from_client_row({"id": "c1", "is_vat_payer": True})
        non_payer = ClientRuntimeProfile.from_client_row({"id": "c2", "is_vat_payer": False})
        unknown = ClientRuntimeProfile.from_client_row({"id": "c3"})

        assert evaluate(node, payer.as_condition_context()) is True
        assert evaluate(node, non_payer.as_condition_context()) is False
        assert evaluate(node, unknown.as_condition_context()) is False

    def test_tags_are_normalized(self):
        profile = ClientRuntimeProfile.from_client_row(
            {
                "id": "c1",
                "is_vat_payer": True,
                "employee_count": 3,
                "additional_tax_tags": [" Excise ", "excise", ""],
            }
        )

        assert profile.tax_tags == ("excise", "vat", "employees")
        assert profile.has_employees is True

    def test_resolve_field_through_non_mapping(self):
        assert resolve_field({"a": {"b": 1}}, "a.b") == 1
        assert evaluate({"field": "a.b", "op": "exists"}, {"a": 1}) is False
