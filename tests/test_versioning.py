"""Tests for rulebook init, activation and rule administration."""

from datetime import date

import pytest
from conftest import TENANT_ID, VAT_RULE

from rulebook_engine.config.default_rules import load_default_rulebook
from rulebook_engine.errors import RuleConfigError, StoreError
from rulebook_engine.versioning import InitOptions, RuleEditor, RulebookInitializer


class TestRulebookInitializer:
    """Tests for seeding the default rulebook."""

    @pytest.mark.asyncio
    async def test_init_creates_and_activates_version(self, store):
        summary = await RulebookInitializer(store).init(TENANT_ID)

        defaults = load_default_rulebook()
        assert summary.created_version is True
        assert summary.activated_version is True
        assert summary.version_code == defaults.version.code
        assert summary.upserted_rules == len(defaults.rules)
        active = await store.get_active_version(TENANT_ID)
        assert active["id"] == summary.version_id
        rules = await store.list_rules(TENANT_ID, summary.version_id)
        assert len(rules) == len(defaults.rules)

    @pytest.mark.asyncio
    async def test_reinit_is_idempotent(self, store):
        initializer = RulebookInitializer(store)

        first = await initializer.init(TENANT_ID)
        second = await initializer.init(TENANT_ID)

        assert second.created_version is False
        assert second.version_id == first.version_id
        assert len(store.versions) == 1
        assert len(store.rules) == first.upserted_rules

    @pytest.mark.asyncio
    async def test_custom_version_without_activation(self, store):
        options = InitOptions(
            version_code="draft-2027",
            version_name="Draft 2027",
            effective_from=date(2027, 1, 1),
            activate_version=False,
        )

        summary = await RulebookInitializer(store).init(TENANT_ID, options)

        version = store.versions[summary.version_id]
        assert version["code"] == "draft-2027"
        assert version["effective_from"] == "2027-01-01"
        assert version["is_active"] is False
        assert await store.get_active_version(TENANT_ID) is None

    @pytest.mark.asyncio
    async def test_activation_deactivates_previous_version(self, store, active_version):
        summary = await RulebookInitializer(store).init(TENANT_ID)

        assert store.versions[active_version["id"]]["is_active"] is False
        active = [row for row in store.versions.values() if row["is_active"]]
        assert [row["id"] for row in active] == [summary.version_id]

    @pytest.mark.asyncio
    async def test_replace_rules_removes_custom_rules(self, store):
        initializer = RulebookInitializer(store)
        first = await initializer.init(TENANT_ID)
        await RuleEditor(store).create_rule(
            TENANT_ID, first.version_id, {**VAT_RULE, "code": "custom_rule"}
        )

        summary = await initializer.init(TENANT_ID, InitOptions(replace_rules=True))

        assert summary.deleted_rules == first.upserted_rules + 1
        codes = {row["code"] for row in store.rules.values()}
        assert "custom_rule" not in codes
        assert len(codes) == first.upserted_rules

    @pytest.mark.asyncio
    async def test_custom_rulebook_file(self, store, tmp_path):
        path = tmp_path / "rulebook.yaml"
        path.write_text(
            "version:\n"
            "  code: mini\n"
            "  name: Mini\n"
            "  effective_from: '2026-01-01'\n"
            "rules:\n"
            "  - code: only_rule\n"
            "    title: Only rule\n"
            "    recurrence: {kind: annual}\n"
            "    due_rule: {kind: fixed_date, month: 3, day: 1}\n"
            "    task_template: {title: Do it}\n",
            encoding="utf-8",
        )

        summary = await RulebookInitializer(store, rulebook_path=str(path)).init(TENANT_ID)

        assert summary.version_code == "mini"
        assert [row["code"] for row in store.rules.values()] == ["only_rule"]


class TestRuleEditor:
    """Tests for rule and override administration."""

    @pytest.mark.asyncio
    async def test_create_rule_validates_payload(self, store, active_version):
        with pytest.raises(RuleConfigError):
            await RuleEditor(store).create_rule(
                TENANT_ID, active_version["id"], {**VAT_RULE, "due_rule": {"kind": "day_of_month"}}
            )

        assert store.rules == {}

    @pytest.mark.asyncio
    async def test_update_rule_merges_changes(self, store, vat_rule):
        rule = await RuleEditor(store).update_rule(
            TENANT_ID, vat_rule["id"], {"due_rule": {"kind": "day_of_month", "day": 25}}
        )

        assert rule.due_rule.day == 25
        assert rule.code == VAT_RULE["code"]
        assert store.rules[vat_rule["id"]]["due_rule"]["day"] == 25

    @pytest.mark.asyncio
    async def test_update_rule_rejects_invalid_merge(self, store, vat_rule):
        with pytest.raises(RuleConfigError):
            await RuleEditor(store).update_rule(
                TENANT_ID, vat_rule["id"], {"recurrence": {"kind": "weekly"}}
            )

        assert store.rules[vat_rule["id"]]["recurrence"] == {"kind": "monthly"}

    @pytest.mark.asyncio
    async def test_update_unknown_rule(self, store):
        with pytest.raises(StoreError) as exc_info:
            await RuleEditor(store).update_rule(TENANT_ID, "missing", {"title": "x"})

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_deactivate_rule(self, store, vat_rule):
        rule = await RuleEditor(store).deactivate_rule(TENANT_ID, vat_rule["id"])

        assert rule.is_active is False
        assert await store.list_active_rules(TENANT_ID, vat_rule["version_id"]) == []

    @pytest.mark.asyncio
    async def test_delete_rule_cascades(self, store, vat_rule, vat_client):
        editor = RuleEditor(store)
        await editor.set_override(TENANT_ID, vat_client["id"], vat_rule["id"], is_enabled=False)

        await editor.delete_rule(TENANT_ID, vat_rule["id"])

        assert store.rules == {}
        assert store.overrides == {}

    @pytest.mark.asyncio
    async def test_set_override_validates_due_rule(self, store, vat_rule, vat_client):
        with pytest.raises(RuleConfigError):
            await RuleEditor(store).set_override(
                TENANT_ID,
                vat_client["id"],
                vat_rule["id"],
                due_rule_override={"kind": "day_of_month", "day": 0},
            )

        assert store.overrides == {}

    @pytest.mark.asyncio
    async def test_set_override_upserts(self, store, vat_rule, vat_client):
        editor = RuleEditor(store)

        await editor.set_override(TENANT_ID, vat_client["id"], vat_rule["id"], is_enabled=False)
        override = await editor.set_override(
            TENANT_ID,
            vat_client["id"],
            vat_rule["id"],
            task_template_override={"title": "Custom VAT"},
            reason="client files itself",
        )

        assert len(store.overrides) == 1
        assert override.is_enabled is True
        assert override.task_template_override.title == "Custom VAT"

    @pytest.mark.asyncio
    async def test_override_for_unknown_rule(self, store, vat_client):
        with pytest.raises(StoreError):
            await RuleEditor(store).set_override(TENANT_ID, vat_client["id"], "missing")


class TestDefaultRulebook:
    """Tests for the bundled rulebook file."""

    def test_bundled_rules_are_valid(self):
        defaults = load_default_rulebook()

        codes = [rule.code for rule in defaults.rules]
        assert len(codes) == 20
        assert len(set(codes)) == len(codes)
        assert defaults.version.code == "ua-core-2026"
        assert defaults.version.effective_from == date(2026, 1, 1)

    def test_payroll_rules_are_semi_monthly(self):
        defaults = load_default_rulebook()

        payroll = [rule for rule in defaults.rules if rule.recurrence.kind == "semi_monthly"]
        assert payroll
        assert all(rule.due_rule.kind == "profile_day_of_month" for rule in payroll)

    def test_duplicate_codes_rejected(self, tmp_path):
        path = tmp_path / "dup.yaml"
        rule = (
            "  - code: same\n"
            "    title: Same\n"
            "    recurrence: {kind: monthly}\n"
            "    due_rule: {kind: day_of_month, day: 1}\n"
            "    task_template: {title: Same}\n"
        )
        path.write_text(
            "version: {code: v, name: V, effective_from: '2026-01-01'}\nrules:\n" + rule + rule,
            encoding="utf-8",
        )

        with pytest.raises(RuleConfigError) as exc_info:
            load_default_rulebook(str(path))

        assert exc_info.value.rule_code == "same"
