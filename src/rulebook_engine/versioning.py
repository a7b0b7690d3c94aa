"""Rulebook versions, default seeding and rule administration."""

from dataclasses import asdict, dataclass
from datetime import date
from typing import Any

import structlog

from rulebook_engine.config.default_rules import load_default_rulebook
from rulebook_engine.errors import StoreError
from rulebook_engine.models import (
    RuleDefinition,
    RulebookRule,
    RuleOverride,
    parse_due_rule,
    parse_rule_definition,
    parse_task_template,
)
from rulebook_engine.store import Row, RulebookStore

logger = structlog.get_logger(__name__)


@dataclass
class InitOptions:
    """Overrides for the default version; ``None`` falls back to the bundled rulebook."""

    version_code: str | None = None
    version_name: str | None = None
    version_description: str | None = None
    effective_from: date | None = None
    activate_version: bool = True
    replace_rules: bool = False


@dataclass
class InitSummary:
    tenant_id: str
    version_id: str
    version_code: str
    created_version: bool
    activated_version: bool
    replace_rules: bool
    deleted_rules: int
    upserted_rules: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def rule_row(tenant_id: str, version_id: str, definition: RuleDefinition) -> Row:
    """Row for ``rulebook_rules`` from a validated definition."""
    return {
        "tenant_id": tenant_id,
        "version_id": version_id,
        **definition.model_dump(mode="json"),
    }


class RulebookInitializer:
    """Finds or creates a tenant's rulebook version and seeds the default rules."""

    def __init__(self, store: RulebookStore, rulebook_path: str | None = None):
        self.store = store
        self._rulebook_path = rulebook_path
        self._logger = logger.bind(component="rulebook_initializer")

    async def init(self, tenant_id: str, options: InitOptions | None = None) -> InitSummary:
        """Seed (or re-seed) the default rulebook for a tenant.

        Rules are upserted by (tenant, version, code), so running init again
        updates the same rows. With ``replace_rules`` every rule under the
        version is deleted first, along with its overrides and ledger rows.

        Raises:
            RuleConfigError: If the bundled rulebook is malformed.
            StoreError: If the store rejects a write.
        """
        options = options or InitOptions()
        defaults = load_default_rulebook(self._rulebook_path)
        code = options.version_code or defaults.version.code
        log = self._logger.bind(tenant_id=tenant_id, version_code=code)

        version = await self.store.get_version_by_code(tenant_id, code)
        created_version = version is None
        if version is None:
            effective_from = options.effective_from or defaults.version.effective_from
            version = await self.store.create_version(
                {
                    "tenant_id": tenant_id,
                    "code": code,
                    "name": options.version_name or defaults.version.name,
                    "description": (
                        options.version_description
                        if options.version_description is not None
                        else defaults.version.description
                    ),
                    "effective_from": effective_from.isoformat(),
                }
            )
            log.info("version_created", version_id=version["id"])

        version_id = str(version["id"])
        deleted = 0
        if options.replace_rules:
            deleted = await self.store.delete_rules_for_version(tenant_id, version_id)
            log.info("rules_replaced", deleted=deleted)

        for definition in defaults.rules:
            await self.store.upsert_rule(rule_row(tenant_id, version_id, definition))

        if options.activate_version:
            await self.store.activate_version(tenant_id, version_id)

        log.info(
            "rulebook_initialized",
            version_id=version_id,
            created_version=created_version,
            upserted_rules=len(defaults.rules),
        )
        return InitSummary(
            tenant_id=tenant_id,
            version_id=version_id,
            version_code=code,
            created_version=created_version,
            activated_version=options.activate_version,
            replace_rules=options.replace_rules,
            deleted_rules=deleted,
            upserted_rules=len(defaults.rules),
        )


class RuleEditor:
    """Validated create/update/delete of rules and per-client overrides."""

    def __init__(self, store: RulebookStore):
        self.store = store
        self._logger = logger.bind(component="rule_editor")

    async def create_rule(
        self, tenant_id: str, version_id: str, payload: dict[str, Any]
    ) -> RulebookRule:
        """Create or replace a rule by code within a version.

        Raises:
            RuleConfigError: If the payload is not a valid rule.
        """
        definition = parse_rule_definition(payload)
        row = await self.store.upsert_rule(rule_row(tenant_id, version_id, definition))
        self._logger.info("rule_saved", tenant_id=tenant_id, rule_code=definition.code)
        return RulebookRule.from_row(row)

    async def update_rule(
        self, tenant_id: str, rule_id: str, changes: dict[str, Any]
    ) -> RulebookRule:
        """Apply a partial update after validating the merged rule."""
        existing = await self._require_rule(tenant_id, rule_id)
        merged = {**existing, **changes}
        definition = parse_rule_definition(merged)
        dumped = definition.model_dump(mode="json")
        row = await self.store.update_rule(
            tenant_id, rule_id, {key: dumped[key] for key in changes if key in dumped}
        )
        self._logger.info("rule_updated", tenant_id=tenant_id, rule_code=definition.code)
        return RulebookRule.from_row(row)

    async def deactivate_rule(self, tenant_id: str, rule_id: str) -> RulebookRule:
        """Soft delete: the rule stays but generation ignores it."""
        await self._require_rule(tenant_id, rule_id)
        row = await self.store.update_rule(tenant_id, rule_id, {"is_active": False})
        return RulebookRule.from_row(row)

    async def delete_rule(self, tenant_id: str, rule_id: str) -> None:
        await self.store.delete_rule(tenant_id, rule_id)
        self._logger.info("rule_deleted", tenant_id=tenant_id, rule_id=rule_id)

    async def set_override(
        self,
        tenant_id: str,
        client_id: str,
        rule_id: str,
        is_enabled: bool = True,
        due_rule_override: dict[str, Any] | None = None,
        task_template_override: dict[str, Any] | None = None,
        reason: str | None = None,
    ) -> RuleOverride:
        """Upsert the override for (tenant, client, rule).

        Raises:
            RuleConfigError: If an override payload is malformed.
            StoreError: If the rule does not exist.
        """
        await self._require_rule(tenant_id, rule_id)
        row: Row = {
            "tenant_id": tenant_id,
            "client_id": client_id,
            "rule_id": rule_id,
            "is_enabled": is_enabled,
            "due_rule_override": (
                parse_due_rule(due_rule_override).model_dump(mode="json")
                if due_rule_override
                else None
            ),
            "task_template_override": (
                parse_task_template(task_template_override).model_dump(mode="json")
                if task_template_override
                else None
            ),
            "reason": reason,
        }
        saved = await self.store.upsert_override(row)
        self._logger.info(
            "override_saved", tenant_id=tenant_id, client_id=client_id, rule_id=rule_id
        )
        return RuleOverride.from_row(saved)

    async def _require_rule(self, tenant_id: str, rule_id: str) -> Row:
        existing = await self.store.get_rule(tenant_id, rule_id)
        if existing is None:
            raise StoreError(f"rule {rule_id} not found", status_code=404)
        return existing

