"""Dict-backed store for tests, dry runs and local experiments."""

import asyncio
import copy
from datetime import date
from typing import Any
from uuid import uuid4

import structlog

from rulebook_engine.assignees import resolve_assignee
from rulebook_engine.errors import GenerationConflictError, StoreError
from rulebook_engine.models import TaskRequest
from rulebook_engine.store.base import Row, RulebookStore

logger = structlog.get_logger(__name__)


def _copy(row: Row) -> Row:
    return copy.deepcopy(row)


class InMemoryRulebookStore(RulebookStore):
    """In-memory store enforcing the same uniqueness rules as the database.

    Seed data (tenants, clients, staff) is added through the ``add_*``
    helpers; everything the engine writes is kept in plain dicts that tests
    can inspect directly.
    """

    def __init__(self) -> None:
        self.tenants: dict[str, Row] = {}
        self.versions: dict[str, Row] = {}
        self.rules: dict[str, Row] = {}
        self.overrides: dict[str, Row] = {}
        self.clients: dict[str, Row] = {}
        self.client_accountants: list[Row] = []
        self.profiles: list[Row] = []
        self.generations: dict[str, Row] = {}
        self.tasks: dict[str, Row] = {}
        self.audit_log: list[Row] = []
        self._lock = asyncio.Lock()
        self._logger = logger.bind(component="memory_store")

    # === Seeding ===

    def add_tenant(self, tenant_id: str, is_active: bool = True) -> None:
        self.tenants[tenant_id] = {"id": tenant_id, "is_active": is_active}

    def add_client(self, tenant_id: str, **fields: Any) -> Row:
        row: Row = {
            "id": fields.pop("id", None) or str(uuid4()),
            "tenant_id": tenant_id,
            "type": "FOP",
            "status": "active",
            "tax_system": None,
            "is_vat_payer": False,
            "employee_count": 0,
            "additional_tax_tags": [],
            "timezone": "Europe/Kyiv",
            "payroll_frequency": "semi_monthly",
            "payroll_advance_day": 15,
            "payroll_final_day": 30,
        }
        row.update(fields)
        self.clients[row["id"]] = row
        return _copy(row)

    def add_staff(self, tenant_id: str, profile_id: str, role: str = "accountant") -> None:
        self.profiles.append(
            {"id": profile_id, "tenant_id": tenant_id, "role": role, "is_active": True}
        )

    def assign_accountant(
        self, tenant_id: str, client_id: str, accountant_id: str, is_primary: bool = False
    ) -> None:
        self.client_accountants.append(
            {
                "tenant_id": tenant_id,
                "client_id": client_id,
                "accountant_id": accountant_id,
                "is_primary": is_primary,
            }
        )

    # === Tenants ===

    async def list_active_tenants(self) -> list[str]:
        return [tenant_id for tenant_id, row in self.tenants.items() if row["is_active"]]

    # === Versions ===

    async def get_active_version(self, tenant_id: str) -> Row | None:
        for row in self.versions.values():
            if row["tenant_id"] == tenant_id and row["is_active"]:
                return _copy(row)
        return None

    async def get_version_by_code(self, tenant_id: str, code: str) -> Row | None:
        for row in self.versions.values():
            if row["tenant_id"] == tenant_id and row["code"] == code:
                return _copy(row)
        return None

    async def create_version(self, row: Row) -> Row:
        async with self._lock:
            for existing in self.versions.values():
                if existing["tenant_id"] == row["tenant_id"] and existing["code"] == row["code"]:
                    raise StoreError(
                        f"version {row['code']} already exists",
                        status_code=409,
                        details={"code": "23505"},
                    )
            stored = {"is_active": False, "effective_to": None, "description": None}
            stored.update(_copy(row))
            stored["is_active"] = False
            stored["id"] = stored.get("id") or str(uuid4())
            self.versions[stored["id"]] = stored
            return _copy(stored)

    async def activate_version(self, tenant_id: str, version_id: str) -> None:
        async with self._lock:
            target = self.versions.get(version_id)
            if target is None or target["tenant_id"] != tenant_id:
                raise StoreError(f"version {version_id} not found", status_code=404)
            for row in self.versions.values():
                if row["tenant_id"] == tenant_id:
                    row["is_active"] = row["id"] == version_id

    # === Rules ===

    async def list_rules(
        self, tenant_id: str, version_id: str, active_only: bool = False
    ) -> list[Row]:
        rows = [
            _copy(row)
            for row in self.rules.values()
            if row["tenant_id"] == tenant_id
            and row["version_id"] == version_id
            and (row.get("is_active", True) or not active_only)
        ]
        return sorted(rows, key=lambda row: (row.get("sort_order", 100), row["code"]))

    async def get_rule(self, tenant_id: str, rule_id: str) -> Row | None:
        row = self.rules.get(rule_id)
        if row is None or row["tenant_id"] != tenant_id:
            return None
        return _copy(row)

    async def upsert_rule(self, row: Row) -> Row:
        async with self._lock:
            for existing in self.rules.values():
                if (
                    existing["tenant_id"] == row["tenant_id"]
                    and existing["version_id"] == row["version_id"]
                    and existing["code"] == row["code"]
                ):
                    existing.update({k: v for k, v in _copy(row).items() if k != "id"})
                    return _copy(existing)
            stored = _copy(row)
            stored["id"] = stored.get("id") or str(uuid4())
            self.rules[stored["id"]] = stored
            return _copy(stored)

    async def update_rule(self, tenant_id: str, rule_id: str, changes: Row) -> Row:
        async with self._lock:
            existing = self.rules.get(rule_id)
            if existing is None or existing["tenant_id"] != tenant_id:
                raise StoreError(f"rule {rule_id} not found", status_code=404)
            new_code = changes.get("code")
            if new_code and new_code != existing["code"]:
                for other in self.rules.values():
                    if (
                        other["id"] != rule_id
                        and other["tenant_id"] == tenant_id
                        and other["version_id"] == existing["version_id"]
                        and other["code"] == new_code
                    ):
                        raise StoreError(
                            f"rule {new_code} already exists",
                            status_code=409,
                            details={"code": "23505"},
                        )
            existing.update({k: v for k, v in _copy(changes).items() if k != "id"})
            return _copy(existing)

    async def delete_rule(self, tenant_id: str, rule_id: str) -> None:
        async with self._lock:
            existing = self.rules.get(rule_id)
            if existing is None or existing["tenant_id"] != tenant_id:
                raise StoreError(f"rule {rule_id} not found", status_code=404)
            del self.rules[rule_id]
            self._cascade_rule_delete({rule_id})

    async def delete_rules_for_version(self, tenant_id: str, version_id: str) -> int:
        async with self._lock:
            doomed = {
                rule_id
                for rule_id, row in self.rules.items()
                if row["tenant_id"] == tenant_id and row["version_id"] == version_id
            }
            for rule_id in doomed:
                del self.rules[rule_id]
            self._cascade_rule_delete(doomed)
            return len(doomed)

    def _cascade_rule_delete(self, rule_ids: set[str]) -> None:
        for table in (self.overrides, self.generations):
            for key in [key for key, row in table.items() if row["rule_id"] in rule_ids]:
                del table[key]

    # === Clients & overrides ===

    async def list_active_clients(
        self, tenant_id: str, client_id: str | None = None
    ) -> list[Row]:
        return [
            _copy(row)
            for row in self.clients.values()
            if row["tenant_id"] == tenant_id
            and row.get("status") != "archived"
            and (client_id is None or row["id"] == client_id)
        ]

    async def get_rule_overrides(self, tenant_id: str, client_id: str) -> list[Row]:
        return [
            _copy(row)
            for row in self.overrides.values()
            if row["tenant_id"] == tenant_id and row["client_id"] == client_id
        ]

    async def upsert_override(self, row: Row) -> Row:
        async with self._lock:
            for existing in self.overrides.values():
                if (
                    existing["tenant_id"] == row["tenant_id"]
                    and existing["client_id"] == row["client_id"]
                    and existing["rule_id"] == row["rule_id"]
                ):
                    existing.update({k: v for k, v in _copy(row).items() if k != "id"})
                    return _copy(existing)
            stored = _copy(row)
            stored["id"] = stored.get("id") or str(uuid4())
            self.overrides[stored["id"]] = stored
            return _copy(stored)

    # === Generation ledger ===

    async def find_generation_record(
        self, tenant_id: str, client_id: str, rule_id: str, period_key: str
    ) -> Row | None:
        key = (tenant_id, client_id, rule_id, period_key)
        for row in self.generations.values():
            if (row["tenant_id"], row["client_id"], row["rule_id"], row["period_key"]) == key:
                return _copy(row)
        return None

    async def insert_generation_record(self, row: Row) -> Row:
        async with self._lock:
            key = (row["tenant_id"], row["client_id"], row["rule_id"], row["period_key"])
            for existing in self.generations.values():
                if (
                    existing["tenant_id"],
                    existing["client_id"],
                    existing["rule_id"],
                    existing["period_key"],
                ) == key:
                    raise GenerationConflictError(
                        "generation record already exists",
                        status_code=409,
                        details={"code": "23505", "key": list(key)},
                    )
            stored = _copy(row)
            stored["id"] = stored.get("id") or str(uuid4())
            self.generations[stored["id"]] = stored
            return _copy(stored)

    async def update_generation_record(self, record_id: str, changes: Row) -> Row:
        async with self._lock:
            existing = self.generations.get(record_id)
            if existing is None:
                raise StoreError(f"generation record {record_id} not found", status_code=404)
            existing.update({k: v for k, v in _copy(changes).items() if k != "id"})
            return _copy(existing)

    # === Tasks & audit ===

    async def find_task(
        self,
        tenant_id: str,
        client_id: str,
        title: str,
        due_date: date,
        period_key: str,
    ) -> str | None:
        for task_id, row in self.tasks.items():
            if (
                row["tenant_id"] == tenant_id
                and row["client_id"] == client_id
                and row["title"] == title
                and row["due_date"] == due_date.isoformat()
                and row["period"] == period_key
            ):
                return task_id
        return None

    async def create_task(self, request: TaskRequest) -> str | None:
        assignments = [
            row
            for row in self.client_accountants
            if row["tenant_id"] == request.tenant_id and row["client_id"] == request.client_id
        ]
        staff = [
            row
            for row in self.profiles
            if row["tenant_id"] == request.tenant_id and row["is_active"]
        ]
        assignee_id = resolve_assignee(request.template, assignments, staff)
        if assignee_id is None:
            return None

        task_id = str(uuid4())
        self.tasks[task_id] = {
            "id": task_id,
            "tenant_id": request.tenant_id,
            "client_id": request.client_id,
            "title": request.template.title,
            "description": request.description,
            "status": "todo",
            "type": request.template.task_type,
            "due_date": request.due_date.isoformat(),
            "priority": request.template.priority,
            "proof_required": request.template.proof_required,
            "assignee_id": assignee_id,
            "recurrence": request.recurrence,
            "period": request.period_key,
        }
        self._logger.debug("task_created", task_id=task_id, period_key=request.period_key)
        return task_id

    async def record_audit_entry(
        self, tenant_id: str, action: str, entity_id: str | None, meta: Row
    ) -> None:
        self.audit_log.append(
            {
                "tenant_id": tenant_id,
                "entity": "rulebook_generation",
                "entity_id": entity_id,
                "action": action,
                "meta": _copy(meta),
            }
        )
