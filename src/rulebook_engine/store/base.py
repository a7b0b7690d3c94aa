"""Abstract persistence interface used by the generation and init use cases.

Stores exchange plain row dictionaries shaped like the database tables in
``migrations/0001_rulebook.sql``. Conversion into validated entities happens
in the use cases, so a malformed rule can be reported on its own without
failing the whole load.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any

from rulebook_engine.models import TaskRequest

Row = dict[str, Any]


class RulebookStore(ABC):
    """Async persistence collaborator for the rulebook engine.

    Implementations must enforce:
    - version ``code`` unique per tenant, at most one active version per tenant
    - rule ``code`` unique per (tenant, version)
    - one override per (tenant, client, rule)
    - one generation record per (tenant, client, rule, period_key); a
      duplicate insert raises ``GenerationConflictError``
    """

    # === Tenants ===

    @abstractmethod
    async def list_active_tenants(self) -> list[str]:
        """Return ids of tenants eligible for scheduled generation."""
        pass

    # === Versions ===

    @abstractmethod
    async def get_active_version(self, tenant_id: str) -> Row | None:
        pass

    @abstractmethod
    async def get_version_by_code(self, tenant_id: str, code: str) -> Row | None:
        pass

    @abstractmethod
    async def create_version(self, row: Row) -> Row:
        """Insert a version row and return it with its id."""
        pass

    @abstractmethod
    async def activate_version(self, tenant_id: str, version_id: str) -> None:
        """Make ``version_id`` the tenant's only active version in one atomic step."""
        pass

    # === Rules ===

    @abstractmethod
    async def list_rules(
        self, tenant_id: str, version_id: str, active_only: bool = False
    ) -> list[Row]:
        """Return rules of a version ordered by ``sort_order`` then ``code``."""
        pass

    async def list_active_rules(self, tenant_id: str, version_id: str) -> list[Row]:
        return await self.list_rules(tenant_id, version_id, active_only=True)

    @abstractmethod
    async def get_rule(self, tenant_id: str, rule_id: str) -> Row | None:
        pass

    @abstractmethod
    async def upsert_rule(self, row: Row) -> Row:
        """Insert or update a rule keyed by (tenant, version, code)."""
        pass

    @abstractmethod
    async def update_rule(self, tenant_id: str, rule_id: str, changes: Row) -> Row:
        """Apply a partial update. Raises ``StoreError`` if the rule is missing."""
        pass

    @abstractmethod
    async def delete_rule(self, tenant_id: str, rule_id: str) -> None:
        pass

    @abstractmethod
    async def delete_rules_for_version(self, tenant_id: str, version_id: str) -> int:
        """Delete every rule under a version and return how many were removed."""
        pass

    # === Clients & overrides ===

    @abstractmethod
    async def list_active_clients(
        self, tenant_id: str, client_id: str | None = None
    ) -> list[Row]:
        """Return non-archived client rows, optionally narrowed to one client."""
        pass

    @abstractmethod
    async def get_rule_overrides(self, tenant_id: str, client_id: str) -> list[Row]:
        pass

    @abstractmethod
    async def upsert_override(self, row: Row) -> Row:
        """Insert or update an override keyed by (tenant, client, rule)."""
        pass

    # === Generation ledger ===

    @abstractmethod
    async def find_generation_record(
        self, tenant_id: str, client_id: str, rule_id: str, period_key: str
    ) -> Row | None:
        pass

    @abstractmethod
    async def insert_generation_record(self, row: Row) -> Row:
        """Insert a ledger row.

        Raises:
            GenerationConflictError: The unique generation key already exists.
        """
        pass

    @abstractmethod
    async def update_generation_record(self, record_id: str, changes: Row) -> Row:
        pass

    # === Tasks & audit ===

    @abstractmethod
    async def find_task(
        self,
        tenant_id: str,
        client_id: str,
        title: str,
        due_date: date,
        period_key: str,
    ) -> str | None:
        """Return the id of an existing task with the same identity, if any."""
        pass

    @abstractmethod
    async def create_task(self, request: TaskRequest) -> str | None:
        """Create a task for a generated obligation.

        Returns:
            The new task id, or ``None`` when no assignee can be resolved.
        """
        pass

    @abstractmethod
    async def record_audit_entry(
        self, tenant_id: str, action: str, entity_id: str | None, meta: Row
    ) -> None:
        pass
