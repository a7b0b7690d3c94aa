"""Supabase PostgREST store with service-role authentication."""

import asyncio
from datetime import date
from typing import Any, cast
from uuid import uuid4

import httpx
import structlog

from rulebook_engine.assignees import resolve_assignee
from rulebook_engine.config import get_settings
from rulebook_engine.errors import GenerationConflictError, StoreError, TaskCreationError
from rulebook_engine.models import TaskRequest
from rulebook_engine.store.base import Row, RulebookStore

logger = structlog.get_logger(__name__)

UNIQUE_VIOLATION = "23505"

# Failures raised before the request reaches the server; safe to resend any method.
UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)

CLIENT_COLUMNS = (
    "id,type,status,tax_system,is_vat_payer,employee_count,additional_tax_tags,"
    "timezone,payroll_frequency,payroll_advance_day,payroll_final_day"
)


def _eq(value: Any) -> str:
    return f"eq.{value}"


class PostgrestRulebookStore(RulebookStore):
    """Async store talking to ``<SUPABASE_URL>/rest/v1``.

    Transport errors on reads are retried with exponential backoff. Writes
    are only resent when the connection was never established, so a timed
    out insert is not repeated. HTTP errors are raised as ``StoreError``;
    unique violations (409 or SQLSTATE 23505) become
    ``GenerationConflictError``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        service_role_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.supabase_url).rstrip("/") + "/rest/v1"
        if service_role_key is None and settings.supabase_service_role_key is not None:
            service_role_key = settings.supabase_service_role_key.get_secret_value()
        if not service_role_key:
            raise StoreError("SUPABASE_SERVICE_ROLE_KEY is not configured")
        self._service_role_key = service_role_key
        self._timeout = timeout if timeout is not None else settings.supabase_timeout
        self._max_retries = (
            max_retries if max_retries is not None else settings.supabase_max_retries
        )
        self._client: httpx.AsyncClient | None = None
        self._logger = logger.bind(component="postgrest_store")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PostgrestRulebookStore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        prefer: str | None = None,
        retry_count: int = 0,
    ) -> Any:
        """Make a PostgREST request with retry logic."""
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json,
                headers=self._get_headers(prefer),
            )
        except httpx.RequestError as e:
            retryable = method == "GET" or isinstance(e, UNSENT_ERRORS)
            if retryable and retry_count < self._max_retries:
                await asyncio.sleep(2**retry_count)  # Exponential backoff
                return await self._request(
                    method, path, params, json, prefer, retry_count + 1
                )
            raise StoreError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {
                    "raw": response.text[:500] if response.text else "empty response"
                }
            code = error_detail.get("code") if isinstance(error_detail, dict) else None
            message = (
                error_detail.get("message") if isinstance(error_detail, dict) else None
            ) or f"API error: {response.status_code}"
            if response.status_code == 409 or code == UNIQUE_VIOLATION:
                raise GenerationConflictError(
                    message, status_code=response.status_code, details=error_detail
                )
            raise StoreError(message, status_code=response.status_code, details=error_detail)

        return response.json() if response.content else None

    async def _select(self, table: str, params: dict[str, Any]) -> list[Row]:
        data = await self._request("GET", f"/{table}", params=params)
        if not isinstance(data, list):
            raise StoreError(f"Invalid {table} response format", details=data)
        return cast(list[Row], data)

    async def _select_one(self, table: str, params: dict[str, Any]) -> Row | None:
        rows = await self._select(table, {**params, "limit": 1})
        return rows[0] if rows else None

    async def _write(
        self,
        method: str,
        table: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        prefer: str = "return=representation",
    ) -> list[Row]:
        data = await self._request(method, f"/{table}", params=params, json=json, prefer=prefer)
        if data is None:
            return []
        if not isinstance(data, list):
            raise StoreError(f"Invalid {table} response format", details=data)
        return cast(list[Row], data)

    # === Tenants ===

    async def list_active_tenants(self) -> list[str]:
        rows = await self._select(
            "tenants",
            {"select": "id", "is_active": "eq.true", "order": "created_at.asc"},
        )
        return [str(row["id"]) for row in rows]

    # === Versions ===

    async def get_active_version(self, tenant_id: str) -> Row | None:
        return await self._select_one(
            "rulebook_versions",
            {
                "select": "*",
                "tenant_id": _eq(tenant_id),
                "is_active": "eq.true",
                "order": "effective_from.desc",
            },
        )

    async def get_version_by_code(self, tenant_id: str, code: str) -> Row | None:
        return await self._select_one(
            "rulebook_versions",
            {"select": "*", "tenant_id": _eq(tenant_id), "code": _eq(code)},
        )

    async def create_version(self, row: Row) -> Row:
        rows = await self._write("POST", "rulebook_versions", json={**row, "is_active": False})
        if not rows:
            raise StoreError("Version insert returned no row")
        return rows[0]

    async def activate_version(self, tenant_id: str, version_id: str) -> None:
        await self._request(
            "POST",
            "/rpc/activate_rulebook_version",
            json={"p_tenant_id": tenant_id, "p_version_id": version_id},
        )
        self._logger.info("version_activated", tenant_id=tenant_id, version_id=version_id)

    # === Rules ===

    async def list_rules(
        self, tenant_id: str, version_id: str, active_only: bool = False
    ) -> list[Row]:
        params: dict[str, Any] = {
            "select": "*",
            "tenant_id": _eq(tenant_id),
            "version_id": _eq(version_id),
            "order": "sort_order.asc,code.asc",
        }
        if active_only:
            params["is_active"] = "eq.true"
        return await self._select("rulebook_rules", params)

    async def get_rule(self, tenant_id: str, rule_id: str) -> Row | None:
        return await self._select_one(
            "rulebook_rules",
            {"select": "*", "tenant_id": _eq(tenant_id), "id": _eq(rule_id)},
        )

    async def upsert_rule(self, row: Row) -> Row:
        rows = await self._write(
            "POST",
            "rulebook_rules",
            params={"on_conflict": "tenant_id,version_id,code"},
            json=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise StoreError(f"Rule upsert returned no row for {row.get('code')}")
        return rows[0]

    async def update_rule(self, tenant_id: str, rule_id: str, changes: Row) -> Row:
        rows = await self._write(
            "PATCH",
            "rulebook_rules",
            params={"tenant_id": _eq(tenant_id), "id": _eq(rule_id)},
            json=changes,
        )
        if not rows:
            raise StoreError(f"rule {rule_id} not found", status_code=404)
        return rows[0]

    async def delete_rule(self, tenant_id: str, rule_id: str) -> None:
        rows = await self._write(
            "DELETE",
            "rulebook_rules",
            params={"tenant_id": _eq(tenant_id), "id": _eq(rule_id)},
        )
        if not rows:
            raise StoreError(f"rule {rule_id} not found", status_code=404)

    async def delete_rules_for_version(self, tenant_id: str, version_id: str) -> int:
        rows = await self._write(
            "DELETE",
            "rulebook_rules",
            params={
                "tenant_id": _eq(tenant_id),
                "version_id": _eq(version_id),
                "select": "id",
            },
        )
        return len(rows)

    # === Clients & overrides ===

    async def list_active_clients(
        self, tenant_id: str, client_id: str | None = None
    ) -> list[Row]:
        params: dict[str, Any] = {
            "select": CLIENT_COLUMNS,
            "tenant_id": _eq(tenant_id),
            "status": "neq.archived",
        }
        if client_id:
            params["id"] = _eq(client_id)
        return await self._select("clients", params)

    async def get_rule_overrides(self, tenant_id: str, client_id: str) -> list[Row]:
        return await self._select(
            "rulebook_rule_overrides",
            {"select": "*", "tenant_id": _eq(tenant_id), "client_id": _eq(client_id)},
        )

    async def upsert_override(self, row: Row) -> Row:
        rows = await self._write(
            "POST",
            "rulebook_rule_overrides",
            params={"on_conflict": "tenant_id,client_id,rule_id"},
            json=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        if not rows:
            raise StoreError("Override upsert returned no row")
        return rows[0]

    # === Generation ledger ===

    async def find_generation_record(
        self, tenant_id: str, client_id: str, rule_id: str, period_key: str
    ) -> Row | None:
        return await self._select_one(
            "rulebook_task_generations",
            {
                "select": "*",
                "tenant_id": _eq(tenant_id),
                "client_id": _eq(client_id),
                "rule_id": _eq(rule_id),
                "period_key": _eq(period_key),
            },
        )

    async def insert_generation_record(self, row: Row) -> Row:
        rows = await self._write("POST", "rulebook_task_generations", json=row)
        if not rows:
            raise StoreError("Generation insert returned no row")
        return rows[0]

    async def update_generation_record(self, record_id: str, changes: Row) -> Row:
        rows = await self._write(
            "PATCH",
            "rulebook_task_generations",
            params={"id": _eq(record_id)},
            json=changes,
        )
        if not rows:
            raise StoreError(f"generation record {record_id} not found", status_code=404)
        return rows[0]

    # === Tasks & audit ===

    async def find_task(
        self,
        tenant_id: str,
        client_id: str,
        title: str,
        due_date: date,
        period_key: str,
    ) -> str | None:
        row = await self._select_one(
            "tasks",
            {
                "select": "id",
                "tenant_id": _eq(tenant_id),
                "client_id": _eq(client_id),
                "title": _eq(title),
                "due_date": _eq(due_date.isoformat()),
                "period": _eq(period_key),
            },
        )
        return str(row["id"]) if row else None

    async def create_task(self, request: TaskRequest) -> str | None:
        assignments = await self._select(
            "client_accountants",
            {
                "select": "accountant_id,is_primary",
                "tenant_id": _eq(request.tenant_id),
                "client_id": _eq(request.client_id),
            },
        )
        staff = await self._select(
            "profiles",
            {
                "select": "id,role",
                "tenant_id": _eq(request.tenant_id),
                "is_active": "eq.true",
                "order": "created_at.asc",
            },
        )
        assignee_id = resolve_assignee(request.template, assignments, staff)
        if assignee_id is None:
            self._logger.info(
                "task_skipped_no_assignee",
                tenant_id=request.tenant_id,
                client_id=request.client_id,
                rule_code=request.rule_code,
            )
            return None

        created_by = next(
            (str(row["id"]) for row in staff if row.get("role") == "admin"),
            assignee_id,
        )
        try:
            rows = await self._write(
                "POST",
                "tasks",
                json={
                    "tenant_id": request.tenant_id,
                    "client_id": request.client_id,
                    "title": request.template.title,
                    "description": request.description,
                    "status": "todo",
                    "type": request.template.task_type,
                    "due_date": request.due_date.isoformat(),
                    "priority": request.template.priority,
                    "assignee_id": assignee_id,
                    "created_by": created_by,
                    "recurrence": request.recurrence,
                    "period": request.period_key,
                    "proof_required": request.template.proof_required,
                },
            )
        except StoreError as e:
            raise TaskCreationError(f"Task insert failed: {e}") from e
        if not rows:
            raise TaskCreationError("Task insert returned no row")
        return str(rows[0]["id"])

    async def record_audit_entry(
        self, tenant_id: str, action: str, entity_id: str | None, meta: Row
    ) -> None:
        await self._write(
            "POST",
            "audit_log",
            json={
                "tenant_id": tenant_id,
                "entity": "rulebook_generation",
                "entity_id": entity_id or str(uuid4()),
                "action": action,
                "meta": meta,
            },
            prefer="return=minimal",
        )
