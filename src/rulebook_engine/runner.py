"""Run generation or init across tenants.

Tenants are processed sequentially; a failure in one tenant is reported in
its own result entry and does not stop the others.
"""

from dataclasses import dataclass
from typing import Any

import structlog

from rulebook_engine.config import get_settings
from rulebook_engine.generation import (
    STATUS_NO_ACTIVE_VERSION,
    STATUS_OK,
    GenerationOptions,
    GenerationOrchestrator,
)
from rulebook_engine.store import RulebookStore
from rulebook_engine.versioning import InitOptions, RulebookInitializer

logger = structlog.get_logger(__name__)

# Generation statuses reported as a successful tenant run.
SUCCESSFUL_STATUSES = (STATUS_OK, STATUS_NO_ACTIVE_VERSION)

SOURCE_EXPLICIT = "explicit_tenant"
SOURCE_CRON_LIST = "RULEBOOK_CRON_TENANT_IDS"
SOURCE_ALL_ACTIVE = "all_active_tenants"


@dataclass
class TenantResult:
    """Outcome for one tenant."""

    tenant_id: str
    status: str
    detail: Any

    def to_dict(self) -> dict[str, Any]:
        return {"tenantId": self.tenant_id, "status": self.status, "detail": self.detail}


@dataclass
class TenantRunReport:
    source: str
    results: list[TenantResult]

    def to_dict(self) -> dict[str, Any]:
        return {
            "processedTenants": len(self.results),
            "source": self.source,
            "summary": [result.to_dict() for result in self.results],
        }


async def resolve_tenants(
    store: RulebookStore,
    tenant_id: str | None = None,
    use_cron_defaults: bool = False,
) -> tuple[list[str], str]:
    """Pick the tenants for a run and report where the list came from.

    An explicit tenant is only processed while it is active. Scheduled
    calls without a tenant use ``RULEBOOK_CRON_TENANT_IDS`` when it is set.
    """
    if tenant_id:
        active = await store.list_active_tenants()
        return ([tenant_id] if tenant_id in active else []), SOURCE_EXPLICIT

    if use_cron_defaults:
        configured = get_settings().cron_tenant_ids
        if configured:
            return configured, SOURCE_CRON_LIST

    return await store.list_active_tenants(), SOURCE_ALL_ACTIVE


async def run_for_tenants(
    store: RulebookStore,
    tenant_id: str | None = None,
    options: GenerationOptions | None = None,
    use_cron_defaults: bool = False,
) -> TenantRunReport:
    """Generate tasks for every selected tenant."""
    tenant_ids, source = await resolve_tenants(store, tenant_id, use_cron_defaults)
    orchestrator = GenerationOrchestrator(store)
    results: list[TenantResult] = []

    for current in tenant_ids:
        summary = await orchestrator.generate(current, options)
        results.append(
            TenantResult(
                tenant_id=current,
                status="ok" if summary.status in SUCCESSFUL_STATUSES else "error",
                detail=summary.to_dict(),
            )
        )

    logger.info("tenants_processed", source=source, tenants=len(results))
    return TenantRunReport(source=source, results=results)


async def init_for_tenants(
    store: RulebookStore,
    tenant_id: str | None = None,
    options: InitOptions | None = None,
) -> TenantRunReport:
    """Seed the default rulebook for every selected tenant."""
    tenant_ids, source = await resolve_tenants(store, tenant_id)
    initializer = RulebookInitializer(store)
    results: list[TenantResult] = []

    for current in tenant_ids:
        try:
            summary = await initializer.init(current, options)
        except Exception as e:
            details = getattr(e, "details", None)
            logger.error("rulebook_init_failed", tenant_id=current, error=str(e), details=details)
            results.append(TenantResult(tenant_id=current, status="error", detail=str(e)))
            continue
        results.append(TenantResult(tenant_id=current, status="ok", detail=summary.to_dict()))

    return TenantRunReport(source=source, results=results)
