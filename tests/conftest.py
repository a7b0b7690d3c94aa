"""Pytest configuration and fixtures."""

import os
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "service-role-test")
os.environ.setdefault("CRON_SECRET", "cron-secret-test")

from rulebook_engine.config import get_settings  # noqa: E402
from rulebook_engine.store import InMemoryRulebookStore  # noqa: E402

TENANT_ID = "11111111-1111-1111-1111-111111111111"
ACCOUNTANT_ID = "22222222-2222-2222-2222-222222222222"

VAT_RULE = {
    "code": "vat_declaration_monthly",
    "title": "VAT: monthly declaration",
    "sort_order": 50,
    "legal_basis": ["Tax Code of Ukraine art. 203.1"],
    "match_condition": {"all": [{"field": "is_vat_payer", "op": "eq", "value": True}]},
    "recurrence": {"kind": "monthly"},
    "due_rule": {
        "kind": "day_of_month",
        "day": 20,
        "month_offset": 1,
        "shift_if_non_business_day": "next_business_day",
    },
    "task_template": {
        "title": "File VAT declaration",
        "task_type": "tax_report",
        "priority": 1,
        "proof_required": True,
    },
}


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reload settings for every test so monkeypatched env vars apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store():
    """In-memory store with one active tenant and one accountant."""
    store = InMemoryRulebookStore()
    store.add_tenant(TENANT_ID)
    store.add_staff(TENANT_ID, ACCOUNTANT_ID, role="accountant")
    return store


@pytest.fixture
def active_version(store):
    """Active rulebook version row for the test tenant."""
    version_id = "33333333-3333-3333-3333-333333333333"
    store.versions[version_id] = {
        "id": version_id,
        "tenant_id": TENANT_ID,
        "code": "test-2026",
        "name": "Test 2026",
        "description": None,
        "effective_from": "2026-01-01",
        "effective_to": None,
        "is_active": True,
    }
    return store.versions[version_id]


def add_rule(store: InMemoryRulebookStore, version: dict, payload: dict, **changes) -> dict:
    """Store a rule row under a version and return it."""
    row = {
        "id": changes.pop("id", None) or f"rule-{payload['code']}",
        "tenant_id": version["tenant_id"],
        "version_id": version["id"],
        "is_active": True,
        **payload,
        **changes,
    }
    store.rules[row["id"]] = row
    return row


@pytest.fixture
def vat_rule(store, active_version):
    return add_rule(store, active_version, VAT_RULE)


@pytest.fixture
def vat_client(store):
    """VAT-paying client with a primary accountant."""
    client = store.add_client(TENANT_ID, id="client-vat", type="TOV", is_vat_payer=True)
    store.assign_accountant(TENANT_ID, client["id"], ACCOUNTANT_ID, is_primary=True)
    return client


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client
