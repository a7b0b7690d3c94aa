"""Framework-agnostic handlers for the internal generate/init endpoints.

A web layer passes in the request method, headers and decoded body (or
query parameters) and sends back the returned ``(status_code, body)``.
"""

import hmac
from collections.abc import Mapping
from datetime import date
from typing import Any

import structlog

from rulebook_engine.config import get_settings
from rulebook_engine.generation import GenerationOptions
from rulebook_engine.runner import init_for_tenants, run_for_tenants
from rulebook_engine.store import RulebookStore
from rulebook_engine.versioning import InitOptions

logger = structlog.get_logger(__name__)

SECRET_HEADER = "x-cron-secret"


class PayloadError(ValueError):
    """Trigger payload has a value of the right key but the wrong shape."""


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def is_authorized(headers: Mapping[str, str], allow_bearer: bool = True) -> bool:
    """Check the shared secret from ``x-cron-secret`` or a Bearer token.

    Without a configured ``CRON_SECRET`` every call is rejected.
    """
    secret = get_settings().cron_secret
    if secret is None or not secret.get_secret_value():
        return False
    expected = secret.get_secret_value()

    provided = _header(headers, SECRET_HEADER)
    if provided is not None and hmac.compare_digest(provided, expected):
        return True

    if allow_bearer:
        authorization = _header(headers, "authorization") or ""
        if authorization.startswith("Bearer "):
            token = authorization[len("Bearer ") :].strip()
            return hmac.compare_digest(token, expected)
    return False


def _optional_str(body: Mapping[str, Any], key: str) -> str | None:
    value = body.get(key)
    return value if isinstance(value, str) and value else None


def _optional_bool(body: Mapping[str, Any], key: str) -> bool | None:
    value = body.get(key)
    return value if isinstance(value, bool) else None


def _optional_date(value: str | None, key: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise PayloadError(f"{key} must be an ISO date (YYYY-MM-DD), got {value!r}") from e


def parse_bool_query(value: str | None) -> bool | None:
    if not value:
        return None
    if value == "1" or value.lower() == "true":
        return True
    if value == "0" or value.lower() == "false":
        return False
    return None


def parse_generate_body(body: Any) -> tuple[str | None, GenerationOptions]:
    """Parse a JSON generate payload; unknown or mistyped keys are ignored."""
    if not isinstance(body, Mapping):
        return None, GenerationOptions()

    holidays = body.get("holidays")
    options = GenerationOptions(
        from_date=_optional_date(_optional_str(body, "fromDate"), "fromDate"),
        to_date=_optional_date(_optional_str(body, "toDate"), "toDate"),
        holidays=(
            [item for item in holidays if isinstance(item, str)]
            if isinstance(holidays, list)
            else None
        ),
        dry_run=bool(_optional_bool(body, "dryRun")),
        force_retry_without_linked_task=bool(
            _optional_bool(body, "forceRetryWithoutLinkedTask")
        ),
    )
    return _optional_str(body, "tenantId"), options


def parse_generate_query(query: Mapping[str, list[str]]) -> tuple[str | None, GenerationOptions]:
    """Parse generate query parameters (``parse_qs`` shape); ``holiday`` may repeat."""

    def first(key: str) -> str | None:
        values = query.get(key) or []
        return values[0] if values and values[0] else None

    holidays = [item for item in query.get("holiday") or [] if item]
    options = GenerationOptions(
        from_date=_optional_date(first("fromDate"), "fromDate"),
        to_date=_optional_date(first("toDate"), "toDate"),
        holidays=holidays or None,
        dry_run=bool(parse_bool_query(first("dryRun"))),
        force_retry_without_linked_task=bool(
            parse_bool_query(first("forceRetryWithoutLinkedTask"))
        ),
    )
    return first("tenantId"), options


def parse_init_body(body: Any) -> tuple[str | None, InitOptions]:
    if not isinstance(body, Mapping):
        return None, InitOptions()

    activate = _optional_bool(body, "activateVersion")
    options = InitOptions(
        version_code=_optional_str(body, "versionCode"),
        version_name=_optional_str(body, "versionName"),
        version_description=_optional_str(body, "versionDescription"),
        effective_from=_optional_date(_optional_str(body, "effectiveFrom"), "effectiveFrom"),
        activate_version=True if activate is None else activate,
        replace_rules=bool(_optional_bool(body, "replaceRules")),
    )
    return _optional_str(body, "tenantId"), options


async def handle_generate(
    store: RulebookStore,
    method: str,
    headers: Mapping[str, str],
    body: Any = None,
    query: Mapping[str, list[str]] | None = None,
) -> tuple[int, dict[str, Any]]:
    """Handle the internal generate endpoint.

    POST reads a JSON body; GET reads query parameters and, without a
    tenant, falls back to the configured scheduled tenant list.
    """
    if not is_authorized(headers):
        logger.warning("trigger_unauthorized", endpoint="generate")
        return 401, {"error": "Unauthorized cron call"}

    scheduled = method.upper() == "GET"
    try:
        if scheduled:
            tenant_id, options = parse_generate_query(query or {})
        else:
            tenant_id, options = parse_generate_body(body)
    except PayloadError as e:
        return 400, {"error": str(e)}

    try:
        report = await run_for_tenants(store, tenant_id, options, use_cron_defaults=scheduled)
    except Exception as e:
        logger.error("trigger_generate_failed", error=str(e))
        return 500, {"error": str(e)}
    return 200, report.to_dict()


async def handle_init(
    store: RulebookStore,
    headers: Mapping[str, str],
    body: Any = None,
) -> tuple[int, dict[str, Any]]:
    """Handle the internal init endpoint (``x-cron-secret`` only)."""
    if not is_authorized(headers, allow_bearer=False):
        logger.warning("trigger_unauthorized", endpoint="init")
        return 401, {"error": "Unauthorized internal call"}

    try:
        tenant_id, options = parse_init_body(body)
    except PayloadError as e:
        return 400, {"error": str(e)}

    try:
        report = await init_for_tenants(store, tenant_id, options)
    except Exception as e:
        logger.error("trigger_init_failed", error=str(e))
        return 500, {"error": str(e)}
    return 200, report.to_dict()
