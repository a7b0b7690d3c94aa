"""Rulebook task generation.

For one tenant, every active client is matched against the active rulebook
version. Each applicable rule is expanded into periods, each period gets a
due date, and each (client, rule, period) is written once to the generation
ledger before a task is created and linked to it. The ledger's unique key is
what keeps repeated or concurrent runs from creating duplicate tasks.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any

import structlog

from rulebook_engine.business_days import BusinessCalendar
from rulebook_engine.config import get_settings, holiday_dates, load_holiday_calendar
from rulebook_engine.due_dates import resolve_due_date
from rulebook_engine.errors import (
    DueDateResolutionError,
    GenerationConflictError,
    RuleConfigError,
    RulebookError,
    StoreError,
)
from rulebook_engine.matcher import is_applicable
from rulebook_engine.models import (
    ClientRuntimeProfile,
    DueRule,
    GenerationRecord,
    GenerationStatus,
    PeriodWindow,
    RulebookRule,
    RulebookVersion,
    RuleOverride,
    SemiMonthlyRecurrence,
    TaskRequest,
    TaskTemplate,
)
from rulebook_engine.periods import expand_periods
from rulebook_engine.store import RulebookStore

logger = structlog.get_logger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 1200

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_NO_ACTIVE_VERSION = "NO_ACTIVE_VERSION"


@dataclass
class GenerationOptions:
    """Inputs for a single tenant run."""

    from_date: date | None = None
    to_date: date | None = None
    client_id: str | None = None
    holidays: list[str] | None = None
    dry_run: bool = False
    force_retry_without_linked_task: bool = False


@dataclass
class GenerationSummary:
    """Counters and per-item outcomes of a run."""

    tenant_id: str
    from_date: date
    to_date: date
    dry_run: bool = False
    status: str = STATUS_OK
    active_version: dict[str, Any] | None = None
    processed_clients: int = 0
    evaluated_rules: int = 0
    matched_candidates: int = 0
    created: int = 0
    linked_existing: int = 0
    skipped: int = 0
    skipped_by_condition: int = 0
    skipped_by_override: int = 0
    skipped_no_assignee: int = 0
    errored: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    def add_error(self, message: str, **context: Any) -> None:
        self.errored += 1
        self.errors.append({**context, "message": message})

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["from_date"] = self.from_date.isoformat()
        data["to_date"] = self.to_date.isoformat()
        return data

    def audit_meta(self) -> dict[str, Any]:
        """Compact counters written to the audit log."""
        return {
            "from_date": self.from_date.isoformat(),
            "to_date": self.to_date.isoformat(),
            "active_version": self.active_version,
            "processed_clients": self.processed_clients,
            "evaluated_rules": self.evaluated_rules,
            "matched_candidates": self.matched_candidates,
            "created_tasks": self.created,
            "linked_existing_tasks": self.linked_existing,
            "skipped_already_generated": self.skipped - self.skipped_no_assignee,
            "skipped_by_condition": self.skipped_by_condition,
            "skipped_by_override": self.skipped_by_override,
            "skipped_no_assignee": self.skipped_no_assignee,
            "errors_count": len(self.errors),
        }


@dataclass(frozen=True)
class _Candidate:
    """One (client, rule, period) unit of work."""

    client: ClientRuntimeProfile
    rule: RulebookRule
    period: PeriodWindow
    due_rule: DueRule
    template: TaskTemplate

    def context(self) -> dict[str, Any]:
        return {
            "client_id": self.client.client_id,
            "rule_code": self.rule.code,
            "period_key": self.period.period_key,
        }


def truncate_error(message: str) -> str:
    return message[:MAX_ERROR_MESSAGE_LENGTH]


def _record_id(record: GenerationRecord) -> str:
    if record.id is None:
        raise StoreError(f"generation record for {record.period_key} has no id")
    return record.id


def build_description(template: TaskTemplate, legal_basis: tuple[str, ...]) -> str | None:
    """Template description followed by the rule's legal basis line."""
    if not legal_basis:
        return template.description
    tail = f"Legal basis: {'; '.join(legal_basis)}"
    if not template.description:
        return tail
    return f"{template.description}\n\n{tail}"


def pick_window(options: GenerationOptions, today: date | None = None) -> tuple[date, date]:
    """Resolve the run window; ``to_date`` defaults to a configured number of days ahead."""
    from_date = options.from_date or today or date.today()
    if options.to_date:
        return from_date, options.to_date
    window = timedelta(days=get_settings().rulebook_default_window_days)
    to_date = from_date + window if date.max - from_date > window else date.max
    return from_date, to_date


def build_calendar(options: GenerationOptions, from_date: date, to_date: date) -> BusinessCalendar:
    """Business calendar from request holidays plus the configured holiday file."""
    dates: list[str] = list(options.holidays or [])
    holidays_file = get_settings().rulebook_holidays_file
    if holidays_file:
        # Due dates can land past the window end, so cover the following year too
        definitions = load_holiday_calendar(holidays_file)
        last_year = min(to_date.year + 1, date.max.year)
        dates.extend(holiday_dates(definitions, from_date.year, last_year))
    return BusinessCalendar.from_iso_dates(dates)


class GenerationOrchestrator:
    """Runs task generation for one tenant at a time."""

    def __init__(self, store: RulebookStore):
        self.store = store
        self._logger = logger.bind(component="generation_orchestrator")

    async def generate(
        self, tenant_id: str, options: GenerationOptions | None = None
    ) -> GenerationSummary:
        """Generate tasks for a tenant over a date window.

        Never raises: load failures end the run with ``status="error"``, a
        missing active version with ``status="NO_ACTIVE_VERSION"``, and
        per-item failures are recorded in ``errors`` while the run continues.

        Args:
            tenant_id: Tenant to process.
            options: Window, target client, holidays, dry-run and retry flags.

        Returns:
            The run summary.
        """
        options = options or GenerationOptions()
        from_date, to_date = pick_window(options)
        summary = GenerationSummary(
            tenant_id=tenant_id,
            from_date=from_date,
            to_date=to_date,
            dry_run=options.dry_run,
        )
        log = self._logger.bind(tenant_id=tenant_id, dry_run=options.dry_run)

        if to_date < from_date:
            summary.status = STATUS_ERROR
            summary.add_error("Generation window is invalid: to_date must be >= from_date")
            return summary

        try:
            calendar = build_calendar(options, from_date, to_date)
            version_row = await self.store.get_active_version(tenant_id)
            if version_row is None:
                summary.status = STATUS_NO_ACTIVE_VERSION
                log.warning("no_active_version")
                return summary
            version = RulebookVersion.from_row(version_row)
            summary.active_version = {"id": version.id, "code": version.code, "name": version.name}

            rules = self._load_rules(
                await self.store.list_active_rules(tenant_id, version.id), summary
            )
            clients = await self.store.list_active_clients(tenant_id, options.client_id)
        except Exception as e:
            details = getattr(e, "details", None)
            log.error("generation_load_failed", error=str(e), details=details)
            summary.status = STATUS_ERROR
            summary.add_error(truncate_error(str(e) or type(e).__name__))
            return summary

        log.info(
            "generation_started",
            version=version.code,
            rules=len(rules),
            clients=len(clients),
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
        )

        for client_row in clients:
            await self._process_client(tenant_id, client_row, rules, calendar, options, summary)

        if not options.dry_run:
            await self._write_audit(summary, version.id)

        log.info(
            "generation_finished",
            created=summary.created,
            linked_existing=summary.linked_existing,
            skipped=summary.skipped,
            errored=summary.errored,
        )
        return summary

    def _load_rules(
        self, rows: list[dict[str, Any]], summary: GenerationSummary
    ) -> list[RulebookRule]:
        rules: list[RulebookRule] = []
        for row in rows:
            try:
                rule = RulebookRule.from_row(row)
            except RuleConfigError as e:
                self._logger.warning("rule_config_invalid", rule_code=row.get("code"), error=str(e))
                summary.add_error(str(e), rule_code=row.get("code"))
                continue
            if rule.is_active:
                rules.append(rule)
        return sorted(rules, key=lambda rule: (rule.sort_order, rule.code))

    async def _process_client(
        self,
        tenant_id: str,
        client_row: dict[str, Any],
        rules: list[RulebookRule],
        calendar: BusinessCalendar,
        options: GenerationOptions,
        summary: GenerationSummary,
    ) -> None:
        client_id = str(client_row.get("id"))
        try:
            client = ClientRuntimeProfile.from_client_row(client_row)
            override_rows = await self.store.get_rule_overrides(tenant_id, client.client_id)
        except Exception as e:
            self._logger.error("client_load_failed", client_id=client_id, error=str(e))
            summary.add_error(truncate_error(str(e)), client_id=client_id)
            return

        summary.processed_clients += 1
        overrides: dict[str, RuleOverride | RuleConfigError] = {}
        for row in override_rows:
            try:
                overrides[str(row["rule_id"])] = RuleOverride.from_row(row)
            except RuleConfigError as e:
                overrides[str(row["rule_id"])] = e

        for rule in rules:
            summary.evaluated_rules += 1
            override = overrides.get(rule.id)
            if isinstance(override, RuleConfigError):
                summary.add_error(
                    f"invalid override: {override}", client_id=client.client_id, rule_code=rule.code
                )
                continue

            if override is not None and not override.is_enabled:
                summary.skipped_by_override += 1
                continue

            split_day = (
                client.payroll_advance_day
                if isinstance(rule.recurrence, SemiMonthlyRecurrence)
                else None
            )
            try:
                if not is_applicable(rule, client, override):
                    summary.skipped_by_condition += 1
                    continue
                periods = list(
                    expand_periods(
                        rule.recurrence, summary.from_date, summary.to_date, split_day
                    )
                )
            except Exception as e:
                self._logger.error(
                    "rule_expansion_failed",
                    client_id=client.client_id,
                    rule_code=rule.code,
                    error=str(e),
                )
                summary.add_error(
                    truncate_error(str(e)), client_id=client.client_id, rule_code=rule.code
                )
                continue

            due_rule = (override.due_rule_override if override else None) or rule.due_rule
            template = (override.task_template_override if override else None) or rule.task_template

            for period in periods:
                summary.matched_candidates += 1
                candidate = _Candidate(client, rule, period, due_rule, template)
                try:
                    await self._process_candidate(tenant_id, candidate, calendar, options, summary)
                except Exception as e:
                    details = getattr(e, "details", None)
                    self._logger.error(
                        "generation_item_failed", **candidate.context(), error=str(e), details=details
                    )
                    summary.add_error(truncate_error(str(e)), **candidate.context())

    async def _process_candidate(
        self,
        tenant_id: str,
        candidate: _Candidate,
        calendar: BusinessCalendar,
        options: GenerationOptions,
        summary: GenerationSummary,
    ) -> None:
        client, rule, period = candidate.client, candidate.rule, candidate.period
        due_date: date | None = None
        due_error: str | None = None
        try:
            due_date = resolve_due_date(candidate.due_rule, period, client, calendar)
        except RulebookError as e:
            due_error = truncate_error(str(e))

        existing_row = await self.store.find_generation_record(
            tenant_id, client.client_id, rule.id, period.period_key
        )
        record = GenerationRecord.from_row(existing_row) if existing_row else None

        if record is not None and (
            record.generated_task_id or not options.force_retry_without_linked_task
        ):
            summary.skipped += 1
            outcome = "already_generated" if record.generated_task_id else "existing_without_task"
            self._detail(summary, candidate, outcome, record.status, due_date)
            return

        if options.dry_run:
            if due_error:
                summary.add_error(due_error, **candidate.context())
                self._detail(summary, candidate, "error", GenerationStatus.ERROR, None)
            else:
                self._detail(summary, candidate, "would_create", GenerationStatus.PENDING, due_date)
            return

        if record is None:
            record = GenerationRecord(
                tenant_id=tenant_id,
                client_id=client.client_id,
                rule_id=rule.id,
                period_key=period.period_key,
                scheduled_due_date=due_date,
                status=GenerationStatus.ERROR if due_error else GenerationStatus.PENDING,
                error_message=due_error,
                generation_context=self._generation_context(candidate),
            )
            try:
                record = GenerationRecord.from_row(
                    await self.store.insert_generation_record(record.to_row())
                )
            except GenerationConflictError:
                # Another run inserted the same key first
                self._logger.info("generation_conflict", **candidate.context())
                raced = await self.store.find_generation_record(
                    tenant_id, client.client_id, rule.id, period.period_key
                )
                if raced is None:
                    raise
                summary.skipped += 1
                self._detail(
                    summary, candidate, "already_generated", GenerationRecord.from_row(raced).status, due_date
                )
                return

            if due_error:
                summary.add_error(due_error, **candidate.context())
                self._detail(summary, candidate, "error", GenerationStatus.ERROR, None)
                return
        elif due_error:
            await self._mark_error(record, due_error)
            summary.add_error(due_error, **candidate.context())
            self._detail(summary, candidate, "error", GenerationStatus.ERROR, None)
            return

        if due_date is None:
            raise DueDateResolutionError(f"no due date resolved for {period.period_key}")
        await self._attach_task(tenant_id, record, candidate, due_date, summary)

    async def _attach_task(
        self,
        tenant_id: str,
        record: GenerationRecord,
        candidate: _Candidate,
        due_date: date,
        summary: GenerationSummary,
    ) -> None:
        record_id = _record_id(record)
        client, rule, period = candidate.client, candidate.rule, candidate.period
        try:
            task_id = await self.store.find_task(
                tenant_id, client.client_id, candidate.template.title, due_date, period.period_key
            )
            outcome = "linked_existing"
            if task_id is None:
                task_id = await self.store.create_task(
                    TaskRequest(
                        tenant_id=tenant_id,
                        client_id=client.client_id,
                        rule_id=rule.id,
                        rule_code=rule.code,
                        period_key=period.period_key,
                        due_date=due_date,
                        template=candidate.template,
                        description=build_description(candidate.template, rule.legal_basis),
                        recurrence=rule.recurrence.kind,
                        legal_basis=rule.legal_basis,
                    )
                )
                outcome = "created"
        except Exception as e:
            message = truncate_error(str(e) or type(e).__name__)
            await self._mark_error(record, message)
            summary.add_error(message, **candidate.context())
            self._detail(summary, candidate, "error", GenerationStatus.ERROR, due_date)
            return

        if task_id is None:
            await self.store.update_generation_record(
                record_id,
                {
                    "status": GenerationStatus.SKIPPED.value,
                    "scheduled_due_date": due_date.isoformat(),
                    "error_message": None,
                },
            )
            summary.skipped += 1
            summary.skipped_no_assignee += 1
            self._detail(summary, candidate, "no_assignee", GenerationStatus.SKIPPED, due_date)
            return

        await self.store.update_generation_record(
            record_id,
            {
                "status": GenerationStatus.GENERATED.value,
                "generated_task_id": task_id,
                "scheduled_due_date": due_date.isoformat(),
                "error_message": None,
            },
        )
        if outcome == "created":
            summary.created += 1
        else:
            summary.linked_existing += 1
        self._detail(summary, candidate, outcome, GenerationStatus.GENERATED, due_date, task_id)

    async def _mark_error(self, record: GenerationRecord, message: str) -> None:
        await self.store.update_generation_record(
            _record_id(record),
            {"status": GenerationStatus.ERROR.value, "error_message": message},
        )

    def _generation_context(self, candidate: _Candidate) -> dict[str, Any]:
        return {
            "rule_code": candidate.rule.code,
            "recurrence": candidate.rule.recurrence.model_dump(),
            "due_rule": candidate.due_rule.model_dump(),
            "period_start": candidate.period.period_start.isoformat(),
            "period_end": candidate.period.period_end.isoformat(),
            "legal_basis": list(candidate.rule.legal_basis),
        }

    def _detail(
        self,
        summary: GenerationSummary,
        candidate: _Candidate,
        outcome: str,
        status: GenerationStatus,
        due_date: date | None,
        task_id: str | None = None,
    ) -> None:
        summary.details.append(
            {
                **candidate.context(),
                "outcome": outcome,
                "status": status.value,
                "due_date": due_date.isoformat() if due_date else None,
                "task_id": task_id,
            }
        )

    async def _write_audit(self, summary: GenerationSummary, version_id: str) -> None:
        try:
            await self.store.record_audit_entry(
                summary.tenant_id, "rulebook_generation_run", version_id, summary.audit_meta()
            )
        except Exception as e:
            self._logger.warning("audit_write_failed", tenant_id=summary.tenant_id, error=str(e))
