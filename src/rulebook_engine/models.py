"""Rulebook data model.

Configuration families stored as JSON on a rule (recurrence, due rule, task
template) are closed pydantic unions discriminated by ``kind``. They are
validated when a row crosses the store boundary, so the period calculator
and the due-date resolver only ever see legal shapes.

Persisted entities are plain dataclasses with ``from_row``/``to_row``
converters for the row dictionaries the stores exchange.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from rulebook_engine.errors import RuleConfigError

BusinessDayShift = Literal["none", "next_business_day", "prev_business_day"]
ProfileDayField = Literal["payroll_advance_day", "payroll_final_day"]


# =============================================================================
# RECURRENCE
# =============================================================================


class _ConfigModel(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True, extra="ignore")


class MonthlyRecurrence(_ConfigModel):
    kind: Literal["monthly"]
    event: str | None = None


class QuarterlyRecurrence(_ConfigModel):
    kind: Literal["quarterly"]
    event: str | None = None


class AnnualRecurrence(_ConfigModel):
    kind: Literal["annual"]
    event: str | None = None


class SemiMonthlyRecurrence(_ConfigModel):
    """Two windows per month split at the client's advance payday.

    ``event`` narrows the rule to one half: ``advance`` covers half A,
    ``salary``/``final`` cover half B. Without an event both halves apply.
    """

    kind: Literal["semi_monthly"]
    event: Literal["advance", "salary", "final"] | None = None

    @property
    def halves(self) -> tuple[str, ...]:
        if self.event == "advance":
            return ("A",)
        if self.event in ("salary", "final"):
            return ("B",)
        return ("A", "B")


Recurrence = Annotated[
    Union[MonthlyRecurrence, QuarterlyRecurrence, AnnualRecurrence, SemiMonthlyRecurrence],
    Field(discriminator="kind"),
]


# =============================================================================
# DUE RULES
# =============================================================================


class _DueRuleBase(_ConfigModel):
    shift_if_non_business_day: BusinessDayShift = "none"


class DayOfMonthDueRule(_DueRuleBase):
    """Calendar day N of the month ``month_offset`` months after the period ends."""

    kind: Literal["day_of_month"]
    day: int = Field(ge=1, le=31)
    month_offset: int = 1


class ProfileDayOfMonthDueRule(_DueRuleBase):
    """Day of month taken from the client's payroll profile."""

    kind: Literal["profile_day_of_month"]
    profile_field: ProfileDayField
    month_offset: int = 0


class BusinessDayOfMonthDueRule(_DueRuleBase):
    """Nth business day of the month ``month_offset`` months after the period ends."""

    kind: Literal["business_day_of_month"]
    day: int = Field(ge=1, le=23)
    month_offset: int = 1


class DaysAfterPeriodEndDueRule(_DueRuleBase):
    kind: Literal["days_after_period_end"]
    days: int = Field(ge=0)


class FixedDateDueRule(_DueRuleBase):
    kind: Literal["fixed_date"]
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)


DueRule = Annotated[
    Union[
        DayOfMonthDueRule,
        ProfileDayOfMonthDueRule,
        BusinessDayOfMonthDueRule,
        DaysAfterPeriodEndDueRule,
        FixedDateDueRule,
    ],
    Field(discriminator="kind"),
]

RECURRENCE_ADAPTER: TypeAdapter[Any] = TypeAdapter(Recurrence)
DUE_RULE_ADAPTER: TypeAdapter[Any] = TypeAdapter(DueRule)


# =============================================================================
# TASK TEMPLATE & RULE DEFINITION
# =============================================================================


class TaskTemplate(BaseModel):
    """Shape of the task created for a generated obligation."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    title: str = Field(min_length=1)
    description: str | None = None
    task_type: str = "other"
    priority: int = Field(default=2, ge=1, le=3)
    proof_required: bool = False
    assignee_policy: Literal[
        "primary_accountant", "explicit_assignee", "client_primary_or_any"
    ] = "client_primary_or_any"
    assignee_id: str | None = None


class RuleDefinition(BaseModel):
    """Validated rule payload, as seeded by init or written through rule CRUD."""

    model_config = ConfigDict(extra="ignore")

    code: str = Field(min_length=1)
    title: str = Field(min_length=1)
    is_active: bool = True
    sort_order: int = 100
    legal_basis: list[str] = Field(default_factory=list)
    match_condition: dict[str, Any] = Field(default_factory=dict)
    recurrence: Recurrence
    due_rule: DueRule
    task_template: TaskTemplate

    @field_validator("match_condition", mode="before")
    @classmethod
    def _empty_condition(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("legal_basis", mode="before")
    @classmethod
    def _empty_legal_basis(cls, value: Any) -> Any:
        return [] if value is None else value


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def parse_recurrence(value: Any) -> Recurrence:
    """Validate a raw recurrence payload."""
    try:
        return RECURRENCE_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise RuleConfigError(f"invalid recurrence: {_describe(exc)}") from exc


def parse_due_rule(value: Any) -> DueRule:
    """Validate a raw due-rule payload."""
    try:
        return DUE_RULE_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise RuleConfigError(f"invalid due_rule: {_describe(exc)}") from exc


def parse_task_template(value: Any) -> TaskTemplate:
    """Validate a raw task template payload."""
    try:
        return TaskTemplate.model_validate(value)
    except ValidationError as exc:
        raise RuleConfigError(f"invalid task_template: {_describe(exc)}") from exc


def parse_rule_definition(value: Any) -> RuleDefinition:
    """Validate a full rule payload."""
    code = value.get("code") if isinstance(value, dict) else None
    try:
        return RuleDefinition.model_validate(value)
    except ValidationError as exc:
        raise RuleConfigError(
            f"invalid rule {code or '<unknown>'}: {_describe(exc)}",
            rule_code=code,
        ) from exc


def _as_date(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# =============================================================================
# ENTITIES
# =============================================================================


@dataclass
class RulebookVersion:
    """Named, dated set of rules for a tenant."""

    id: str
    tenant_id: str
    code: str
    name: str
    effective_from: date
    description: str | None = None
    effective_to: date | None = None
    is_active: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RulebookVersion:
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            code=str(row["code"]),
            name=str(row.get("name") or row["code"]),
            description=row.get("description"),
            effective_from=_as_date(row["effective_from"]) or date.min,
            effective_to=_as_date(row.get("effective_to")),
            is_active=bool(row.get("is_active", False)),
        )


@dataclass
class RulebookRule:
    """A single obligation definition, with its configuration validated."""

    id: str
    tenant_id: str
    version_id: str
    code: str
    title: str
    recurrence: Recurrence
    due_rule: DueRule
    task_template: TaskTemplate
    is_active: bool = True
    sort_order: int = 100
    legal_basis: tuple[str, ...] = ()
    match_condition: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RulebookRule:
        """Build a rule from a stored row.

        Raises:
            RuleConfigError: If any configuration column has an illegal shape.
        """
        definition = parse_rule_definition(row)
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            version_id=str(row["version_id"]),
            code=definition.code,
            title=definition.title,
            recurrence=definition.recurrence,
            due_rule=definition.due_rule,
            task_template=definition.task_template,
            is_active=definition.is_active,
            sort_order=definition.sort_order,
            legal_basis=tuple(definition.legal_basis),
            match_condition=definition.match_condition,
        )


@dataclass
class RuleOverride:
    """Per-client exception to a rule."""

    tenant_id: str
    client_id: str
    rule_id: str
    is_enabled: bool = True
    due_rule_override: DueRule | None = None
    task_template_override: TaskTemplate | None = None
    id: str | None = None
    reason: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RuleOverride:
        due_raw = row.get("due_rule_override")
        template_raw = row.get("task_template_override")
        return cls(
            id=str(row["id"]) if row.get("id") else None,
            tenant_id=str(row["tenant_id"]),
            client_id=str(row["client_id"]),
            rule_id=str(row["rule_id"]),
            is_enabled=bool(row.get("is_enabled", True)),
            due_rule_override=parse_due_rule(due_raw) if due_raw else None,
            task_template_override=parse_task_template(template_raw) if template_raw else None,
            reason=row.get("reason"),
        )


@dataclass
class ClientRuntimeProfile:
    """Read-only projection of a client used for matching and due dates."""

    client_id: str
    client_type: str | None
    status: str | None
    tax_system: str | None
    is_vat_payer: bool | None
    employee_count: int | None
    has_employees: bool | None
    tax_tags: tuple[str, ...] = ()
    timezone: str = "Europe/Kyiv"
    payroll_frequency: str = "semi_monthly"
    payroll_advance_day: int | None = None
    payroll_final_day: int | None = None

    @property
    def legal_form(self) -> str | None:
        return self.client_type

    @classmethod
    def from_client_row(cls, row: dict[str, Any]) -> ClientRuntimeProfile:
        """Normalize a client record.

        Tags are lower-cased and de-duplicated; ``vat`` and ``employees`` are
        added when the client pays VAT or has staff. Payroll days that are
        unset or zero stay ``None``.
        """
        raw_count = row.get("employee_count")
        employee_count = max(0, int(raw_count)) if raw_count is not None else None
        is_vat_payer = row.get("is_vat_payer")

        tags: list[str] = []
        for tag in row.get("additional_tax_tags") or []:
            normalized = str(tag or "").strip().lower()
            if normalized and normalized not in tags:
                tags.append(normalized)
        if is_vat_payer and "vat" not in tags:
            tags.append("vat")
        if employee_count and "employees" not in tags:
            tags.append("employees")

        return cls(
            client_id=str(row["id"]),
            client_type=row.get("type"),
            status=row.get("status"),
            tax_system=row.get("tax_system"),
            is_vat_payer=is_vat_payer,
            employee_count=employee_count,
            has_employees=employee_count > 0 if employee_count is not None else None,
            tax_tags=tuple(tags),
            timezone=row.get("timezone") or "Europe/Kyiv",
            payroll_frequency=row.get("payroll_frequency") or "semi_monthly",
            payroll_advance_day=row.get("payroll_advance_day") or None,
            payroll_final_day=row.get("payroll_final_day") or None,
        )

    def as_condition_context(self) -> dict[str, Any]:
        """Mapping the condition evaluator resolves field paths against."""
        return {
            "client_id": self.client_id,
            "client_type": self.client_type,
            "legal_form": self.client_type,
            "status": self.status,
            "tax_system": self.tax_system,
            "is_vat_payer": self.is_vat_payer,
            "employee_count": self.employee_count,
            "has_employees": self.has_employees,
            "tax_tags": list(self.tax_tags),
            "timezone": self.timezone,
            "payroll_frequency": self.payroll_frequency,
            "payroll_advance_day": self.payroll_advance_day,
            "payroll_final_day": self.payroll_final_day,
        }


class GenerationStatus(str, Enum):
    """Lifecycle of a generation ledger row."""

    PENDING = "pending"
    GENERATED = "generated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class GenerationRecord:
    """Idempotence ledger row for one (client, rule, period)."""

    tenant_id: str
    client_id: str
    rule_id: str
    period_key: str
    scheduled_due_date: date | None = None
    status: GenerationStatus = GenerationStatus.PENDING
    generated_task_id: str | None = None
    error_message: str | None = None
    generation_context: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.tenant_id, self.client_id, self.rule_id, self.period_key)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> GenerationRecord:
        return cls(
            id=str(row["id"]) if row.get("id") else None,
            tenant_id=str(row["tenant_id"]),
            client_id=str(row["client_id"]),
            rule_id=str(row["rule_id"]),
            period_key=str(row["period_key"]),
            scheduled_due_date=_as_date(row.get("scheduled_due_date")),
            status=GenerationStatus(row.get("status") or GenerationStatus.PENDING.value),
            generated_task_id=row.get("generated_task_id"),
            error_message=row.get("error_message"),
            generation_context=dict(row.get("generation_context") or {}),
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "rule_id": self.rule_id,
            "period_key": self.period_key,
            "scheduled_due_date": (
                self.scheduled_due_date.isoformat() if self.scheduled_due_date else None
            ),
            "status": self.status.value,
            "generated_task_id": self.generated_task_id,
            "error_message": self.error_message,
            "generation_context": self.generation_context,
        }
        if self.id:
            row["id"] = self.id
        return row


@dataclass(frozen=True)
class PeriodWindow:
    """One obligation period; ``period_end`` is inclusive."""

    period_key: str
    period_start: date
    period_end: date

    def overlaps(self, range_start: date, range_end: date) -> bool:
        return self.period_start <= range_end and self.period_end >= range_start


@dataclass(frozen=True)
class TaskRequest:
    """Everything the task collaborator needs to create one task."""

    tenant_id: str
    client_id: str
    rule_id: str
    rule_code: str
    period_key: str
    due_date: date
    template: TaskTemplate
    description: str | None
    recurrence: str
    legal_basis: tuple[str, ...] = ()
