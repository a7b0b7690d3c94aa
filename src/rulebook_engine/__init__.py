"""Rulebook engine - turns versioned compliance rules into client tasks."""

__version__ = "0.1.0"

from rulebook_engine.business_days import BusinessCalendar
from rulebook_engine.conditions import evaluate
from rulebook_engine.config import configure_logging, get_settings
from rulebook_engine.due_dates import resolve_due_date
from rulebook_engine.errors import (
    DueDateResolutionError,
    GenerationConflictError,
    PeriodConfigurationError,
    RuleConfigError,
    RulebookError,
    StoreError,
    TaskCreationError,
)
from rulebook_engine.generation import (
    GenerationOptions,
    GenerationOrchestrator,
    GenerationSummary,
)
from rulebook_engine.matcher import is_applicable
from rulebook_engine.periods import expand_periods
from rulebook_engine.runner import init_for_tenants, run_for_tenants
from rulebook_engine.store import (
    InMemoryRulebookStore,
    PostgrestRulebookStore,
    RulebookStore,
)
from rulebook_engine.versioning import (
    InitOptions,
    InitSummary,
    RuleEditor,
    RulebookInitializer,
)

__all__ = [
    # Version
    "__version__",
    # Pure components
    "evaluate",
    "is_applicable",
    "expand_periods",
    "resolve_due_date",
    "BusinessCalendar",
    # Use cases
    "GenerationOrchestrator",
    "GenerationOptions",
    "GenerationSummary",
    "RulebookInitializer",
    "InitOptions",
    "InitSummary",
    "RuleEditor",
    "run_for_tenants",
    "init_for_tenants",
    # Stores
    "RulebookStore",
    "InMemoryRulebookStore",
    "PostgrestRulebookStore",
    # Errors
    "RulebookError",
    "RuleConfigError",
    "PeriodConfigurationError",
    "DueDateResolutionError",
    "TaskCreationError",
    "StoreError",
    "GenerationConflictError",
    # Config
    "get_settings",
    "configure_logging",
]
