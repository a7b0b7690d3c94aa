"""Exception types raised by the rulebook engine."""

from typing import Any


class RulebookError(Exception):
    """Base exception for rulebook engine errors."""


class RuleConfigError(RulebookError):
    """A stored rule or override payload failed validation."""

    def __init__(self, message: str, rule_code: str | None = None):
        super().__init__(message)
        self.rule_code = rule_code


class PeriodConfigurationError(RulebookError):
    """Periods cannot be expanded for a client."""


class DueDateResolutionError(RulebookError):
    """A due rule cannot produce a date for a period."""


class TaskCreationError(RulebookError):
    """The task collaborator failed to create a task."""


class StoreError(RulebookError):
    """The persistence layer failed."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class GenerationConflictError(StoreError):
    """A generation record with the same unique key already exists."""

    pass
