"""Utilities for loading the bundled default rulebook from YAML."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from rulebook_engine.errors import RuleConfigError
from rulebook_engine.models import RuleDefinition, parse_rule_definition

DEFAULT_RULEBOOK_PATH = Path(__file__).resolve().parent / "default_rulebook.yaml"


@dataclass(frozen=True)
class DefaultVersion:
    """Version metadata used when init is called without overrides."""

    code: str
    name: str
    effective_from: date
    description: str | None = None


@dataclass(frozen=True)
class DefaultRulebook:
    version: DefaultVersion
    rules: tuple[RuleDefinition, ...]


def _parse_version(data: dict[str, Any]) -> DefaultVersion:
    try:
        return DefaultVersion(
            code=str(data["code"]),
            name=str(data["name"]),
            effective_from=date.fromisoformat(str(data["effective_from"])),
            description=data.get("description"),
        )
    except (KeyError, ValueError) as exc:
        raise RuleConfigError(f"invalid default version block: {exc}") from exc


@lru_cache
def load_default_rulebook(path: str | None = None) -> DefaultRulebook:
    """Load and validate the default rulebook.

    Args:
        path: Optional YAML path; defaults to the bundled rulebook.

    Raises:
        RuleConfigError: If the version block or any rule is malformed, or
            two rules share a code.
    """
    source = Path(path) if path else DEFAULT_RULEBOOK_PATH
    data = yaml.safe_load(source.read_text(encoding="utf-8")) or {}

    version = _parse_version(data.get("version") or {})

    rules: list[RuleDefinition] = []
    seen: set[str] = set()
    for raw in data.get("rules") or []:
        rule = parse_rule_definition(raw)
        if rule.code in seen:
            raise RuleConfigError(f"duplicate default rule code {rule.code}", rule_code=rule.code)
        seen.add(rule.code)
        rules.append(rule)

    return DefaultRulebook(version=version, rules=tuple(rules))
