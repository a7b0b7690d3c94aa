"""Condition tree evaluation against a client runtime profile.

A node is either a predicate ``{"field": ..., "op": ..., "value": ...}`` or
a group ``{"all": [...]}`` / ``{"any": [...]}`` (both keys may be present,
in which case both must pass). Evaluation fails closed: an unknown
operator, a malformed node or a field that does not resolve is a non-match,
never an exception.
"""

from collections.abc import Callable, Mapping
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equal(left: Any, right: Any) -> bool:
    # True == 1 in Python; predicates compare booleans by identity of type
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _numeric(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(left: Any, right: Any) -> bool:
        return _is_number(left) and _is_number(right) and compare(left, right)

    return check


def _in(left: Any, right: Any) -> bool:
    return isinstance(right, list) and any(_strict_equal(left, item) for item in right)


def _nin(left: Any, right: Any) -> bool:
    return isinstance(right, list) and not any(_strict_equal(left, item) for item in right)


def _contains(left: Any, right: Any) -> bool:
    if isinstance(left, (list, tuple, set, frozenset)):
        return any(_strict_equal(item, right) for item in left)
    if isinstance(left, str) and isinstance(right, str):
        return right in left
    return False


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": _strict_equal,
    "neq": lambda left, right: not _strict_equal(left, right),
    "gt": _numeric(lambda left, right: left > right),
    "gte": _numeric(lambda left, right: left >= right),
    "lt": _numeric(lambda left, right: left < right),
    "lte": _numeric(lambda left, right: left <= right),
    "in": _in,
    "nin": _nin,
    "contains": _contains,
}


def resolve_field(profile: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted field path, returning a sentinel when absent."""
    cursor: Any = profile
    for part in (segment for segment in path.split(".") if segment):
        if not isinstance(cursor, Mapping) or part not in cursor:
            return _MISSING
        cursor = cursor[part]
    return cursor


def _is_predicate(node: Mapping[str, Any]) -> bool:
    return isinstance(node.get("field"), str) and (
        isinstance(node.get("op"), str) or isinstance(node.get("operator"), str)
    )


def _evaluate_predicate(node: Mapping[str, Any], profile: Mapping[str, Any]) -> bool:
    field_path = node["field"]
    operator = node.get("op") or node.get("operator")
    value = resolve_field(profile, field_path)

    if operator == "exists":
        return value is not _MISSING and value is not None

    comparator = _COMPARATORS.get(operator)
    if comparator is None:
        logger.warning("condition_unknown_operator", field=field_path, operator=operator)
        return False

    if value is _MISSING:
        logger.debug("condition_field_unresolved", field=field_path, operator=operator)
        return False

    try:
        return comparator(value, node.get("value"))
    except TypeError:
        logger.debug("condition_type_mismatch", field=field_path, operator=operator)
        return False


def _evaluate_node(node: Any, profile: Mapping[str, Any]) -> bool:
    if not isinstance(node, Mapping):
        return False

    if _is_predicate(node):
        return _evaluate_predicate(node, profile)

    if "all" not in node and "any" not in node:
        logger.warning("condition_malformed_node", keys=sorted(str(k) for k in node))
        return False

    passed = True
    if "all" in node:
        children = node["all"]
        if not isinstance(children, list):
            return False
        passed = all(_evaluate_node(child, profile) for child in children)

    if passed and "any" in node:
        children = node["any"]
        if not isinstance(children, list):
            return False
        passed = any(_evaluate_node(child, profile) for child in children)

    return passed


def evaluate(node: Mapping[str, Any] | None, profile: Mapping[str, Any]) -> bool:
    """Evaluate a condition tree.

    Args:
        node: Condition tree. ``None`` or ``{}`` means "no filter".
        profile: Field values, usually ``ClientRuntimeProfile.as_condition_context()``.

    Returns:
        True when the profile satisfies the condition.
    """
    if node is None or (isinstance(node, Mapping) and not node):
        return True
    return _evaluate_node(node, profile)
