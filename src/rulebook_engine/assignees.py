"""Assignee resolution for generated tasks."""

from collections.abc import Sequence
from typing import Any

from rulebook_engine.models import TaskTemplate


def resolve_assignee(
    template: TaskTemplate,
    assignments: Sequence[dict[str, Any]],
    staff: Sequence[dict[str, Any]] = (),
) -> str | None:
    """Pick who a generated task is assigned to.

    Order: an explicit assignee when the policy asks for one, the client's
    primary accountant, any accountant assigned to the client, the template's
    assignee, an active admin, an active accountant.

    Args:
        template: Effective task template (after overrides).
        assignments: ``client_accountants`` rows for the client
            (``accountant_id``, ``is_primary``).
        staff: Active tenant profiles (``id``, ``role``).

    Returns:
        Profile id, or ``None`` if nobody can take the task.
    """
    if template.assignee_policy == "explicit_assignee" and template.assignee_id:
        return template.assignee_id

    for row in assignments:
        if row.get("is_primary") and row.get("accountant_id"):
            return str(row["accountant_id"])
    if assignments and assignments[0].get("accountant_id"):
        return str(assignments[0]["accountant_id"])

    if template.assignee_id:
        return template.assignee_id

    for role in ("admin", "accountant"):
        for row in staff:
            if row.get("role") == role and row.get("id"):
                return str(row["id"])
    return None
