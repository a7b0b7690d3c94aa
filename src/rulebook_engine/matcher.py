"""Rule applicability for a client."""

from rulebook_engine.conditions import evaluate
from rulebook_engine.models import ClientRuntimeProfile, RuleOverride, RulebookRule


def is_applicable(
    rule: RulebookRule,
    profile: ClientRuntimeProfile,
    override: RuleOverride | None = None,
) -> bool:
    """Decide whether a rule applies to a client.

    A disabled override wins outright. Otherwise the rule's match condition
    is evaluated; an empty condition applies to every client. The rule's own
    ``is_active`` flag is filtered by the caller.
    """
    if override is not None and not override.is_enabled:
        return False
    return evaluate(rule.match_condition, profile.as_condition_context())
