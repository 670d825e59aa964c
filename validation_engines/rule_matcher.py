"""
validation_engines.rule_matcher -- First-match-wins rule selection.

Responsibility:
    Given a consistent snapshot of rules and a request's attributes, find
    the first active rule whose conditions all hold.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Deterministic ordering: rules of the request's own category come
      first, then ``generic`` rules; inside each group, ascending
      ``position`` (ties broken by ``rule_id`` so equal positions still
      give one answer).  First full match wins.
    - Inactive rules and rules with zero conditions never match.
    - Purity: same inputs, same output; nothing is mutated.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from validation_engines.conditions import conditions_match
from validation_kernel.domain.rules import Rule, RuleCategory, RuleMatch
from validation_kernel.domain.validation import EntityType


def ordered_candidates(rules: Iterable[Rule], entity_type: EntityType) -> list[Rule]:
    """Active rules that apply to ``entity_type``, in evaluation order."""
    own = RuleCategory.for_entity(entity_type)
    group_rank = {own: 0, RuleCategory.GENERIC: 1}
    candidates = [
        r for r in rules
        if r.is_active and r.category in group_rank and r.conditions
    ]
    return sorted(
        candidates,
        key=lambda r: (group_rank[r.category], r.position, str(r.rule_id)),
    )


def match_rules(
    rules: Iterable[Rule],
    entity_type: EntityType,
    snapshot: dict[str, Any],
) -> RuleMatch | None:
    """Return the first matching rule as a RuleMatch, or None."""
    for rule in ordered_candidates(rules, entity_type):
        if conditions_match(rule.conditions, snapshot):
            return RuleMatch(
                action=rule.action,
                rule_id=rule.rule_id,
                rule_name=rule.name,
                reason=rule.action_reason or f"Matched rule '{rule.name}'",
            )
    return None
