"""
Module: validation_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines: condition evaluation, rule matching, threshold
    resolution, request transitions and statistics.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import validation_kernel/domain and validation_kernel/exceptions.
    MUST NOT import services, models or the database layer.

Invariants enforced:
    - Purity: engines never read the clock.  Timestamps are passed in by
      the calling service.
    - Decimal-only arithmetic for amounts.
    - Determinism: identical inputs always produce identical outputs.
"""

from validation_engines.conditions import (
    compile_condition,
    compile_conditions,
    conditions_match,
    evaluate_condition,
)
from validation_engines.rule_matcher import match_rules, ordered_candidates
from validation_engines.state_machine import (
    TransitionEvent,
    TransitionOutcome,
    apply_cancellation,
    apply_decision,
    apply_escalation,
    is_stale,
    open_request,
)
from validation_engines.statistics import (
    ThresholdUsageReport,
    ValidatorStats,
    threshold_usage,
    validator_stats,
)
from validation_engines.thresholds import (
    auto_approves,
    required_level_for,
    resolve_levels,
    validate_threshold_policy,
)

__all__ = [
    "compile_condition",
    "compile_conditions",
    "conditions_match",
    "evaluate_condition",
    "match_rules",
    "ordered_candidates",
    "TransitionEvent",
    "TransitionOutcome",
    "apply_cancellation",
    "apply_decision",
    "apply_escalation",
    "is_stale",
    "open_request",
    "ThresholdUsageReport",
    "ValidatorStats",
    "threshold_usage",
    "validator_stats",
    "auto_approves",
    "required_level_for",
    "resolve_levels",
    "validate_threshold_policy",
]
