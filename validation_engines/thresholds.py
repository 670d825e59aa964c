"""
validation_engines.thresholds -- Required authority level resolution.

Responsibility:
    Map a request's amount to the number of authority levels that must
    approve it, decide whether the amount is small enough to need nobody,
    and check threshold policies for consistency.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Monotonic: a larger amount never needs fewer levels.
    - Fail-safe: an entity type with no policy needs every level
      (``MAX_AUTHORITY_LEVEL``) and is never auto-approved.
    - A request without an amount uses the policy's fixed level count and
      is never auto-approved.
"""

from __future__ import annotations

from decimal import Decimal

from validation_kernel.domain.thresholds import ThresholdPolicy, ThresholdResolution
from validation_kernel.domain.validation import (
    MAX_AUTHORITY_LEVEL,
    MIN_AUTHORITY_LEVEL,
)


def required_level_for(thresholds: tuple[Decimal, ...], amount: Decimal) -> int:
    """Tier lookup: ``amount <= thresholds[i]`` needs level ``i + 1``."""
    for index, ceiling in enumerate(thresholds):
        if amount <= ceiling:
            return index + 1
    return MAX_AUTHORITY_LEVEL


def auto_approves(policy: ThresholdPolicy, amount: Decimal | None) -> bool:
    """A positive amount strictly below an enabled ``auto_approve_below``."""
    if amount is None or amount <= 0 or not policy.auto_approves:
        return False
    return amount < policy.auto_approve_below


def resolve_levels(
    policy: ThresholdPolicy | None,
    amount: Decimal | None,
) -> ThresholdResolution:
    """Resolve the authority requirements for a new request."""
    if policy is None:
        return ThresholdResolution(
            required_level=MAX_AUTHORITY_LEVEL,
            first_validator_level=MIN_AUTHORITY_LEVEL,
            policy_key=None,
        )

    if amount is None:
        required = policy.levels_without_amount
    else:
        required = required_level_for(policy.level_thresholds, amount)

    return ThresholdResolution(
        required_level=required,
        first_validator_level=min(policy.first_validator_level, required),
        policy_key=policy.policy_key,
        auto_approve=auto_approves(policy, amount),
        auto_approve_below=policy.auto_approve_below if policy.auto_approves else None,
        policy_version=policy.version,
    )


def validate_threshold_policy(policy: ThresholdPolicy) -> list[str]:
    """Return every consistency problem of a policy (empty when valid)."""
    errors: list[str] = []
    key = policy.policy_key
    thresholds = policy.level_thresholds

    if len(thresholds) != MAX_AUTHORITY_LEVEL - 1:
        errors.append(
            f"{key}: expected {MAX_AUTHORITY_LEVEL - 1} level thresholds, got {len(thresholds)}"
        )
    if any(t < 0 for t in thresholds):
        errors.append(f"{key}: thresholds must be non-negative")
    if any(a >= b for a, b in zip(thresholds, thresholds[1:])):
        errors.append(f"{key}: thresholds must be strictly increasing")
    if policy.auto_approve_below < 0:
        errors.append(f"{key}: auto_approve_below must be non-negative")
    elif policy.auto_approves and thresholds and policy.auto_approve_below >= thresholds[0]:
        errors.append(
            f"{key}: auto_approve_below must be below the level 1 threshold"
        )
    if not MIN_AUTHORITY_LEVEL <= policy.levels_without_amount <= MAX_AUTHORITY_LEVEL:
        errors.append(
            f"{key}: levels_without_amount must be between "
            f"{MIN_AUTHORITY_LEVEL} and {MAX_AUTHORITY_LEVEL}"
        )
    if not MIN_AUTHORITY_LEVEL <= policy.first_validator_level <= MAX_AUTHORITY_LEVEL:
        errors.append(
            f"{key}: first_validator_level must be between "
            f"{MIN_AUTHORITY_LEVEL} and {MAX_AUTHORITY_LEVEL}"
        )
    return errors
