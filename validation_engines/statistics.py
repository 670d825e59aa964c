"""
validation_engines.statistics -- Validator workload and threshold usage figures.

Responsibility:
    Aggregate request snapshots into per-validator statistics and
    per-entity-type threshold usage.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The caller selects the
    requests (workspace and period) and passes them in.

Invariants enforced:
    - Response time is measured from request creation to the decision,
      in hours, as an exact Decimal rounded to two places.
    - Rates are percentages in [0, 100]; an empty population gives 0.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from validation_kernel.domain.validation import (
    Decision,
    ValidationRequest,
    ValidationStatus,
    ValidatorKind,
)

_TWO_PLACES = Decimal("0.01")
_SECONDS_PER_HOUR = Decimal(3600)


@dataclass(frozen=True)
class DecisionCounts:
    approved: int = 0
    rejected: int = 0


@dataclass(frozen=True)
class ValidatorStats:
    validator_id: str
    total_processed: int
    approved: int
    rejected: int
    avg_response_hours: Decimal
    by_entity_type: dict[str, DecisionCounts] = field(default_factory=dict)


@dataclass(frozen=True)
class ThresholdUsage:
    """Counts for one entity type: auto-approved, else by required level."""

    entity_type: str
    auto_approved: int = 0
    by_required_level: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ThresholdUsageReport:
    total_requests: int
    auto_approval_rate: Decimal
    by_entity_type: dict[str, ThresholdUsage] = field(default_factory=dict)


def validator_stats(
    requests: Iterable[ValidationRequest],
    validator_id: str,
) -> ValidatorStats:
    """Decisions made by one human validator across ``requests``."""
    approved = rejected = 0
    total_seconds = Decimal(0)
    by_type: dict[str, list[int]] = {}

    for request in requests:
        for record in request.validations:
            if record.validator.kind != ValidatorKind.HUMAN:
                continue
            if record.validator.validator_id != validator_id:
                continue
            counts = by_type.setdefault(request.entity_type.value, [0, 0])
            if record.decision == Decision.APPROVED:
                approved += 1
                counts[0] += 1
            else:
                rejected += 1
                counts[1] += 1
            elapsed = record.decided_at - request.created_at
            total_seconds += Decimal(str(elapsed.total_seconds()))

    total = approved + rejected
    avg_hours = (
        (total_seconds / _SECONDS_PER_HOUR / total).quantize(_TWO_PLACES, ROUND_HALF_UP)
        if total else Decimal("0.00")
    )
    return ValidatorStats(
        validator_id=validator_id,
        total_processed=total,
        approved=approved,
        rejected=rejected,
        avg_response_hours=avg_hours,
        by_entity_type={
            k: DecisionCounts(approved=v[0], rejected=v[1]) for k, v in sorted(by_type.items())
        },
    )


def threshold_usage(requests: Iterable[ValidationRequest]) -> ThresholdUsageReport:
    """How often each entity type was auto-approved or needed each level."""
    total = 0
    auto = 0
    per_type: dict[str, tuple[int, dict[int, int]]] = {}

    for request in requests:
        total += 1
        auto_count, levels = per_type.get(request.entity_type.value, (0, {}))
        if request.status == ValidationStatus.AUTO_APPROVED:
            auto += 1
            auto_count += 1
        else:
            levels[request.required_level] = levels.get(request.required_level, 0) + 1
        per_type[request.entity_type.value] = (auto_count, levels)

    rate = (
        (Decimal(auto) * 100 / Decimal(total)).quantize(_TWO_PLACES, ROUND_HALF_UP)
        if total else Decimal("0.00")
    )
    return ThresholdUsageReport(
        total_requests=total,
        auto_approval_rate=rate,
        by_entity_type={
            entity_type: ThresholdUsage(
                entity_type=entity_type,
                auto_approved=auto_count,
                by_required_level=dict(sorted(levels.items())),
            )
            for entity_type, (auto_count, levels) in sorted(per_type.items())
        },
    )
