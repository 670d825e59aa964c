"""
validation_engines.state_machine -- Pure validation request transitions.

Responsibility:
    Compute the next snapshot of a validation request for each lifecycle
    operation: opening, a human decision, escalation and cancellation.
    The caller persists the returned outcome atomically.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Time is passed in.

Invariants enforced:
    - ``required_level`` is set once, in ``open_request``, and copied
      unchanged by every other transition.
    - Terminal requests accept nothing: decisions and cancellation raise
      AlreadyFinalizedError, escalation is a no-op.
    - Every decision produces exactly one new ValidationRecord; the
      request's history is only ever appended to.
    - Every status change is checked against VALIDATION_TRANSITIONS.
    - Precondition checks run in a fixed order: finalized, expected
      version, expected level, authority.

Failure modes:
    - AlreadyFinalizedError, InsufficientLevelError,
      LevelAlreadyAdvancedError, ConcurrentModificationError,
      InvalidValidationTransitionError.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from validation_kernel.domain.rules import RuleAction, RuleMatch
from validation_kernel.domain.thresholds import ThresholdResolution
from validation_kernel.domain.validation import (
    MAX_AUTHORITY_LEVEL,
    MIN_AUTHORITY_LEVEL,
    VALIDATION_TRANSITIONS,
    Decision,
    DecisionEvidence,
    EntityType,
    Priority,
    ValidationRecord,
    ValidationRequest,
    ValidationStatus,
    ValidatorIdentity,
)
from validation_kernel.exceptions import (
    AlreadyFinalizedError,
    ConcurrentModificationError,
    InsufficientLevelError,
    InvalidValidationTransitionError,
    LevelAlreadyAdvancedError,
)


class TransitionEvent(str, Enum):
    """What a transition did; drives audit and logging in the service."""

    OPENED = "opened"
    AUTO_APPROVED = "auto_approved"
    THRESHOLD_AUTO_APPROVED = "threshold_auto_approved"
    AUTO_REJECTED = "auto_rejected"
    FLAGGED_FOR_ESCALATION = "flagged_for_escalation"
    LEVEL_APPROVED = "level_approved"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class TransitionOutcome:
    """New request snapshot plus the history record it added, if any."""

    request: ValidationRequest
    event: TransitionEvent
    validation: ValidationRecord | None = None

    @property
    def changed(self) -> bool:
        return self.event != TransitionEvent.UNCHANGED


def _check_transition(current: ValidationStatus, target: ValidationStatus) -> None:
    if target not in VALIDATION_TRANSITIONS[current]:
        raise InvalidValidationTransitionError(current.value, target.value)


def _ensure_open(request: ValidationRequest) -> None:
    if request.is_terminal:
        raise AlreadyFinalizedError(str(request.request_id), request.status.value)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def open_request(
    *,
    request_id: UUID,
    workspace_id: str,
    entity_type: EntityType,
    entity_id: str,
    requester_id: str,
    priority: Priority,
    resolution: ThresholdResolution,
    match: RuleMatch | None,
    now: datetime,
    amount: Decimal | None = None,
    reason: str | None = None,
    attributes: dict[str, Any] | None = None,
    tags: tuple[str, ...] = (),
    validation_id: UUID | None = None,
) -> TransitionOutcome:
    """Build the initial snapshot of a request.

    An ``approve`` or ``reject`` match finalizes the request at once with
    one synthetic rule-engine record.  With no match, an amount below the
    policy's auto-approval threshold finalizes it with one synthetic
    threshold record.  Otherwise, and on an ``escalate`` match, it stays
    pending at level 1; an escalate match is still remembered in
    ``matched_rule_id``.
    """
    request = ValidationRequest(
        request_id=request_id,
        workspace_id=workspace_id,
        entity_type=entity_type,
        entity_id=entity_id,
        requester_id=requester_id,
        priority=priority,
        status=ValidationStatus.PENDING,
        current_level=MIN_AUTHORITY_LEVEL,
        required_level=resolution.required_level,
        min_validator_level=max(MIN_AUTHORITY_LEVEL, resolution.first_validator_level),
        created_at=now,
        updated_at=now,
        level_entered_at=now,
        amount=amount,
        reason=reason,
        attributes=dict(attributes or {}),
        tags=tuple(tags),
        matched_rule_id=match.rule_id if match else None,
        version=1,
    )

    if match is None:
        if resolution.auto_approve and resolution.policy_key:
            return _threshold_auto_approval(request, resolution, now, validation_id)
        return TransitionOutcome(request=request, event=TransitionEvent.OPENED)
    if match.action == RuleAction.ESCALATE:
        return TransitionOutcome(
            request=request, event=TransitionEvent.FLAGGED_FOR_ESCALATION,
        )

    if match.action == RuleAction.APPROVE:
        decision, status, event = (
            Decision.APPROVED, ValidationStatus.AUTO_APPROVED, TransitionEvent.AUTO_APPROVED,
        )
    else:
        decision, status, event = (
            Decision.REJECTED, ValidationStatus.REJECTED, TransitionEvent.AUTO_REJECTED,
        )

    record = ValidationRecord(
        validation_id=validation_id or uuid4(),
        request_id=request_id,
        sequence=1,
        decision=decision,
        level=MIN_AUTHORITY_LEVEL,
        validator=ValidatorIdentity.rule_engine(match.rule_id),
        decided_at=now,
        comment=match.reason,
    )
    finalized = replace(
        request,
        status=status,
        resolved_at=now,
        validations=(record,),
    )
    return TransitionOutcome(request=finalized, event=event, validation=record)


def _threshold_auto_approval(
    request: ValidationRequest,
    resolution: ThresholdResolution,
    now: datetime,
    validation_id: UUID | None,
) -> TransitionOutcome:
    record = ValidationRecord(
        validation_id=validation_id or uuid4(),
        request_id=request.request_id,
        sequence=1,
        decision=Decision.APPROVED,
        level=MIN_AUTHORITY_LEVEL,
        validator=ValidatorIdentity.threshold(resolution.policy_key),  # type: ignore[arg-type]
        decided_at=now,
        comment=f"Amount below auto-approval threshold {resolution.auto_approve_below}",
    )
    finalized = replace(
        request,
        status=ValidationStatus.AUTO_APPROVED,
        resolved_at=now,
        validations=(record,),
    )
    return TransitionOutcome(
        request=finalized, event=TransitionEvent.THRESHOLD_AUTO_APPROVED, validation=record,
    )


# ---------------------------------------------------------------------------
# Human decision
# ---------------------------------------------------------------------------


def apply_decision(
    request: ValidationRequest,
    *,
    validator_id: str,
    validator_level: int,
    decision: Decision,
    now: datetime,
    evidence: DecisionEvidence | None = None,
    expected_level: int | None = None,
    expected_version: int | None = None,
    validation_id: UUID | None = None,
) -> TransitionOutcome:
    """Record one validator's decision and advance the request.

    Reject finalizes.  Approve at the required level finalizes; approve
    below it moves the request up one level and keeps it pending.
    """
    _ensure_open(request)

    if expected_version is not None and expected_version != request.version:
        raise ConcurrentModificationError(
            "ValidationRequest", str(request.request_id), expected_version,
        )
    if expected_level is not None and expected_level != request.current_level:
        raise LevelAlreadyAdvancedError(
            str(request.request_id), expected_level, request.current_level,
        )
    if validator_level < request.min_validator_level:
        raise InsufficientLevelError(
            str(request.request_id), validator_level, request.min_validator_level,
        )

    evidence = evidence or DecisionEvidence()
    geolocation = evidence.geolocation.with_address() if evidence.geolocation else None
    record = ValidationRecord(
        validation_id=validation_id or uuid4(),
        request_id=request.request_id,
        sequence=request.next_sequence,
        decision=decision,
        level=request.current_level,
        validator=ValidatorIdentity.human(validator_id),
        decided_at=now,
        comment=evidence.comment,
        geolocation=geolocation,
        ip_address=evidence.ip_address,
        user_agent=evidence.user_agent,
        signature_ref=evidence.signature_ref,
    )
    history = request.validations + (record,)

    if decision == Decision.REJECTED:
        _check_transition(request.status, ValidationStatus.REJECTED)
        updated = replace(
            request,
            status=ValidationStatus.REJECTED,
            resolved_at=now,
            updated_at=now,
            validations=history,
        )
        return TransitionOutcome(updated, TransitionEvent.REJECTED, record)

    if request.current_level >= request.required_level:
        _check_transition(request.status, ValidationStatus.APPROVED)
        updated = replace(
            request,
            status=ValidationStatus.APPROVED,
            resolved_at=now,
            updated_at=now,
            validations=history,
        )
        return TransitionOutcome(updated, TransitionEvent.APPROVED, record)

    _check_transition(request.status, ValidationStatus.PENDING)
    next_level = request.current_level + 1
    updated = replace(
        request,
        status=ValidationStatus.PENDING,
        current_level=next_level,
        min_validator_level=next_level,
        level_entered_at=now,
        updated_at=now,
        validations=history,
    )
    return TransitionOutcome(updated, TransitionEvent.LEVEL_APPROVED, record)


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


def is_stale(request: ValidationRequest, now: datetime, window_hours: int) -> bool:
    """Pending longer than the window at its current level."""
    if request.status != ValidationStatus.PENDING:
        return False
    return now - request.level_entered_at >= timedelta(hours=window_hours)


def apply_escalation(
    request: ValidationRequest,
    *,
    now: datetime,
    reason: str | None = None,
) -> TransitionOutcome:
    """Raise the minimum acting authority one level above the current minimum.

    The minimum is never below ``current_level``, so a policy that already
    starts above level 1 still shuts out one more level.  Never touches
    ``required_level``.  Already escalated or terminal requests come back
    unchanged.
    """
    if request.status != ValidationStatus.PENDING:
        return TransitionOutcome(request=request, event=TransitionEvent.UNCHANGED)

    _check_transition(request.status, ValidationStatus.ESCALATED)
    updated = replace(
        request,
        status=ValidationStatus.ESCALATED,
        min_validator_level=min(
            max(request.min_validator_level, request.current_level) + 1,
            MAX_AUTHORITY_LEVEL,
        ),
        escalated_at=now,
        escalation_reason=reason,
        updated_at=now,
    )
    return TransitionOutcome(request=updated, event=TransitionEvent.ESCALATED)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


def apply_cancellation(
    request: ValidationRequest,
    *,
    actor_id: str,
    now: datetime,
) -> TransitionOutcome:
    """Withdraw an open request."""
    _ensure_open(request)
    _check_transition(request.status, ValidationStatus.CANCELLED)
    updated = replace(
        request,
        status=ValidationStatus.CANCELLED,
        cancelled_by=actor_id,
        resolved_at=now,
        updated_at=now,
    )
    return TransitionOutcome(request=updated, event=TransitionEvent.CANCELLED)
