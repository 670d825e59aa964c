"""
Tests for the pure validation request state machine.

Covers:
- open_request(): no match, approve / reject / escalate matches, threshold
  auto-approval only when no rule matched
- apply_decision(): level advance, final approval, rejection, terminal
  guard, authority guard, expected level / version guards, evidence
- apply_escalation(): raises min_validator_level only, no-op when
  already escalated or terminal, ceiling at the owner level
- apply_cancellation(): terminal guard
- is_stale(): window boundary
- Invariants under hypothesis-generated decision sequences
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from validation_engines.state_machine import (
    TransitionEvent,
    apply_cancellation,
    apply_decision,
    apply_escalation,
    is_stale,
    open_request,
)
from validation_kernel.domain.rules import RuleAction, RuleMatch
from validation_kernel.domain.thresholds import ThresholdResolution
from validation_kernel.domain.validation import (
    Decision,
    DecisionEvidence,
    EntityType,
    Geolocation,
    Priority,
    ValidationStatus,
    ValidatorKind,
)
from validation_kernel.exceptions import (
    AlreadyFinalizedError,
    ConcurrentModificationError,
    InsufficientLevelError,
    LevelAlreadyAdvancedError,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
AUTO = ThresholdResolution(
    1, 1, "*/expense", auto_approve=True, auto_approve_below=Decimal("10000"),
)


def open_(required_level=2, first_validator_level=1, match=None, resolution=None, **kwargs):
    return open_request(
        request_id=uuid4(),
        workspace_id="default",
        entity_type=EntityType.EXPENSE,
        entity_id="EXP-1",
        requester_id="emp-1",
        priority=Priority.MEDIUM,
        resolution=resolution or ThresholdResolution(
            required_level, first_validator_level, "*/expense",
        ),
        match=match,
        now=T0,
        amount=Decimal("3000000"),
        **kwargs,
    )


def decide(request, level, decision=Decision.APPROVED, validator="val-1", **kwargs):
    return apply_decision(
        request,
        validator_id=validator,
        validator_level=level,
        decision=decision,
        now=T0 + timedelta(hours=1),
        **kwargs,
    )


def match(action):
    return RuleMatch(action=action, rule_id=uuid4(), rule_name="r", reason="because")


# ---------------------------------------------------------------------------
# Opening
# ---------------------------------------------------------------------------


class TestOpenRequest:

    def test_no_match_opens_pending_at_level_one(self):
        outcome = open_(required_level=3)
        request = outcome.request
        assert outcome.event == TransitionEvent.OPENED
        assert outcome.validation is None
        assert request.status == ValidationStatus.PENDING
        assert request.current_level == 1
        assert request.required_level == 3
        assert request.min_validator_level == 1
        assert request.level_entered_at == T0

    def test_first_validator_level_sets_minimum_authority(self):
        assert open_(required_level=3, first_validator_level=2).request.min_validator_level == 2

    def test_approve_match_auto_approves_with_one_synthetic_record(self):
        m = match(RuleAction.APPROVE)
        outcome = open_(match=m)
        request = outcome.request
        assert outcome.event == TransitionEvent.AUTO_APPROVED
        assert request.status == ValidationStatus.AUTO_APPROVED
        assert request.is_terminal
        assert request.matched_rule_id == m.rule_id
        assert request.resolved_at == T0
        (record,) = request.validations
        assert record is outcome.validation
        assert record.validator.kind == ValidatorKind.RULE_ENGINE
        assert record.validator.rule_id == m.rule_id
        assert record.decision == Decision.APPROVED
        assert record.level == 1
        assert record.sequence == 1
        assert record.comment == "because"

    def test_reject_match_rejects(self):
        outcome = open_(match=match(RuleAction.REJECT))
        assert outcome.event == TransitionEvent.AUTO_REJECTED
        assert outcome.request.status == ValidationStatus.REJECTED
        assert outcome.validation.decision == Decision.REJECTED

    def test_escalate_match_stays_pending_and_remembers_rule(self):
        m = match(RuleAction.ESCALATE)
        outcome = open_(match=m)
        assert outcome.event == TransitionEvent.FLAGGED_FOR_ESCALATION
        assert outcome.request.status == ValidationStatus.PENDING
        assert outcome.request.matched_rule_id == m.rule_id
        assert outcome.validation is None

    def test_below_auto_approval_threshold_approves_with_threshold_record(self):
        outcome = open_(resolution=AUTO)
        request = outcome.request
        assert outcome.event == TransitionEvent.THRESHOLD_AUTO_APPROVED
        assert request.status == ValidationStatus.AUTO_APPROVED
        assert request.resolved_at == T0
        assert request.matched_rule_id is None
        (record,) = request.validations
        assert record is outcome.validation
        assert record.validator.kind == ValidatorKind.THRESHOLD
        assert record.validator.validator_id == "*/expense"
        assert record.validator.actor_id == "threshold:*/expense"
        assert record.decision == Decision.APPROVED
        assert record.level == 1
        assert record.is_automatic
        assert "10000" in record.comment

    def test_rule_match_takes_precedence_over_threshold(self):
        outcome = open_(resolution=AUTO, match=match(RuleAction.REJECT))
        assert outcome.event == TransitionEvent.AUTO_REJECTED
        assert outcome.validation.validator.kind == ValidatorKind.RULE_ENGINE

    def test_escalate_match_blocks_threshold_approval(self):
        outcome = open_(resolution=AUTO, match=match(RuleAction.ESCALATE))
        assert outcome.event == TransitionEvent.FLAGGED_FOR_ESCALATION
        assert outcome.request.status == ValidationStatus.PENDING


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class TestApplyDecision:

    def test_approval_below_required_level_advances(self):
        request = open_(required_level=2).request
        outcome = decide(request, 1)
        updated = outcome.request
        assert outcome.event == TransitionEvent.LEVEL_APPROVED
        assert updated.status == ValidationStatus.PENDING
        assert updated.current_level == 2
        assert updated.min_validator_level == 2
        assert updated.level_entered_at == T0 + timedelta(hours=1)
        assert updated.required_level == 2
        assert outcome.validation.level == 1

    def test_approval_at_required_level_finalizes(self):
        request = decide(open_(required_level=2).request, 1).request
        outcome = decide(request, 2, validator="val-2")
        assert outcome.event == TransitionEvent.APPROVED
        assert outcome.request.status == ValidationStatus.APPROVED
        assert outcome.request.resolved_at is not None
        assert [v.sequence for v in outcome.request.validations] == [1, 2]
        assert len(outcome.request.approvals) == 2

    def test_higher_authority_may_act_at_lower_level(self):
        outcome = decide(open_(required_level=1).request, 4)
        assert outcome.request.status == ValidationStatus.APPROVED
        assert outcome.validation.level == 1

    def test_rejection_is_final(self):
        outcome = decide(open_().request, 1, Decision.REJECTED)
        assert outcome.event == TransitionEvent.REJECTED
        assert outcome.request.status == ValidationStatus.REJECTED
        with pytest.raises(AlreadyFinalizedError) as exc_info:
            decide(outcome.request, 2)
        assert exc_info.value.status == "rejected"

    def test_insufficient_level_rejected(self):
        request = decide(open_(required_level=3).request, 1).request
        with pytest.raises(InsufficientLevelError) as exc_info:
            decide(request, 1)
        assert exc_info.value.required_level == 2

    def test_expected_level_guard(self):
        request = decide(open_(required_level=3).request, 1).request
        with pytest.raises(LevelAlreadyAdvancedError) as exc_info:
            decide(request, 3, expected_level=1)
        assert exc_info.value.current_level == 2

    def test_expected_version_guard(self):
        request = open_().request
        with pytest.raises(ConcurrentModificationError):
            decide(request, 1, expected_version=request.version + 1)

    def test_finalized_checked_before_authority(self):
        request = decide(open_(required_level=1).request, 1).request
        with pytest.raises(AlreadyFinalizedError):
            decide(request, 0)

    def test_evidence_recorded_and_address_filled(self):
        evidence = DecisionEvidence(
            comment="ok",
            geolocation=Geolocation(Decimal("48.8566"), Decimal("2.3522")),
            ip_address="10.0.0.1",
            user_agent="pytest",
            signature_ref="sig-1",
        )
        record = decide(open_().request, 1, evidence=evidence).validation
        assert record.comment == "ok"
        assert record.geolocation.address == "48.856600, 2.352200"
        assert record.ip_address == "10.0.0.1"
        assert record.signature_ref == "sig-1"
        assert record.validator.kind == ValidatorKind.HUMAN
        assert record.validator.validator_id == "val-1"


# ---------------------------------------------------------------------------
# Escalation and cancellation
# ---------------------------------------------------------------------------


class TestEscalation:

    def test_escalation_raises_minimum_authority_only(self):
        request = open_(required_level=3).request
        outcome = apply_escalation(request, now=T0, reason="stale")
        escalated = outcome.request
        assert outcome.event == TransitionEvent.ESCALATED
        assert escalated.status == ValidationStatus.ESCALATED
        assert escalated.min_validator_level == 2
        assert escalated.current_level == 1
        assert escalated.required_level == 3
        assert escalated.escalation_reason == "stale"

    def test_escalation_counts_from_first_validator_level(self):
        request = open_(required_level=3, first_validator_level=2).request
        escalated = apply_escalation(request, now=T0).request
        assert escalated.min_validator_level == 3
        assert escalated.current_level == 1

    def test_escalation_may_pass_required_level(self):
        escalated = apply_escalation(open_(required_level=1).request, now=T0).request
        assert escalated.min_validator_level == 2
        assert escalated.required_level == 1

    def test_escalation_capped_at_owner(self):
        request = open_(required_level=4).request
        for level in (1, 2, 3):
            request = decide(request, level).request
        assert apply_escalation(request, now=T0).request.min_validator_level == 4

    def test_second_escalation_is_noop(self):
        escalated = apply_escalation(open_().request, now=T0).request
        outcome = apply_escalation(escalated, now=T0)
        assert not outcome.changed
        assert outcome.request is escalated

    def test_terminal_request_escalation_is_noop(self):
        request = decide(open_(required_level=1).request, 1).request
        assert not apply_escalation(request, now=T0).changed

    def test_escalated_request_returns_to_pending_on_level_approval(self):
        escalated = apply_escalation(open_(required_level=3).request, now=T0).request
        with pytest.raises(InsufficientLevelError):
            decide(escalated, 1)
        advanced = decide(escalated, 2).request
        assert advanced.status == ValidationStatus.PENDING
        assert advanced.current_level == 2

    def test_is_stale_window_boundary(self):
        request = open_().request
        assert not is_stale(request, T0 + timedelta(hours=47, minutes=59), 48)
        assert is_stale(request, T0 + timedelta(hours=48), 48)
        escalated = apply_escalation(request, now=T0).request
        assert not is_stale(escalated, T0 + timedelta(days=10), 48)


class TestCancellation:

    def test_cancel_open_request(self):
        outcome = apply_cancellation(open_().request, actor_id="emp-1", now=T0)
        assert outcome.event == TransitionEvent.CANCELLED
        assert outcome.request.status == ValidationStatus.CANCELLED
        assert outcome.request.cancelled_by == "emp-1"

    def test_cancel_terminal_request_rejected(self):
        request = decide(open_(required_level=1).request, 1).request
        with pytest.raises(AlreadyFinalizedError):
            apply_cancellation(request, actor_id="emp-1", now=T0)


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


class TestInvariants:

    @given(
        required=st.integers(min_value=1, max_value=4),
        steps=st.lists(
            st.tuples(
                st.integers(min_value=1, max_value=4),
                st.sampled_from(list(Decision)),
            ),
            max_size=8,
        ),
    )
    def test_decision_sequences_keep_invariants(self, required, steps):
        request = open_(required_level=required).request
        for level, decision in steps:
            before = request
            try:
                request = decide(before, level, decision).request
            except (AlreadyFinalizedError, InsufficientLevelError):
                assert request is before
                continue
            assert request.required_level == required
            assert request.current_level <= required
            assert len(request.validations) == len(before.validations) + 1
            assert request.validations[:-1] == before.validations

        if request.status == ValidationStatus.APPROVED:
            approved = [
                v for v in request.validations
                if v.decision == Decision.APPROVED and v.level <= required
            ]
            assert len(approved) == request.current_level
        if request.status == ValidationStatus.REJECTED:
            assert request.validations[-1].decision == Decision.REJECTED
