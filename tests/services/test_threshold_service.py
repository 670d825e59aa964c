"""
Tests for ThresholdService and stored threshold policies at request creation.

Covers:
- create_policy(): versioned storage, one policy per scope, blank category,
  every consistency error reported, audit trail
- update_policy(): partial edits, version guard, auto-approval amount kept
  below the first tier
- get_or_create_default(), clone_to_category(), delete_policy()
- validate_workspace_policies()
- Request creation: stored policy over configured default, category scope,
  levels of open requests untouched by an edit, threshold auto-approval
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from tests.conftest import START_TIME, TEST_ACTOR_ID, make_policy
from validation_kernel.domain.validation import (
    Decision,
    EntityType,
    ValidationStatus,
    ValidatorKind,
)
from validation_kernel.exceptions import (
    AlreadyFinalizedError,
    ConcurrentModificationError,
    InvalidThresholdPolicyError,
    ThresholdPolicyExistsError,
    ThresholdPolicyNotFoundError,
)
from validation_kernel.models.audit_event import AuditAction
from validation_kernel.models.threshold import ThresholdPolicyModel
from validation_kernel.services.auditor_service import REQUEST_ENTITY, THRESHOLD_ENTITY


def _acme_expense(service, thresholds=(100_000, 500_000, 2_000_000), **kwargs):
    kwargs.setdefault("workspace_id", "acme")
    return service.create_policy(
        make_policy("expense", thresholds, **kwargs),
        actor_id=TEST_ACTOR_ID,
    )


def _expense(service, amount, workspace_id="acme", **kwargs):
    return service.create_validation_request(
        "expense",
        "EXP-001",
        {},
        "emp-1",
        amount=Decimal(amount),
        workspace_id=workspace_id,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


class TestCreatePolicy:

    def test_create_stores_versioned_policy(self, threshold_service):
        created = _acme_expense(threshold_service, auto_approve_below=Decimal("10000"))

        assert created.policy_id is not None
        assert created.version == 1
        assert created.policy_key == "acme/expense"
        assert created.auto_approve_below == Decimal("10000")
        assert created.created_by == TEST_ACTOR_ID
        assert created.created_at == START_TIME
        assert threshold_service.list_policies("acme") == [created]
        assert threshold_service.get_policy(created.policy_id) == created

    def test_duplicate_scope_rejected(self, threshold_service):
        _acme_expense(threshold_service)
        with pytest.raises(ThresholdPolicyExistsError) as exc_info:
            _acme_expense(threshold_service, thresholds=(1, 2, 3))
        assert exc_info.value.policy_key == "acme/expense"

    def test_blank_category_means_whole_workspace(self, threshold_service):
        created = _acme_expense(threshold_service, category="  ")
        assert created.category is None
        with pytest.raises(ThresholdPolicyExistsError):
            _acme_expense(threshold_service)

    def test_every_problem_reported(self, threshold_service):
        with pytest.raises(InvalidThresholdPolicyError) as exc_info:
            _acme_expense(
                threshold_service,
                thresholds=(100, 50, 200),
                auto_approve_below=Decimal("500"),
            )
        errors = exc_info.value.errors
        assert any("strictly increasing" in e for e in errors)
        assert any("below the level 1 threshold" in e for e in errors)
        assert threshold_service.list_policies("acme") == []

    def test_auto_approval_equal_to_first_tier_rejected(self, threshold_service):
        with pytest.raises(InvalidThresholdPolicyError):
            _acme_expense(threshold_service, auto_approve_below=Decimal("100000"))

    def test_creation_audited(self, threshold_service, auditor_service):
        created = _acme_expense(threshold_service, category="travel")
        trace = auditor_service.get_trace(THRESHOLD_ENTITY, created.policy_id)
        assert trace.actions == (AuditAction.THRESHOLD_CREATED,)
        assert trace.entries[0].actor_id == TEST_ACTOR_ID
        assert trace.entries[0].payload["policy_key"] == "acme/expense/travel"
        assert trace.entries[0].payload["level_thresholds"] == ["100000", "500000", "2000000"]


class TestUpdatePolicy:

    def test_partial_update_bumps_version(self, threshold_service, auditor_service):
        created = _acme_expense(threshold_service)
        updated = threshold_service.update_policy(
            created.policy_id, auto_approve_below=Decimal("5000"), actor_id=TEST_ACTOR_ID,
        )

        assert updated.version == 2
        assert updated.auto_approve_below == Decimal("5000")
        assert updated.level_thresholds == created.level_thresholds
        trace = auditor_service.get_trace(THRESHOLD_ENTITY, created.policy_id)
        assert trace.actions == (AuditAction.THRESHOLD_CREATED, AuditAction.THRESHOLD_UPDATED)
        assert trace.entries[-1].payload["previous_version"] == 1

    def test_stale_version_refused(self, threshold_service):
        created = _acme_expense(threshold_service)
        threshold_service.update_policy(created.policy_id, description="first")
        with pytest.raises(ConcurrentModificationError):
            threshold_service.update_policy(
                created.policy_id, description="second", expected_version=1,
            )

    def test_auto_approval_checked_against_new_tiers(self, threshold_service):
        created = _acme_expense(threshold_service, auto_approve_below=Decimal("10000"))
        with pytest.raises(InvalidThresholdPolicyError):
            threshold_service.update_policy(
                created.policy_id,
                level_thresholds=(Decimal("5000"), Decimal("50000"), Decimal("500000")),
            )
        assert threshold_service.get_policy(created.policy_id).version == 1

    def test_unknown_policy(self, threshold_service):
        created = _acme_expense(threshold_service)
        threshold_service.delete_policy(created.policy_id)
        with pytest.raises(ThresholdPolicyNotFoundError):
            threshold_service.update_policy(created.policy_id, description="gone")


class TestDefaultsAndClones:

    def test_default_copied_into_workspace(self, threshold_service):
        policy = threshold_service.get_or_create_default("acme", "expense")
        assert policy.workspace_id == "acme"
        assert policy.level_thresholds == (
            Decimal("1000000"), Decimal("5000000"), Decimal("20000000"),
        )
        again = threshold_service.get_or_create_default("acme", EntityType.EXPENSE)
        assert again.policy_id == policy.policy_id

    def test_no_configured_default(self, threshold_service):
        with pytest.raises(ThresholdPolicyNotFoundError):
            threshold_service.get_or_create_default("acme", "leave")

    def test_clone_to_category(self, threshold_service):
        source = _acme_expense(threshold_service, auto_approve_below=Decimal("10000"))
        clone = threshold_service.clone_to_category(source.policy_id, "travel")

        assert clone.policy_id != source.policy_id
        assert clone.category == "travel"
        assert clone.level_thresholds == source.level_thresholds
        assert clone.auto_approve_below == source.auto_approve_below
        assert [p.policy_key for p in threshold_service.list_policies("acme")] == [
            "acme/expense", "acme/expense/travel",
        ]
        with pytest.raises(ThresholdPolicyExistsError):
            threshold_service.clone_to_category(source.policy_id, "travel")

    def test_clone_needs_a_category(self, threshold_service):
        source = _acme_expense(threshold_service)
        with pytest.raises(InvalidThresholdPolicyError):
            threshold_service.clone_to_category(source.policy_id, " ")

    def test_delete_falls_back_to_configured_policy(self, threshold_service, auditor_service):
        created = _acme_expense(threshold_service)
        threshold_service.delete_policy(created.policy_id, actor_id=TEST_ACTOR_ID)

        assert threshold_service.find_policy("acme", "expense") is None
        effective = threshold_service.effective_policy("acme", "expense")
        assert effective.policy_key == "*/expense"
        trace = auditor_service.get_trace(THRESHOLD_ENTITY, created.policy_id)
        assert trace.last_action == AuditAction.THRESHOLD_DELETED


class TestWorkspaceValidation:

    def test_valid_workspace(self, threshold_service):
        source = _acme_expense(threshold_service)
        threshold_service.clone_to_category(source.policy_id, "travel")
        check = threshold_service.validate_workspace_policies("acme")
        assert check.valid
        assert check.checked == 2

    def test_row_edited_outside_the_service_reported(self, threshold_service, session):
        _acme_expense(threshold_service)
        model = session.execute(select(ThresholdPolicyModel)).scalar_one()
        model.level_2_threshold = Decimal("1")
        session.flush()

        check = threshold_service.validate_workspace_policies("acme")
        assert not check.valid
        assert any("strictly increasing" in e for e in check.errors)
        assert threshold_service.validate_workspace_policies("other").valid


# ---------------------------------------------------------------------------
# Request creation
# ---------------------------------------------------------------------------


class TestRequestsUseStoredPolicies:

    def test_stored_policy_overrides_configured_default(
        self, threshold_service, validation_service,
    ):
        _acme_expense(threshold_service, thresholds=(10, 20, 30))
        assert _expense(validation_service, "25").required_level == 3
        assert _expense(validation_service, "25", workspace_id="default").required_level == 1

    def test_category_policy_only_for_its_category(
        self, threshold_service, validation_service, auditor_service,
    ):
        _acme_expense(threshold_service, thresholds=(10, 20, 30), category="travel")

        travel = _expense(validation_service, "25", category="travel")
        meals = _expense(validation_service, "25", category="meals")
        assert travel.required_level == 3
        assert meals.required_level == 1
        trace = auditor_service.get_trace(REQUEST_ENTITY, travel.request_id)
        assert trace.entries[0].payload["threshold_policy"] == "acme/expense/travel"

    def test_edit_leaves_open_requests_unchanged(
        self, threshold_service, validation_service, auditor_service,
    ):
        policy = _acme_expense(threshold_service, thresholds=(100, 200, 300))
        before = _expense(validation_service, "250")
        assert before.required_level == 3

        threshold_service.update_policy(
            policy.policy_id,
            level_thresholds=(Decimal("1000"), Decimal("2000"), Decimal("3000")),
        )

        reloaded = validation_service.get_request(before.request_id)
        assert reloaded.status == ValidationStatus.PENDING
        assert reloaded.required_level == 3
        after = _expense(validation_service, "250")
        assert after.required_level == 1

        versions = [
            auditor_service.get_trace(REQUEST_ENTITY, r.request_id)
            .entries[0].payload["threshold_policy_version"]
            for r in (before, after)
        ]
        assert versions == [1, 2]

        # The old request still walks all three levels.
        request = validation_service.process(before.request_id, "val-1", 1, Decision.APPROVED)
        assert request.status == ValidationStatus.PENDING
        assert request.current_level == 2


class TestThresholdAutoApproval:

    def test_amount_below_threshold_auto_approved(
        self, threshold_service, validation_service, auditor_service,
    ):
        _acme_expense(threshold_service, thresholds=(1000, 2000, 3000), auto_approve_below=Decimal("100"))
        request = _expense(validation_service, "50")

        assert request.status == ValidationStatus.AUTO_APPROVED
        assert request.resolved_at == START_TIME
        (record,) = request.validations
        assert record.validator.kind == ValidatorKind.THRESHOLD
        assert record.validator.validator_id == "acme/expense"
        assert record.decision == Decision.APPROVED

        trace = auditor_service.get_trace(REQUEST_ENTITY, request.request_id)
        assert trace.actions == (
            AuditAction.VALIDATION_REQUESTED,
            AuditAction.VALIDATION_AUTO_APPROVED,
        )
        assert trace.entries[-1].actor_id == "threshold:acme/expense"
        assert trace.entries[-1].payload["auto_approve_below"] == "100"

        with pytest.raises(AlreadyFinalizedError):
            validation_service.process(request.request_id, "val-1", 4, Decision.REJECTED)

    def test_threshold_itself_needs_a_validator(self, threshold_service, validation_service):
        _acme_expense(threshold_service, thresholds=(1000, 2000, 3000), auto_approve_below=Decimal("100"))
        assert _expense(validation_service, "100").status == ValidationStatus.PENDING

    def test_rule_match_takes_precedence(
        self, threshold_service, validation_service, make_rule,
    ):
        _acme_expense(threshold_service, thresholds=(1000, 2000, 3000), auto_approve_below=Decimal("100"))
        rule = make_rule("Flag everything", "expense", "escalate", ("amount", "greater_than", 0))

        request = _expense(validation_service, "50")
        assert request.status == ValidationStatus.PENDING
        assert request.matched_rule_id == rule.rule_id
        assert request.validations == ()

    def test_auto_approval_logged(self, threshold_service, validation_service, captured_logs):
        _acme_expense(threshold_service, thresholds=(1000, 2000, 3000), auto_approve_below=Decimal("100"))
        request = _expense(validation_service, "50")

        (created,) = [r for r in captured_logs() if r["message"] == "validation_request_created"]
        assert created["request_id"] == str(request.request_id)
        assert created["transition"] == "threshold_auto_approved"
        assert created["auto_approve_below"] == "100"
