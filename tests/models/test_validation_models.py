"""
ORM model tests for the validation persistence layer.

Tests: ValidationRequestModel, ValidationRecordModel, RuleModel,
ThresholdPolicyModel -- DTO round-trips, typed attribute storage, version
counters, one stored policy per scope, and append-only enforcement.

These are ORM-level tests only.  Service-layer behaviour is tested elsewhere.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, StatementError

from validation_kernel.domain.rules import (
    ConditionOperator,
    FieldType,
    Rule,
    RuleAction,
    RuleCategory,
    RuleCondition,
)
from validation_kernel.domain.thresholds import ThresholdPolicy
from validation_kernel.domain.validation import (
    Decision,
    EntityType,
    Geolocation,
    ValidationRecord,
    ValidatorIdentity,
    ValidatorKind,
)
from validation_kernel.exceptions import ImmutabilityViolationError
from validation_kernel.models.rule import RuleModel
from validation_kernel.models.threshold import ThresholdPolicyModel
from validation_kernel.models.validation import (
    ValidationRecordModel,
    ValidationRequestModel,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_request_model(
    *,
    request_id=None,
    entity_type="expense",
    status="pending",
    current_level=1,
    required_level=2,
    amount=Decimal("3000000"),
    attributes=None,
):
    return ValidationRequestModel(
        request_id=request_id or uuid4(),
        workspace_id="default",
        entity_type=entity_type,
        entity_id="EXP-001",
        requester_id="emp-1",
        priority="medium",
        status=status,
        current_level=current_level,
        required_level=required_level,
        min_validator_level=current_level,
        amount=amount,
        attributes=attributes or {},
        tags=["travel"],
        created_at=T0,
        updated_at=T0,
        level_entered_at=T0,
    )


def _make_record(request_id, *, sequence=1, geolocation=None):
    return ValidationRecord(
        validation_id=uuid4(),
        request_id=request_id,
        sequence=sequence,
        decision=Decision.APPROVED,
        level=1,
        validator=ValidatorIdentity.human("val-1"),
        decided_at=T0 + timedelta(hours=1),
        comment="ok",
        geolocation=geolocation,
        ip_address="10.0.0.1",
    )


@pytest.fixture
def stored_request(session):
    model = _make_request_model()
    session.add(model)
    session.flush()
    return model


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestValidationRequestModel:

    def test_round_trip(self, session, stored_request):
        session.expire_all()
        loaded = session.execute(
            select(ValidationRequestModel)
            .where(ValidationRequestModel.request_id == stored_request.request_id)
        ).scalar_one()

        dto = loaded.to_dto()
        assert dto.amount == Decimal("3000000")
        assert dto.tags == ("travel",)
        assert dto.created_at == T0
        assert dto.created_at.tzinfo is not None
        assert dto.version == 1
        assert dto.validations == ()

    def test_typed_attributes_survive_reload(self, session):
        model = _make_request_model(attributes={
            "overdue_amount": Decimal("12.50"),
            "due_date": date(2026, 1, 31),
            "line_items": [1, 2.5],
            "supplier_id": "SUP-9",
        })
        session.add(model)
        session.flush()
        session.expire_all()

        attributes = session.get(ValidationRequestModel, model.id).attributes
        assert attributes["overdue_amount"] == Decimal("12.50")
        assert attributes["due_date"] == date(2026, 1, 31)
        assert attributes["line_items"] == [1, Decimal("2.5")]
        assert attributes["supplier_id"] == "SUP-9"

    def test_version_increments_on_update(self, session, stored_request):
        stored_request.status = "escalated"
        session.flush()
        assert stored_request.version == 2

    def test_delete_forbidden(self, session, stored_request):
        session.delete(stored_request)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ValidationRequest"
        session.rollback()

    def test_naive_datetime_rejected(self, session):
        model = _make_request_model()
        model.created_at = datetime(2026, 3, 2, 9, 0)
        session.add(model)
        with pytest.raises(StatementError):
            session.flush()
        session.rollback()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TestValidationRecordModel:

    def test_records_load_in_sequence_order(self, session, stored_request):
        rid = stored_request.request_id
        session.add(ValidationRecordModel.from_dto(_make_record(rid, sequence=2)))
        session.add(ValidationRecordModel.from_dto(_make_record(rid, sequence=1)))
        session.flush()
        session.expire(stored_request, ["validations"])

        dto = stored_request.to_dto()
        assert [v.sequence for v in dto.validations] == [1, 2]
        assert dto.validations[0].validator.actor_id == "val-1"

    def test_geolocation_round_trip(self, session, stored_request):
        geo = Geolocation(
            latitude=Decimal("-6.792354"),
            longitude=Decimal("39.208328"),
            address="-6.792354, 39.208328",
        )
        record = _make_record(stored_request.request_id, geolocation=geo)
        session.add(ValidationRecordModel.from_dto(record))
        session.flush()
        session.expire(stored_request, ["validations"])

        (loaded,) = stored_request.to_dto().validations
        assert loaded.geolocation.latitude == geo.latitude
        assert loaded.geolocation.address == geo.address
        assert loaded.ip_address == "10.0.0.1"

    def test_rule_engine_record(self, session, stored_request):
        rule_id = uuid4()
        record = ValidationRecord(
            validation_id=uuid4(),
            request_id=stored_request.request_id,
            sequence=1,
            decision=Decision.APPROVED,
            level=1,
            validator=ValidatorIdentity.rule_engine(rule_id),
            decided_at=T0,
        )
        session.add(ValidationRecordModel.from_dto(record))
        session.flush()
        session.expire(stored_request, ["validations"])

        (loaded,) = stored_request.to_dto().validations
        assert loaded.is_automatic
        assert loaded.validator.rule_id == rule_id

    def test_threshold_record(self, session, stored_request):
        record = ValidationRecord(
            validation_id=uuid4(),
            request_id=stored_request.request_id,
            sequence=1,
            decision=Decision.APPROVED,
            level=1,
            validator=ValidatorIdentity.threshold("default/expense/travel"),
            decided_at=T0,
        )
        session.add(ValidationRecordModel.from_dto(record))
        session.flush()
        session.expire(stored_request, ["validations"])

        (loaded,) = stored_request.to_dto().validations
        assert loaded.validator.kind == ValidatorKind.THRESHOLD
        assert loaded.validator.validator_id == "default/expense/travel"
        assert loaded.validator.rule_id is None
        assert loaded.is_automatic

    def test_update_forbidden(self, session, stored_request):
        model = ValidationRecordModel.from_dto(_make_record(stored_request.request_id))
        session.add(model)
        session.flush()

        model.comment = "changed my mind"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_delete_forbidden(self, session, stored_request):
        model = ValidationRecordModel.from_dto(_make_record(stored_request.request_id))
        session.add(model)
        session.flush()

        session.delete(model)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TestRuleModel:

    def _rule(self):
        return Rule(
            rule_id=uuid4(),
            name="Small advances",
            category=RuleCategory.ADVANCE,
            conditions=(
                RuleCondition(
                    field="amount",
                    field_type=FieldType.NUMBER,
                    operator=ConditionOperator.BETWEEN,
                    value=(Decimal("1"), Decimal("50000")),
                ),
                RuleCondition(
                    field="requested_on",
                    field_type=FieldType.DATE,
                    operator=ConditionOperator.GREATER_THAN,
                    value=date(2026, 1, 1),
                ),
            ),
            action=RuleAction.APPROVE,
            position=1,
            created_at=T0,
            updated_at=T0,
        )

    def test_conditions_round_trip(self, session):
        rule = self._rule()
        model = RuleModel.from_dto(rule)
        session.add(model)
        session.flush()
        session.expire_all()

        loaded = session.get(RuleModel, model.id).to_dto()
        assert loaded.conditions == rule.conditions
        assert loaded.version == 1

    def test_delete_forbidden(self, session):
        model = RuleModel.from_dto(self._rule())
        session.add(model)
        session.flush()

        session.delete(model)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


# ---------------------------------------------------------------------------
# Threshold policies
# ---------------------------------------------------------------------------


class TestThresholdPolicyModel:

    def _policy(self, category=None):
        return ThresholdPolicy(
            entity_type=EntityType.EXPENSE,
            level_thresholds=(Decimal("50000"), Decimal("200000.5"), Decimal("1000000")),
            workspace_id="acme",
            category=category,
            auto_approve_below=Decimal("10000"),
            policy_id=uuid4(),
            created_at=T0,
            updated_at=T0,
        )

    def test_round_trip(self, session):
        policy = self._policy(category="travel")
        model = ThresholdPolicyModel.from_dto(policy)
        session.add(model)
        session.flush()
        session.expire_all()

        loaded = session.get(ThresholdPolicyModel, model.id).to_dto()
        assert loaded.level_thresholds == policy.level_thresholds
        assert loaded.auto_approve_below == Decimal("10000")
        assert loaded.policy_key == "acme/expense/travel"
        assert loaded.version == 1

    def test_version_increments_on_update(self, session):
        model = ThresholdPolicyModel.from_dto(self._policy())
        session.add(model)
        session.flush()

        model.auto_approve_below = Decimal("5000")
        session.flush()
        assert model.version == 2

    def test_one_policy_per_scope(self, session):
        session.add(ThresholdPolicyModel.from_dto(self._policy()))
        session.flush()

        session.add(ThresholdPolicyModel.from_dto(self._policy()))
        with pytest.raises(IntegrityError):
            session.flush()
        session.rollback()

    def test_category_is_a_separate_scope(self, session):
        session.add(ThresholdPolicyModel.from_dto(self._policy()))
        session.add(ThresholdPolicyModel.from_dto(self._policy(category="travel")))
        session.flush()
        assert len(session.execute(select(ThresholdPolicyModel)).scalars().all()) == 2
