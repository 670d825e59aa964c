"""
Tests for TraceRecorder: the append-only decision history.

Covers:
- history() returns one request's records in sequence order
- history_for_entity() spans every request of an entity
- Duplicate sequence numbers are refused by the database
"""

from dataclasses import replace
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from validation_kernel.domain.validation import Decision, EntityType, ValidatorKind
from validation_kernel.services.trace_recorder import TraceRecorder


@pytest.fixture
def recorder(session):
    return TraceRecorder(session)


class TestTraceRecorder:

    def test_history_in_sequence_order(self, validation_service, recorder):
        request = validation_service.create_validation_request(
            "expense", "EXP-1", {}, "emp-1", amount=3000000,
        )
        validation_service.process(request.request_id, "val-1", 1, "approved")
        validation_service.process(request.request_id, "val-2", 2, "rejected", comment="No receipt")

        history = recorder.history(request.request_id)
        assert [r.sequence for r in history] == [1, 2]
        assert [r.decision for r in history] == [Decision.APPROVED, Decision.REJECTED]
        assert history[1].comment == "No receipt"
        assert all(r.validator.kind == ValidatorKind.HUMAN for r in history)

    def test_history_for_entity_spans_requests(
        self, validation_service, recorder, deterministic_clock,
    ):
        first = validation_service.create_validation_request(
            "expense", "EXP-1", {}, "emp-1", amount=100,
        )
        validation_service.process(first.request_id, "val-1", 1, "rejected")
        deterministic_clock.advance(hours=1)
        second = validation_service.create_validation_request(
            "expense", "EXP-1", {}, "emp-1", amount=100,
        )
        validation_service.process(second.request_id, "val-1", 1, "approved")

        history = recorder.history_for_entity(EntityType.EXPENSE, "EXP-1")
        assert [r.request_id for r in history] == [first.request_id, second.request_id]

    def test_duplicate_sequence_refused(self, session, validation_service, recorder):
        request = validation_service.create_validation_request(
            "expense", "EXP-1", {}, "emp-1", amount=3000000,
        )
        updated = validation_service.process(request.request_id, "val-1", 1, "approved")
        (record,) = updated.validations

        with pytest.raises(IntegrityError):
            recorder.append(replace(record, validation_id=uuid4()))
        session.rollback()

    def test_append_logged(self, validation_service, captured_logs):
        request = validation_service.create_validation_request(
            "expense", "EXP-1", {}, "emp-1", amount=100,
        )
        validation_service.process(request.request_id, "val-1", 1, "approved")
        (appended,) = [r for r in captured_logs() if r["message"] == "validation_record_appended"]
        assert appended["decided_at_level"] == 1
        assert appended["validator"] == "val-1"
