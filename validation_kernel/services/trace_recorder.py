"""
TraceRecorder -- append-only persistence of validation records.

Responsibility:
    Writes each ValidationRecord exactly once and reads a request's
    decision history back in insertion order.

Architecture position:
    Kernel > Services -- imperative shell, called by ValidationService.

Invariants enforced:
    - Append-only: records are never updated or removed (the model's ORM
      listeners reject both).
    - History order is ``sequence`` order; UNIQUE(request_id, sequence)
      rejects a second writer for the same step.
    - Optional evidence fields (comment, geolocation, ip, user agent,
      signature) may be absent.

Failure modes:
    - IntegrityError when a record with the same (request_id, sequence)
      already exists.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from validation_kernel.domain.validation import EntityType, ValidationRecord
from validation_kernel.logging_config import get_logger
from validation_kernel.models.validation import (
    ValidationRecordModel,
    ValidationRequestModel,
)

logger = get_logger("services.trace_recorder")


class TraceRecorder:
    """Persists and reads validation records.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def append(self, record: ValidationRecord) -> None:
        """Persist one validation record."""
        self._session.add(ValidationRecordModel.from_dto(record))
        self._session.flush()
        logger.debug(
            "validation_record_appended",
            extra={
                "request_id": str(record.request_id),
                "sequence": record.sequence,
                "decision": record.decision.value,
                "decided_at_level": record.level,
                "validator": record.validator.actor_id,
            },
        )

    def history(self, request_id: UUID) -> list[ValidationRecord]:
        """Every record of one request, in insertion order."""
        models = self._session.execute(
            select(ValidationRecordModel)
            .where(ValidationRecordModel.request_id == request_id)
            .order_by(ValidationRecordModel.sequence)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def history_for_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
    ) -> list[ValidationRecord]:
        """Every record across all requests of one entity.

        Ordered by request creation, then by sequence.
        """
        models = self._session.execute(
            select(ValidationRecordModel)
            .join(
                ValidationRequestModel,
                ValidationRequestModel.request_id == ValidationRecordModel.request_id,
            )
            .where(
                ValidationRequestModel.entity_type == entity_type.value,
                ValidationRequestModel.entity_id == entity_id,
            )
            .order_by(
                ValidationRequestModel.created_at,
                ValidationRequestModel.request_id,
                ValidationRecordModel.sequence,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]
