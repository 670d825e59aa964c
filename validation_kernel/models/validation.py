"""
Module: validation_kernel.models.validation
Responsibility: ORM persistence for validation requests and their
    append-only history of validation records.

Architecture position: Kernel > Models.  May import from db/ only (domain
    DTO classes are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - Lifecycle: a CHECK constraint limits status values; the service layer
      enforces transition rules via the pure state machine.
    - Level bounds: 1 <= current_level <= required_level <= 4 and
      min_validator_level in 1..4 (CHECK constraints).
    - Optimistic concurrency: ``version`` is the mapper's version_id_col,
      so every UPDATE carries ``WHERE version = :seen`` and a lost race
      raises StaleDataError.
    - History ordering: UNIQUE(request_id, sequence) on validation records.
    - Append-only history: validation records cannot be updated or deleted.

Failure modes:
    - StaleDataError on a concurrent request update.
    - IntegrityError on a duplicate (request_id, sequence).
    - ImmutabilityViolationError on validation record UPDATE/DELETE.

Audit relevance:
    Validation records are the decision trail of every request.  Request
    status changes are additionally recorded in the audit chain by
    AuditorService.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from validation_kernel.db.base import Base, UUIDString
from validation_kernel.db.types import TypedJSON
from validation_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from validation_kernel.domain.validation import (
        ValidationRecord,
        ValidationRequest,
    )


class ValidationRequestModel(Base):
    """Persistent validation request.

    Contract:
        Rows are never deleted.  Terminal statuses (approved, rejected,
        auto_approved, cancelled) are never left once reached.

    Guarantees:
        - required_level is written at creation and never updated by the
          service layer.
        - version increments on every UPDATE.
    """

    __tablename__ = "validation_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'escalated', 'approved', 'rejected', "
            "'auto_approved', 'cancelled')",
            name="ck_validation_requests_valid_status",
        ),
        CheckConstraint(
            "current_level >= 1 AND current_level <= required_level "
            "AND required_level <= 4",
            name="ck_validation_requests_level_bounds",
        ),
        CheckConstraint(
            "min_validator_level >= 1 AND min_validator_level <= 4",
            name="ck_validation_requests_min_level_bounds",
        ),
        # Pending work queue
        Index(
            "ix_validation_requests_queue",
            "workspace_id", "status", "min_validator_level",
        ),
        # Entity history
        Index(
            "ix_validation_requests_entity",
            "entity_type", "entity_id", "created_at",
        ),
        # Escalation sweep
        Index(
            "ix_validation_requests_staleness",
            "status", "level_entered_at",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    workspace_id: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    requester_id: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_level: Mapped[int] = mapped_column(nullable=False)
    required_level: Mapped[int] = mapped_column(nullable=False)
    min_validator_level: Mapped[int] = mapped_column(nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    attributes: Mapped[dict] = mapped_column(TypedJSON, nullable=False, default=dict)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    matched_rule_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    level_entered_at: Mapped[datetime] = mapped_column(nullable=False)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escalation_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    validations: Mapped[list["ValidationRecordModel"]] = relationship(
        "ValidationRecordModel",
        back_populates="request",
        primaryjoin="ValidationRequestModel.request_id == ValidationRecordModel.request_id",
        order_by="ValidationRecordModel.sequence",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ValidationRequest {self.request_id} "
            f"{self.entity_type}/{self.entity_id} "
            f"status={self.status} level={self.current_level}/{self.required_level}>"
        )

    def to_dto(self) -> ValidationRequest:
        """Convert ORM model to frozen domain DTO."""
        from validation_kernel.domain.validation import (
            EntityType,
            Priority,
            ValidationRequest as ValidationRequestDTO,
            ValidationStatus,
        )

        return ValidationRequestDTO(
            request_id=self.request_id,
            workspace_id=self.workspace_id,
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            requester_id=self.requester_id,
            priority=Priority(self.priority),
            status=ValidationStatus(self.status),
            current_level=self.current_level,
            required_level=self.required_level,
            min_validator_level=self.min_validator_level,
            created_at=self.created_at,
            updated_at=self.updated_at,
            level_entered_at=self.level_entered_at,
            amount=self.amount,
            reason=self.reason,
            attributes=dict(self.attributes or {}),
            tags=tuple(self.tags or ()),
            matched_rule_id=self.matched_rule_id,
            escalated_at=self.escalated_at,
            escalation_reason=self.escalation_reason,
            resolved_at=self.resolved_at,
            cancelled_by=self.cancelled_by,
            version=self.version,
            validations=tuple(v.to_dto() for v in self.validations),
        )

    @classmethod
    def from_dto(cls, dto: ValidationRequest) -> ValidationRequestModel:
        """Create ORM model from domain DTO.

        ``version`` is assigned by the mapper on INSERT.  Validation
        records are persisted separately.
        """
        return cls(
            request_id=dto.request_id,
            workspace_id=dto.workspace_id,
            entity_type=dto.entity_type.value,
            entity_id=dto.entity_id,
            requester_id=dto.requester_id,
            priority=dto.priority.value,
            status=dto.status.value,
            current_level=dto.current_level,
            required_level=dto.required_level,
            min_validator_level=dto.min_validator_level,
            amount=dto.amount,
            reason=dto.reason,
            attributes=dict(dto.attributes),
            tags=list(dto.tags),
            matched_rule_id=dto.matched_rule_id,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            level_entered_at=dto.level_entered_at,
            escalated_at=dto.escalated_at,
            escalation_reason=dto.escalation_reason,
            resolved_at=dto.resolved_at,
            cancelled_by=dto.cancelled_by,
        )

    def apply_snapshot(self, dto: ValidationRequest) -> None:
        """Copy the mutable lifecycle fields of a new snapshot onto the row.

        Identity, amount, attributes and required_level are never copied.
        """
        self.status = dto.status.value
        self.current_level = dto.current_level
        self.min_validator_level = dto.min_validator_level
        self.updated_at = dto.updated_at
        self.level_entered_at = dto.level_entered_at
        self.escalated_at = dto.escalated_at
        self.escalation_reason = dto.escalation_reason
        self.resolved_at = dto.resolved_at
        self.cancelled_by = dto.cancelled_by


class ValidationRecordModel(Base):
    """Persistent validation record. Append-only.

    Contract:
        Records are immutable once created -- no UPDATE, no DELETE.

    Guarantees:
        - UNIQUE(request_id, sequence): two writers cannot both append
          the same step.
        - A human record names its validator; a rule-engine record names
          its rule; a threshold record names the policy that applied.
    """

    __tablename__ = "validation_records"

    __table_args__ = (
        Index("ix_validation_records_request_id", "request_id"),
        Index("ix_validation_records_validator", "validator_id", "decided_at"),
        UniqueConstraint(
            "request_id", "sequence",
            name="uq_validation_records_sequence",
        ),
        CheckConstraint(
            "decision IN ('approved', 'rejected')",
            name="ck_validation_records_valid_decision",
        ),
        CheckConstraint(
            "(validator_kind = 'human' AND validator_id IS NOT NULL) OR "
            "(validator_kind = 'rule_engine' AND rule_id IS NOT NULL) OR "
            "(validator_kind = 'threshold' AND validator_id IS NOT NULL)",
            name="ck_validation_records_validator_identity",
        ),
    )

    validation_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("validation_requests.request_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    level: Mapped[int] = mapped_column(nullable=False)
    validator_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    validator_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rule_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime] = mapped_column(nullable=False)
    comment: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    latitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    longitude: Mapped[Decimal | None] = mapped_column(nullable=True)
    accuracy: Mapped[Decimal | None] = mapped_column(nullable=True)
    address: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    signature_ref: Mapped[str | None] = mapped_column(String(512), nullable=True)

    request: Mapped["ValidationRequestModel"] = relationship(
        "ValidationRequestModel",
        back_populates="validations",
        foreign_keys=[request_id],
        primaryjoin="ValidationRecordModel.request_id == ValidationRequestModel.request_id",
    )

    def __repr__(self) -> str:
        return (
            f"<ValidationRecord {self.validation_id} "
            f"request={self.request_id} #{self.sequence} "
            f"decision={self.decision}>"
        )

    def to_dto(self) -> ValidationRecord:
        """Convert ORM model to frozen domain DTO."""
        from validation_kernel.domain.validation import (
            Decision,
            Geolocation,
            ValidationRecord as ValidationRecordDTO,
            ValidatorIdentity,
            ValidatorKind,
        )

        geolocation = None
        if self.latitude is not None and self.longitude is not None:
            geolocation = Geolocation(
                latitude=self.latitude,
                longitude=self.longitude,
                accuracy=self.accuracy,
                address=self.address,
            )

        return ValidationRecordDTO(
            validation_id=self.validation_id,
            request_id=self.request_id,
            sequence=self.sequence,
            decision=Decision(self.decision),
            level=self.level,
            validator=ValidatorIdentity(
                kind=ValidatorKind(self.validator_kind),
                validator_id=self.validator_id,
                rule_id=self.rule_id,
            ),
            decided_at=self.decided_at,
            comment=self.comment,
            geolocation=geolocation,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            signature_ref=self.signature_ref,
        )

    @classmethod
    def from_dto(cls, dto: ValidationRecord) -> ValidationRecordModel:
        """Create ORM model from domain DTO."""
        geo = dto.geolocation
        return cls(
            validation_id=dto.validation_id,
            request_id=dto.request_id,
            sequence=dto.sequence,
            decision=dto.decision.value,
            level=dto.level,
            validator_kind=dto.validator.kind.value,
            validator_id=dto.validator.validator_id,
            rule_id=dto.validator.rule_id,
            decided_at=dto.decided_at,
            comment=dto.comment,
            latitude=geo.latitude if geo else None,
            longitude=geo.longitude if geo else None,
            accuracy=geo.accuracy if geo else None,
            address=geo.address if geo else None,
            ip_address=dto.ip_address,
            user_agent=dto.user_agent,
            signature_ref=dto.signature_ref,
        )


# =============================================================================
# ORM-Level Immutability for Validation Records (Append-Only)
# =============================================================================


@event.listens_for(ValidationRecordModel, "before_update")
def prevent_record_update(mapper, connection, target):
    """Prevent updates to validation records."""
    raise ImmutabilityViolationError(
        entity_type="ValidationRecord",
        entity_id=str(target.validation_id),
        reason="Validation records are immutable -- cannot modify",
    )


@event.listens_for(ValidationRecordModel, "before_delete")
def prevent_record_delete(mapper, connection, target):
    """Prevent deletion of validation records."""
    raise ImmutabilityViolationError(
        entity_type="ValidationRecord",
        entity_id=str(target.validation_id),
        reason="Validation records are immutable -- cannot delete",
    )


@event.listens_for(ValidationRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Requests are withdrawn by cancellation, never deleted."""
    raise ImmutabilityViolationError(
        entity_type="ValidationRequest",
        entity_id=str(target.request_id),
        reason="Validation requests are never deleted -- cancel instead",
    )
