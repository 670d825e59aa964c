"""
Module: validation_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEvent IS the audit trail.  Every request lifecycle transition and
    every rule or threshold administration action produces an AuditEvent.
    The hash chain makes any retroactive tampering detectable.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from validation_kernel.db.base import Base, UUIDString
from validation_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Every member represents one class of action that MUST be
    recorded in the audit chain.  Adding a new action type requires
    updating AuditorService to produce the corresponding AuditEvent.
    """

    # Validation request lifecycle
    VALIDATION_REQUESTED = "validation_requested"
    VALIDATION_AUTO_APPROVED = "validation_auto_approved"
    VALIDATION_AUTO_REJECTED = "validation_auto_rejected"
    VALIDATION_FLAGGED = "validation_flagged"
    VALIDATION_LEVEL_APPROVED = "validation_level_approved"
    VALIDATION_APPROVED = "validation_approved"
    VALIDATION_REJECTED = "validation_rejected"
    VALIDATION_ESCALATED = "validation_escalated"
    VALIDATION_CANCELLED = "validation_cancelled"

    # Rule administration
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DEACTIVATED = "rule_deactivated"
    RULE_INSTANTIATED = "rule_instantiated"
    RULE_REORDERED = "rule_reordered"

    # Threshold administration
    THRESHOLD_CREATED = "threshold_created"
    THRESHOLD_UPDATED = "threshold_updated"
    THRESHOLD_DELETED = "threshold_deleted"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.
        Each row's hash includes the previous row's hash.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    # Monotonic sequence for ordering
    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        unique=True,
    )

    # Type of entity being audited ("ValidationRequest", "Rule", "ThresholdPolicy")
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    action: Mapped[AuditAction] = mapped_column(
        String(50),
        nullable=False,
    )

    # Validator id, requester id, "rule:<uuid>" or "threshold:<policy key>"
    actor_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    payload_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    # Hash of the previous audit event (null for first event)
    prev_hash: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    # hash = H(entity_type + entity_id + action + payload_hash + prev_hash)
    hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action_value} on {self.entity_type}:{self.entity_id}>"

    @property
    def action_value(self) -> str:
        """Action as stored; rows loaded from the database hold a plain str."""
        return self.action.value if isinstance(self.action, AuditAction) else self.action

    @property
    def is_genesis(self) -> bool:
        """First event in the hash chain."""
        return self.prev_hash is None


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot modify",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        reason="Audit events are append-only -- cannot delete",
    )
