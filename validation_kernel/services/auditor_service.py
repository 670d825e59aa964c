"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every validation
    request transition and every rule or threshold administration action.
    Provides chain validation for tamper detection and trace queries for
    review.

Architecture position:
    Kernel > Services -- imperative shell, called by ValidationService,
    RuleService and ThresholdService.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Audit chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.  Every audit event carries a
      cryptographic link to its predecessor.
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).

Failure modes:
    - AuditChainBrokenError: a stored hash or payload hash does not match
      its recomputed value, or prev_hash does not match the predecessor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from validation_kernel.domain.clock import Clock, SystemClock
from validation_kernel.domain.rules import Rule, RuleMatch
from validation_kernel.domain.thresholds import ThresholdPolicy, ThresholdResolution
from validation_kernel.domain.validation import ValidationRecord, ValidationRequest
from validation_kernel.exceptions import AuditChainBrokenError
from validation_kernel.logging_config import get_logger
from validation_kernel.models.audit_event import AuditAction, AuditEvent
from validation_kernel.services.sequence_service import SequenceService
from validation_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")

REQUEST_ENTITY = "ValidationRequest"
RULE_ENTITY = "Rule"
THRESHOLD_ENTITY = "ThresholdPolicy"


def _amount(value: Decimal | None) -> str | None:
    # Stored JSON must hash the same after a reload; no exponent notation.
    return None if value is None else format(value.normalize(), "f")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: str
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events of one entity, in chronological order."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)

    @property
    def first_action(self) -> AuditAction | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(entity_type, entity_id, action, payload_hash, prev_hash)``.
        - Sequence numbers come from SequenceService.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Public callers use the domain-specific ``record_*`` methods.
        Payload values must be JSON scalars, lists or dicts so the stored
        payload hashes the same after a reload.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Validation request lifecycle

    def record_request_created(
        self,
        request: ValidationRequest,
        policy_key: str | None,
        policy_version: int | None = None,
    ) -> AuditEvent:
        """Record a new request with its stamped authority requirements."""
        return self._create_audit_event(
            entity_type=REQUEST_ENTITY,
            entity_id=request.request_id,
            action=AuditAction.VALIDATION_REQUESTED,
            actor_id=request.requester_id,
            payload={
                "workspace_id": request.workspace_id,
                "entity_type": request.entity_type.value,
                "entity_id": request.entity_id,
                "priority": request.priority.value,
                "amount": _amount(request.amount),
                "required_level": request.required_level,
                "min_validator_level": request.min_validator_level,
                "threshold_policy": policy_key,
                "threshold_policy_version": policy_version,
            },
        )

    def record_threshold_auto_approval(
        self,
        request: ValidationRequest,
        resolution: ThresholdResolution,
    ) -> AuditEvent:
        """Record that a new request fell below its auto-approval amount."""
        return self._create_audit_event(
            entity_type=REQUEST_ENTITY,
            entity_id=request.request_id,
            action=AuditAction.VALIDATION_AUTO_APPROVED,
            actor_id=f"threshold:{resolution.policy_key}",
            payload={
                "threshold_policy": resolution.policy_key,
                "auto_approve_below": _amount(resolution.auto_approve_below),
                "amount": _amount(request.amount),
                "status": request.status.value,
            },
        )

    def record_rule_outcome(
        self,
        request: ValidationRequest,
        action: AuditAction,
        match: RuleMatch,
    ) -> AuditEvent:
        """Record that a rule auto-decided or flagged a new request."""
        return self._create_audit_event(
            entity_type=REQUEST_ENTITY,
            entity_id=request.request_id,
            action=action,
            actor_id=f"rule:{match.rule_id}",
            payload={
                "rule_id": str(match.rule_id),
                "rule_name": match.rule_name,
                "rule_action": match.action.value,
                "reason": match.reason,
                "status": request.status.value,
            },
        )

    def record_decision(
        self,
        request: ValidationRequest,
        record: ValidationRecord,
        action: AuditAction,
    ) -> AuditEvent:
        """Record a human decision and where it left the request."""
        return self._create_audit_event(
            entity_type=REQUEST_ENTITY,
            entity_id=request.request_id,
            action=action,
            actor_id=record.validator.actor_id,
            payload={
                "validation_id": str(record.validation_id),
                "sequence": record.sequence,
                "decision": record.decision.value,
                "level": record.level,
                "status": request.status.value,
                "current_level": request.current_level,
                "required_level": request.required_level,
            },
        )

    def record_escalation(
        self,
        request: ValidationRequest,
        actor_id: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=REQUEST_ENTITY,
            entity_id=request.request_id,
            action=AuditAction.VALIDATION_ESCALATED,
            actor_id=actor_id,
            payload={
                "reason": request.escalation_reason,
                "current_level": request.current_level,
                "min_validator_level": request.min_validator_level,
                "required_level": request.required_level,
            },
        )

    def record_cancellation(self, request: ValidationRequest) -> AuditEvent:
        return self._create_audit_event(
            entity_type=REQUEST_ENTITY,
            entity_id=request.request_id,
            action=AuditAction.VALIDATION_CANCELLED,
            actor_id=request.cancelled_by or request.requester_id,
            payload={
                "current_level": request.current_level,
                "validations": len(request.validations),
            },
        )

    # Rule administration

    def record_rule_change(
        self,
        rule: Rule,
        action: AuditAction,
        actor_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Record a rule creation, update, deactivation, instantiation or move."""
        payload: dict[str, Any] = {
            "name": rule.name,
            "category": rule.category.value,
            "action": rule.action.value,
            "position": rule.position,
            "is_active": rule.is_active,
            "conditions": [c.describe() for c in rule.conditions],
        }
        if details:
            payload.update(details)
        return self._create_audit_event(
            entity_type=RULE_ENTITY,
            entity_id=rule.rule_id,
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    # Threshold administration

    def record_threshold_change(
        self,
        policy: ThresholdPolicy,
        action: AuditAction,
        actor_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        payload: dict[str, Any] = {
            "policy_key": policy.policy_key,
            "entity_type": policy.entity_type.value,
            "category": policy.category,
            "level_thresholds": [_amount(t) for t in policy.level_thresholds],
            "levels_without_amount": policy.levels_without_amount,
            "first_validator_level": policy.first_validator_level,
            "auto_approve_below": _amount(policy.auto_approve_below),
            "version": policy.version,
        }
        if details:
            payload.update(details)
        return self._create_audit_event(
            entity_type=THRESHOLD_ENTITY,
            entity_id=policy.policy_id,  # type: ignore[arg-type]
            action=action,
            actor_id=actor_id,
            payload=payload,
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(
                str(events[0].id),
                "None",
                events[0].prev_hash,
            )

        for i, event in enumerate(events):
            stored_payload_hash = hash_payload(event.payload or {})
            if stored_payload_hash != event.payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    event.payload_hash,
                    stored_payload_hash,
                )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action_value,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    expected_hash,
                    event.hash,
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id),
                        expected_prev,
                        event.prev_hash or "None",
                    )

        logger.info(
            "audit_chain_valid",
            extra={"event_count": len(events)},
        )
        return True

    def get_trace(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> AuditTrace:
        """All audit events of an entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                action=AuditAction(event.action_value),
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in events
        )

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=entries,
        )
