"""
Validation domain types (``validation_kernel.domain.validation``).

Responsibility
--------------
Pure value objects for hierarchical validation: the request lifecycle
state machine, authority levels, validator identity, and the immutable
validation records that make up a request's history.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``VALIDATION_TRANSITIONS`` defines the only valid status transitions.
  Terminal states have no outgoing edges.
* ``current_level <= required_level`` for every request snapshot.
* A ``ValidationRecord`` is frozen; history only ever grows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any
from uuid import UUID


# =========================================================================
# Entity types
# =========================================================================


class EntityType(str, Enum):
    """Business actions that go through validation."""

    EXPENSE = "expense"
    PURCHASE_ORDER = "purchase_order"
    PRODUCTION_ORDER = "production_order"
    ADVANCE = "advance"
    DEBT = "debt"
    LEAVE = "leave"
    TRANSFER = "transfer"
    PRICE_ADJUSTMENT = "price_adjustment"
    CREDIT_APPROVAL = "credit_approval"


# =========================================================================
# Request lifecycle
# =========================================================================


class ValidationStatus(str, Enum):
    """Validation request lifecycle states."""

    PENDING = "pending"
    ESCALATED = "escalated"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"
    CANCELLED = "cancelled"


VALIDATION_TRANSITIONS: dict[ValidationStatus, frozenset[ValidationStatus]] = {
    ValidationStatus.PENDING: frozenset({
        ValidationStatus.PENDING,  # approval below the required level
        ValidationStatus.ESCALATED,
        ValidationStatus.APPROVED,
        ValidationStatus.REJECTED,
        ValidationStatus.CANCELLED,
    }),
    ValidationStatus.ESCALATED: frozenset({
        ValidationStatus.PENDING,
        ValidationStatus.APPROVED,
        ValidationStatus.REJECTED,
        ValidationStatus.CANCELLED,
    }),
    ValidationStatus.APPROVED: frozenset(),
    ValidationStatus.REJECTED: frozenset(),
    ValidationStatus.AUTO_APPROVED: frozenset(),
    ValidationStatus.CANCELLED: frozenset(),
}

TERMINAL_VALIDATION_STATUSES: frozenset[ValidationStatus] = frozenset({
    ValidationStatus.APPROVED,
    ValidationStatus.REJECTED,
    ValidationStatus.AUTO_APPROVED,
    ValidationStatus.CANCELLED,
})

OPEN_VALIDATION_STATUSES: frozenset[ValidationStatus] = frozenset({
    ValidationStatus.PENDING,
    ValidationStatus.ESCALATED,
})


class Priority(str, Enum):
    """Urgency of a request; orders the pending work queue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
    Priority.URGENT: 4,
}


class Decision(str, Enum):
    """A single validator's decision."""

    APPROVED = "approved"
    REJECTED = "rejected"


class AuthorityLevel(IntEnum):
    """Ordinal authority of a validator.

    1 = direct manager, 2 = department director,
    3 = general management, 4 = owner.
    """

    LEVEL_1 = 1
    LEVEL_2 = 2
    LEVEL_3 = 3
    OWNER = 4


MIN_AUTHORITY_LEVEL = int(AuthorityLevel.LEVEL_1)
MAX_AUTHORITY_LEVEL = int(AuthorityLevel.OWNER)


# =========================================================================
# Validator identity and evidence
# =========================================================================


class ValidatorKind(str, Enum):
    """Who produced a validation record."""

    HUMAN = "human"
    RULE_ENGINE = "rule_engine"
    THRESHOLD = "threshold"


@dataclass(frozen=True)
class ValidatorIdentity:
    """Tagged identity of whoever decided.

    ``validator_id`` is set for humans and holds the policy key for a
    threshold auto-approval; ``rule_id`` is set for the rule engine.
    """

    kind: ValidatorKind
    validator_id: str | None = None
    rule_id: UUID | None = None

    def __post_init__(self) -> None:
        if self.kind == ValidatorKind.HUMAN and not self.validator_id:
            raise ValueError("Human validator requires validator_id")
        if self.kind == ValidatorKind.RULE_ENGINE and self.rule_id is None:
            raise ValueError("Rule engine validator requires rule_id")
        if self.kind == ValidatorKind.THRESHOLD and not self.validator_id:
            raise ValueError("Threshold validator requires the policy key")

    @classmethod
    def human(cls, validator_id: str) -> ValidatorIdentity:
        return cls(kind=ValidatorKind.HUMAN, validator_id=validator_id)

    @classmethod
    def rule_engine(cls, rule_id: UUID) -> ValidatorIdentity:
        return cls(kind=ValidatorKind.RULE_ENGINE, rule_id=rule_id)

    @classmethod
    def threshold(cls, policy_key: str) -> ValidatorIdentity:
        return cls(kind=ValidatorKind.THRESHOLD, validator_id=policy_key)

    @property
    def actor_id(self) -> str:
        """Identifier used in audit events and logs."""
        if self.kind == ValidatorKind.HUMAN:
            return self.validator_id  # type: ignore[return-value]
        if self.kind == ValidatorKind.THRESHOLD:
            return f"threshold:{self.validator_id}"
        return f"rule:{self.rule_id}"


@dataclass(frozen=True)
class Geolocation:
    """Where a decision was made."""

    latitude: Decimal
    longitude: Decimal
    accuracy: Decimal | None = None
    address: str | None = None

    def formatted_coordinates(self) -> str:
        return f"{self.latitude:.6f}, {self.longitude:.6f}"

    def with_address(self) -> Geolocation:
        """Fill a missing address with the coordinate pair."""
        if self.address:
            return self
        return Geolocation(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            address=self.formatted_coordinates(),
        )


@dataclass(frozen=True)
class DecisionEvidence:
    """Optional context captured with a human decision."""

    comment: str | None = None
    geolocation: Geolocation | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    signature_ref: str | None = None


@dataclass(frozen=True)
class ValidationRecord:
    """One immutable decision in a request's history."""

    validation_id: UUID
    request_id: UUID
    sequence: int
    decision: Decision
    level: int
    validator: ValidatorIdentity
    decided_at: datetime
    comment: str | None = None
    geolocation: Geolocation | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    signature_ref: str | None = None

    @property
    def is_automatic(self) -> bool:
        return self.validator.kind != ValidatorKind.HUMAN


# =========================================================================
# Request
# =========================================================================


@dataclass(frozen=True)
class ValidationRequest:
    """Snapshot of a validation request and its full history."""

    request_id: UUID
    workspace_id: str
    entity_type: EntityType
    entity_id: str
    requester_id: str
    priority: Priority
    status: ValidationStatus
    current_level: int
    required_level: int
    min_validator_level: int
    created_at: datetime
    updated_at: datetime
    level_entered_at: datetime
    amount: Decimal | None = None
    reason: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    tags: tuple[str, ...] = ()
    matched_rule_id: UUID | None = None
    escalated_at: datetime | None = None
    escalation_reason: str | None = None
    resolved_at: datetime | None = None
    cancelled_by: str | None = None
    version: int = 1
    validations: tuple[ValidationRecord, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_VALIDATION_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_VALIDATION_STATUSES

    @property
    def approvals(self) -> tuple[ValidationRecord, ...]:
        return tuple(v for v in self.validations if v.decision == Decision.APPROVED)

    @property
    def next_sequence(self) -> int:
        return len(self.validations) + 1

    def rule_snapshot(self) -> dict[str, Any]:
        """Attribute view used for rule evaluation.

        Core request fields win over same-named free-form attributes.
        """
        snapshot = dict(self.attributes)
        snapshot.update({
            "amount": self.amount,
            "priority": self.priority.value,
            "requester_id": self.requester_id,
            "reason": self.reason,
            "workspace_id": self.workspace_id,
            "requested_on": self.created_at.date(),
        })
        return snapshot


@dataclass(frozen=True)
class EngineSettings:
    """Runtime knobs for the request lifecycle."""

    staleness_window_hours: int = 48
    default_priority: Priority = Priority.MEDIUM
    default_workspace: str = "default"
