"""
Module: validation_kernel.models.rule
Responsibility: ORM persistence for automated decision rules and the usage
    counters of rule templates.

Architecture position: Kernel > Models.  May import from db/ only (domain
    DTO classes are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - Rules are never deleted; ``is_active`` switches them off.
    - Stored conditions are already compiled and typed (TypedJSON keeps
      Decimal and date values exact).
    - ``version`` is the mapper's version_id_col: concurrent edits of the
      same rule cannot silently overwrite each other.
    - Template usage lives in its own table so the template seed data is
      never written.

Failure modes:
    - StaleDataError on a concurrent rule update.
    - ImmutabilityViolationError on rule DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from validation_kernel.db.base import Base, UUIDString
from validation_kernel.db.types import TypedJSON
from validation_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from validation_kernel.domain.rules import Rule, RuleCondition


def _condition_to_row(condition: RuleCondition) -> dict[str, Any]:
    return {
        "field": condition.field,
        "field_type": condition.field_type.value,
        "operator": condition.operator.value,
        "value": condition.value,
        "label": condition.label,
    }


def _condition_from_row(row: dict[str, Any]) -> RuleCondition:
    from validation_kernel.domain.rules import (
        ConditionOperator,
        FieldType,
        RuleCondition,
    )

    value = row["value"]
    if isinstance(value, list):
        value = tuple(value)
    return RuleCondition(
        field=row["field"],
        field_type=FieldType(row["field_type"]),
        operator=ConditionOperator(row["operator"]),
        value=value,
        label=row.get("label"),
    )


class RuleModel(Base):
    """Persistent automated decision rule."""

    __tablename__ = "validation_rules"

    __table_args__ = (
        CheckConstraint(
            "action IN ('approve', 'reject', 'escalate')",
            name="ck_validation_rules_valid_action",
        ),
        Index("ix_validation_rules_order", "category", "is_active", "position"),
    )

    rule_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    conditions: Mapped[list] = mapped_column(TypedJSON, nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    action_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    position: Mapped[int] = mapped_column(nullable=False)
    template_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<Rule {self.name!r} {self.category}#{self.position} {state}>"

    def to_dto(self) -> Rule:
        """Convert ORM model to frozen domain DTO."""
        from validation_kernel.domain.rules import Rule as RuleDTO
        from validation_kernel.domain.rules import RuleAction, RuleCategory

        return RuleDTO(
            rule_id=self.rule_id,
            name=self.name,
            category=RuleCategory(self.category),
            conditions=tuple(_condition_from_row(row) for row in self.conditions or ()),
            action=RuleAction(self.action),
            position=self.position,
            is_active=self.is_active,
            description=self.description,
            action_reason=self.action_reason,
            template_id=self.template_id,
            version=self.version,
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: Rule) -> RuleModel:
        """Create ORM model from domain DTO."""
        return cls(
            rule_id=dto.rule_id,
            name=dto.name,
            description=dto.description,
            category=dto.category.value,
            conditions=[_condition_to_row(c) for c in dto.conditions],
            action=dto.action.value,
            action_reason=dto.action_reason,
            is_active=dto.is_active,
            position=dto.position,
            template_id=dto.template_id,
            created_by=dto.created_by,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
        )

    def apply_dto(self, dto: Rule) -> None:
        """Copy editable fields of an updated rule onto the row."""
        self.name = dto.name
        self.description = dto.description
        self.category = dto.category.value
        self.conditions = [_condition_to_row(c) for c in dto.conditions]
        self.action = dto.action.value
        self.action_reason = dto.action_reason
        self.is_active = dto.is_active
        self.position = dto.position
        self.updated_at = dto.updated_at


class RuleTemplateUsageModel(Base):
    """How many rules were instantiated from each template."""

    __tablename__ = "rule_template_usage"

    template_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    usage_count: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<RuleTemplateUsage {self.template_id} x{self.usage_count}>"


@event.listens_for(RuleModel, "before_delete")
def prevent_rule_delete(mapper, connection, target):
    """Rules are deactivated, never deleted."""
    raise ImmutabilityViolationError(
        entity_type="Rule",
        entity_id=str(target.rule_id),
        reason="Rules are never deleted -- deactivate instead",
    )
