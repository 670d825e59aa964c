"""
Module: validation_kernel.models.threshold
Responsibility: ORM persistence for workspace threshold policies edited at
    runtime.

Architecture position: Kernel > Models.  May import from db/ only (domain
    DTO classes are imported lazily inside to_dto/from_dto).

Invariants enforced:
    - ``scope_key`` (workspace/entity type[/category]) is unique, so one
      policy at most covers a scope.  A nullable category could not carry
      that constraint on its own.
    - ``version`` is the mapper's version_id_col.
    - Policies are only consulted when a request is created; editing one
      never rewrites stored requests.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from validation_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from validation_kernel.domain.thresholds import ThresholdPolicy


def _plain(value) -> Decimal:
    # Numeric columns come back padded to nine places.
    value = Decimal(value)
    return value.quantize(Decimal(1)) if value == value.to_integral_value() else value.normalize()


class ThresholdPolicyModel(Base):
    """Stored threshold policy for one workspace scope."""

    __tablename__ = "threshold_policies"

    __table_args__ = (
        CheckConstraint(
            "levels_without_amount BETWEEN 1 AND 4 AND first_validator_level BETWEEN 1 AND 4",
            name="ck_threshold_policies_levels",
        ),
        Index("ix_threshold_policies_lookup", "workspace_id", "entity_type"),
    )

    policy_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    scope_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    workspace_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    level_1_threshold: Mapped[Decimal] = mapped_column(nullable=False)
    level_2_threshold: Mapped[Decimal] = mapped_column(nullable=False)
    level_3_threshold: Mapped[Decimal] = mapped_column(nullable=False)
    levels_without_amount: Mapped[int] = mapped_column(nullable=False, default=1)
    first_validator_level: Mapped[int] = mapped_column(nullable=False, default=1)
    auto_approve_below: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="amount")
    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ThresholdPolicy {self.scope_key} v{self.version}>"

    def to_dto(self) -> ThresholdPolicy:
        """Convert ORM model to frozen domain DTO."""
        from validation_kernel.domain.thresholds import ThresholdPolicy as PolicyDTO
        from validation_kernel.domain.validation import EntityType

        return PolicyDTO(
            entity_type=EntityType(self.entity_type),
            level_thresholds=(
                _plain(self.level_1_threshold),
                _plain(self.level_2_threshold),
                _plain(self.level_3_threshold),
            ),
            levels_without_amount=self.levels_without_amount,
            first_validator_level=self.first_validator_level,
            workspace_id=self.workspace_id,
            category=self.category,
            auto_approve_below=_plain(self.auto_approve_below),
            unit=self.unit,
            description=self.description,
            policy_id=self.policy_id,
            version=self.version,
            created_by=self.created_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_dto(cls, dto: ThresholdPolicy) -> ThresholdPolicyModel:
        """Create ORM model from domain DTO."""
        model = cls(
            policy_id=dto.policy_id,
            scope_key=dto.policy_key,
            workspace_id=dto.workspace_id,
            entity_type=dto.entity_type.value,
            category=dto.category,
            created_by=dto.created_by,
            created_at=dto.created_at,
        )
        model.apply_dto(dto)
        return model

    def apply_dto(self, dto: ThresholdPolicy) -> None:
        """Copy editable fields of an updated policy onto the row."""
        self.level_1_threshold = dto.level_thresholds[0]
        self.level_2_threshold = dto.level_thresholds[1]
        self.level_3_threshold = dto.level_thresholds[2]
        self.levels_without_amount = dto.levels_without_amount
        self.first_validator_level = dto.first_validator_level
        self.auto_approve_below = dto.auto_approve_below
        self.unit = dto.unit
        self.description = dto.description
        self.updated_at = dto.updated_at
