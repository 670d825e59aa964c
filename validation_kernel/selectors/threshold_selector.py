"""
Module: validation_kernel.selectors.threshold_selector
Responsibility: Read-only queries over stored threshold policies.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - ``policy_set_for`` returns the most specific scopes first, so
      ThresholdPolicySet.lookup picks the same policy the request creator
      would see.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from validation_kernel.domain.thresholds import (
    DEFAULT_WORKSPACE_SCOPE,
    ThresholdPolicy,
    ThresholdPolicySet,
)
from validation_kernel.domain.validation import EntityType
from validation_kernel.models.threshold import ThresholdPolicyModel
from validation_kernel.selectors.base import BaseSelector


class ThresholdSelector(BaseSelector):
    """Read-side queries for stored threshold policies."""

    def get(self, policy_id: UUID) -> ThresholdPolicy | None:
        model = self.session.execute(
            select(ThresholdPolicyModel).where(ThresholdPolicyModel.policy_id == policy_id)
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    def find(
        self,
        workspace_id: str,
        entity_type: EntityType,
        category: str | None = None,
    ) -> ThresholdPolicy | None:
        """The policy stored for exactly this scope, without fallback."""
        stmt = select(ThresholdPolicyModel).where(
            ThresholdPolicyModel.workspace_id == workspace_id,
            ThresholdPolicyModel.entity_type == entity_type.value,
        )
        if category is None:
            stmt = stmt.where(ThresholdPolicyModel.category.is_(None))
        else:
            stmt = stmt.where(ThresholdPolicyModel.category == category)
        model = self.session.execute(stmt).scalar_one_or_none()
        return model.to_dto() if model else None

    def list_policies(
        self,
        workspace_id: str | None = None,
        entity_type: EntityType | None = None,
    ) -> list[ThresholdPolicy]:
        """Policies ordered by workspace, entity type, then category."""
        stmt = select(ThresholdPolicyModel)
        if workspace_id is not None:
            stmt = stmt.where(ThresholdPolicyModel.workspace_id == workspace_id)
        if entity_type is not None:
            stmt = stmt.where(ThresholdPolicyModel.entity_type == entity_type.value)
        stmt = stmt.order_by(
            ThresholdPolicyModel.workspace_id,
            ThresholdPolicyModel.entity_type,
            ThresholdPolicyModel.scope_key,
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def policy_set_for(self, workspace_id: str, entity_type: EntityType) -> ThresholdPolicySet:
        """Stored policies that could apply to a request in ``workspace_id``."""
        models = self.session.execute(
            select(ThresholdPolicyModel).where(
                ThresholdPolicyModel.workspace_id.in_([workspace_id, DEFAULT_WORKSPACE_SCOPE]),
                ThresholdPolicyModel.entity_type == entity_type.value,
            )
        ).scalars().all()
        return ThresholdPolicySet(policies=tuple(m.to_dto() for m in models))
