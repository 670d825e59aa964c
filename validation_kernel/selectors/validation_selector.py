"""
Module: validation_kernel.selectors.validation_selector
Responsibility: Read-only queries over validation requests and their
    history: the pending work queue, entity history, period populations
    for statistics, and escalation sweep candidates.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - DTO convention: every public method returns frozen ValidationRequest
      snapshots, never ORM models.
    - Deterministic ordering on every list result.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, select

from validation_kernel.domain.validation import (
    OPEN_VALIDATION_STATUSES,
    EntityType,
    Priority,
    ValidationRequest,
    ValidationStatus,
)
from validation_kernel.models.validation import ValidationRequestModel
from validation_kernel.selectors.base import BaseSelector

_PRIORITY_RANK = case(
    {p.value: p.rank for p in Priority},
    value=ValidationRequestModel.priority,
    else_=0,
)

_OPEN_STATUS_VALUES = sorted(s.value for s in OPEN_VALIDATION_STATUSES)


class ValidationSelector(BaseSelector):
    """Read-side queries for validation requests."""

    def get(self, request_id: UUID) -> ValidationRequest | None:
        model = self.session.execute(
            select(ValidationRequestModel)
            .where(ValidationRequestModel.request_id == request_id)
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    def list_pending(
        self,
        validator_level: int,
        workspace_id: str,
    ) -> list[ValidationRequest]:
        """Open requests a validator at ``validator_level`` may act on.

        Ordered by priority (urgent first), then oldest first.
        """
        models = self.session.execute(
            select(ValidationRequestModel)
            .where(
                ValidationRequestModel.workspace_id == workspace_id,
                ValidationRequestModel.status.in_(_OPEN_STATUS_VALUES),
                ValidationRequestModel.min_validator_level <= validator_level,
            )
            .order_by(
                _PRIORITY_RANK.desc(),
                ValidationRequestModel.created_at,
                ValidationRequestModel.request_id,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

    def entity_history(
        self,
        entity_type: EntityType,
        entity_id: str,
    ) -> list[ValidationRequest]:
        """Every request ever raised for an entity, newest first."""
        models = self.session.execute(
            select(ValidationRequestModel)
            .where(
                ValidationRequestModel.entity_type == entity_type.value,
                ValidationRequestModel.entity_id == entity_id,
            )
            .order_by(
                ValidationRequestModel.created_at.desc(),
                ValidationRequestModel.request_id,
            )
        ).scalars().all()
        return [m.to_dto() for m in models]

    def requests_in_period(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
    ) -> list[ValidationRequest]:
        """Requests created in ``[start, end)`` within a workspace."""
        models = self.session.execute(
            select(ValidationRequestModel)
            .where(
                ValidationRequestModel.workspace_id == workspace_id,
                ValidationRequestModel.created_at >= start,
                ValidationRequestModel.created_at < end,
            )
            .order_by(ValidationRequestModel.created_at)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def stale_request_ids(self, entered_before: datetime) -> list[UUID]:
        """Pending requests whose current level became active at or
        before ``entered_before``, oldest first."""
        return list(self.session.execute(
            select(ValidationRequestModel.request_id)
            .where(
                ValidationRequestModel.status == ValidationStatus.PENDING.value,
                ValidationRequestModel.level_entered_at <= entered_before,
            )
            .order_by(ValidationRequestModel.level_entered_at)
        ).scalars().all())
