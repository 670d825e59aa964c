"""
Module: validation_kernel.selectors.rule_selector
Responsibility: Read-only queries over automated decision rules and
    template usage counters.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - ``active_rules_for`` reads the whole candidate rule set in one
      SELECT, so a request is matched against one consistent snapshot.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from validation_kernel.domain.rules import Rule, RuleCategory
from validation_kernel.domain.validation import EntityType
from validation_kernel.models.rule import RuleModel, RuleTemplateUsageModel
from validation_kernel.selectors.base import BaseSelector


class RuleSelector(BaseSelector):
    """Read-side queries for rules."""

    def get(self, rule_id: UUID) -> Rule | None:
        model = self.session.execute(
            select(RuleModel).where(RuleModel.rule_id == rule_id)
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    def list_rules(
        self,
        category: RuleCategory | None = None,
        include_inactive: bool = True,
    ) -> list[Rule]:
        """Rules ordered by category, then evaluation position."""
        stmt = select(RuleModel)
        if category is not None:
            stmt = stmt.where(RuleModel.category == category.value)
        if not include_inactive:
            stmt = stmt.where(RuleModel.is_active.is_(True))
        stmt = stmt.order_by(RuleModel.category, RuleModel.position, RuleModel.rule_id)
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def active_rules_for(self, entity_type: EntityType) -> list[Rule]:
        """Active rules of the entity's category and of ``generic``."""
        categories = [
            RuleCategory.for_entity(entity_type).value,
            RuleCategory.GENERIC.value,
        ]
        models = self.session.execute(
            select(RuleModel)
            .where(
                RuleModel.category.in_(categories),
                RuleModel.is_active.is_(True),
            )
            .order_by(RuleModel.position, RuleModel.rule_id)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def last_position(self, category: RuleCategory) -> int | None:
        """Highest position used in a category, or None when empty."""
        return self.session.execute(
            select(func.max(RuleModel.position))
            .where(RuleModel.category == category.value)
        ).scalar_one_or_none()

    def template_usage(self) -> dict[str, int]:
        rows = self.session.execute(
            select(RuleTemplateUsageModel.template_id, RuleTemplateUsageModel.usage_count)
        ).all()
        return {template_id: count for template_id, count in rows}
