"""
validation_kernel.services.rule_service -- Rule administration and templates.

Responsibility:
    Saves, deactivates and reorders automated decision rules, and turns
    read-only rule templates into concrete rules.  Every rule is compiled
    before it is stored, so the matcher only ever sees well-typed
    conditions.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/ and
    validation_engines.

Invariants enforced:
    - A rule is never stored with zero conditions, an unknown field, a
      mismatched field type, a disallowed operator or an unparsable
      value (InvalidRuleConfigurationError).
    - Rules are deactivated, never deleted.
    - Templates are never mutated; instantiation only increments the
      template's usage counter row.
    - Positions inside a category stay contiguous (1..n) after every save
      or move; an explicit position inserts the rule and shifts the rest.
    - Services flush, never commit.

Failure modes:
    - RuleNotFoundError, RuleTemplateNotFoundError.
    - InvalidRuleConfigurationError.
    - ConcurrentModificationError when a rule changed under the caller.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from validation_engines.conditions import compile_conditions
from validation_kernel.domain.clock import Clock, SystemClock
from validation_kernel.domain.rules import (
    ConditionSpec,
    Rule,
    RuleCategory,
    RuleDraft,
    RuleTemplate,
    TemplateListing,
)
from validation_kernel.domain.validation import EntityType
from validation_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidRuleConfigurationError,
    RuleNotFoundError,
    RuleTemplateNotFoundError,
)
from validation_kernel.logging_config import LogContext, get_logger
from validation_kernel.models.audit_event import AuditAction
from validation_kernel.models.rule import RuleModel, RuleTemplateUsageModel
from validation_kernel.selectors.rule_selector import RuleSelector
from validation_kernel.services.auditor_service import AuditorService

logger = get_logger("services.rules")

SYSTEM_ACTOR = "system"


class RuleService:
    """Manages automated decision rules and the template library."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        *,
        templates: Iterable[RuleTemplate] = (),
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._templates: dict[str, RuleTemplate] = {t.template_id: t for t in templates}
        self._selector = RuleSelector(session)

    # ------------------------------------------------------------------
    # Template library
    # ------------------------------------------------------------------

    def list_templates(
        self,
        category: RuleCategory | str | None = None,
        search: str | None = None,
    ) -> list[TemplateListing]:
        """Templates with their usage counts, most used first.

        ``search`` matches name or description, case-insensitively.
        """
        category = RuleCategory(category) if category is not None else None
        needle = search.strip().casefold() if search else None
        usage = self._selector.template_usage()

        listings = []
        for template in self._templates.values():
            if category is not None and template.category != category:
                continue
            haystack = f"{template.name}\n{template.description}".casefold()
            if needle and needle not in haystack:
                continue
            listings.append(
                TemplateListing(template, usage.get(template.template_id, 0))
            )
        return sorted(listings, key=lambda item: (-item.usage_count, item.template.name))

    def get_template(self, template_id: str) -> RuleTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise RuleTemplateNotFoundError(template_id)
        return template

    def instantiate(
        self,
        template_id: str,
        concrete_values: Mapping[str, Any] | None = None,
        name: str | None = None,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> Rule:
        """Create an active rule from a template.

        Values come from ``concrete_values[field]`` and fall back to the
        template's defaults.  The rule is appended to the end of its
        category.

        Raises:
            RuleTemplateNotFoundError: unknown template.
            InvalidRuleConfigurationError: missing or malformed value.
        """
        template = self.get_template(template_id)
        values = dict(concrete_values or {})
        rule_name = name or template.name

        specs = [
            ConditionSpec(
                field=ct.field,
                operator=ct.operator.value,
                value=values.get(ct.field, ct.default_value),
            )
            for ct in template.condition_template
        ]
        conditions = compile_conditions(
            specs,
            template.category,
            rule_name,
            labels=[ct.label for ct in template.condition_template],
        )

        with LogContext.bind(actor_id=actor_id):
            now = self._clock.now()
            rule = Rule(
                rule_id=uuid4(),
                name=rule_name,
                category=template.category,
                conditions=conditions,
                action=template.action,
                position=self._next_position(template.category),
                is_active=True,
                description=template.description,
                action_reason=template.action_reason,
                template_id=template.template_id,
                created_by=actor_id,
                created_at=now,
                updated_at=now,
            )
            model = RuleModel.from_dto(rule)
            self._session.add(model)
            usage_count = self._bump_usage(template.template_id)
            self._session.flush()

            created = model.to_dto()
            self._auditor.record_rule_change(
                created,
                AuditAction.RULE_INSTANTIATED,
                actor_id,
                details={"template_id": template.template_id},
            )
            logger.info(
                "rule_instantiated",
                extra={
                    "rule_id": str(created.rule_id),
                    "template_id": template.template_id,
                    "category": created.category.value,
                    "position": created.position,
                    "usage_count": usage_count,
                },
            )
            return created

    # ------------------------------------------------------------------
    # Rule administration
    # ------------------------------------------------------------------

    def list_rules(
        self,
        category: RuleCategory | str | None = None,
        include_inactive: bool = True,
    ) -> list[Rule]:
        category = RuleCategory(category) if category is not None else None
        return self._selector.list_rules(category, include_inactive)

    def get_rule(self, rule_id: UUID) -> Rule:
        rule = self._selector.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(str(rule_id))
        return rule

    def active_rules_for(self, entity_type: EntityType | str) -> list[Rule]:
        return self._selector.active_rules_for(EntityType(entity_type))

    def upsert_rule(self, draft: RuleDraft, actor_id: str = SYSTEM_ACTOR) -> Rule:
        """Create a rule, or replace an existing rule's definition.

        ``draft.rule_id`` None creates.  An explicit position inserts the
        rule there and shifts the category's other rules down.  A draft
        without a position keeps the existing position, or appends to the
        end of the category.  Moving a rule to another category closes the
        gap it leaves behind.

        Raises:
            InvalidRuleConfigurationError, RuleNotFoundError,
            ConcurrentModificationError.
        """
        if not draft.name or not draft.name.strip():
            raise InvalidRuleConfigurationError(draft.name or "", ["a rule name is required"])
        conditions = compile_conditions(draft.conditions, draft.category, draft.name)
        now = self._clock.now()

        with LogContext.bind(actor_id=actor_id):
            if draft.rule_id is None:
                return self._create(draft, conditions, actor_id, now)

            model = self._load_for_update(draft.rule_id)
            current = model.to_dto()
            updated = replace(
                current,
                name=draft.name,
                category=draft.category,
                conditions=conditions,
                action=draft.action,
                description=draft.description,
                action_reason=draft.action_reason,
                is_active=draft.is_active,
                updated_at=now,
            )
            model.apply_dto(updated)

            # One UPDATE per row, so the version moves by exactly one.
            with self._session.no_autoflush:
                moved_category = draft.category != current.category
                if draft.position is not None or moved_category:
                    self._place(model, draft.position, now)
                if moved_category:
                    self._renumber(
                        self._category_rows(current.category.value, exclude=model.rule_id), now,
                    )
            self._flush(model)

            saved = model.to_dto()
            self._auditor.record_rule_change(
                saved,
                AuditAction.RULE_UPDATED,
                actor_id,
                details={"previous_version": current.version},
            )
            logger.info(
                "rule_updated",
                extra={
                    "rule_id": str(saved.rule_id),
                    "category": saved.category.value,
                    "position": saved.position,
                    "is_active": saved.is_active,
                    "version": saved.version,
                },
            )
            return saved

    def deactivate_rule(self, rule_id: UUID, actor_id: str = SYSTEM_ACTOR) -> Rule:
        """Stop a rule from matching.  Already inactive rules are returned as is."""
        with LogContext.bind(actor_id=actor_id):
            model = self._load_for_update(rule_id)
            if not model.is_active:
                return model.to_dto()

            model.is_active = False
            model.updated_at = self._clock.now()
            self._flush(model)

            rule = model.to_dto()
            self._auditor.record_rule_change(rule, AuditAction.RULE_DEACTIVATED, actor_id)
            logger.info("rule_deactivated", extra={"rule_id": str(rule_id)})
            return rule

    def move_rule(
        self,
        rule_id: UUID,
        position: int,
        actor_id: str = SYSTEM_ACTOR,
    ) -> Rule:
        """Move a rule to ``position`` inside its category.

        Positions are 1-based and clamped to the category's size; the
        other rules of the category shift to keep the order contiguous.
        """
        with LogContext.bind(actor_id=actor_id):
            moved = self._load_for_update(rule_id)
            previous = moved.position
            self._place(moved, position, self._clock.now())
            self._flush(moved)

            rule = moved.to_dto()
            if rule.position != previous:
                self._auditor.record_rule_change(
                    rule,
                    AuditAction.RULE_REORDERED,
                    actor_id,
                    details={"previous_position": previous},
                )
            logger.info(
                "rule_moved",
                extra={
                    "rule_id": str(rule_id),
                    "category": rule.category.value,
                    "previous_position": previous,
                    "position": rule.position,
                },
            )
            return rule

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self, draft, conditions, actor_id, now) -> Rule:
        rule = Rule(
            rule_id=uuid4(),
            name=draft.name,
            category=draft.category,
            conditions=conditions,
            action=draft.action,
            position=0,
            is_active=draft.is_active,
            description=draft.description,
            action_reason=draft.action_reason,
            template_id=draft.template_id,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        model = RuleModel.from_dto(rule)
        self._place(model, draft.position, now)
        self._session.add(model)
        self._session.flush()

        created = model.to_dto()
        self._auditor.record_rule_change(created, AuditAction.RULE_CREATED, actor_id)
        logger.info(
            "rule_created",
            extra={
                "rule_id": str(created.rule_id),
                "category": created.category.value,
                "position": created.position,
                "action": created.action.value,
                "condition_count": len(created.conditions),
            },
        )
        return created

    def _next_position(self, category: RuleCategory) -> int:
        last = self._selector.last_position(category)
        return 1 if last is None else last + 1

    def _category_rows(self, category: str, exclude: UUID | None = None) -> list[RuleModel]:
        """Locked rows of a category in evaluation order."""
        rows = self._session.execute(
            select(RuleModel)
            .where(RuleModel.category == category)
            .order_by(RuleModel.position, RuleModel.rule_id)
            .with_for_update()
        ).scalars().all()
        return [m for m in rows if m.rule_id != exclude]

    def _place(self, model: RuleModel, position: int | None, now) -> None:
        """Insert ``model`` at ``position`` in its category and renumber 1..n.

        None appends.  Out-of-range positions are clamped.
        """
        ordered = self._category_rows(model.category, exclude=model.rule_id)
        if position is None:
            target = len(ordered) + 1
        else:
            target = min(max(position, 1), len(ordered) + 1)
        ordered.insert(target - 1, model)
        self._renumber(ordered, now)

    @staticmethod
    def _renumber(models: list[RuleModel], now) -> None:
        for index, model in enumerate(models, start=1):
            if model.position != index:
                model.position = index
                model.updated_at = now

    def _locked_usage(self, template_id: str) -> RuleTemplateUsageModel | None:
        return self._session.execute(
            select(RuleTemplateUsageModel)
            .where(RuleTemplateUsageModel.template_id == template_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _bump_usage(self, template_id: str) -> int:
        usage = self._locked_usage(template_id)
        if usage is None:
            # First use.  Another transaction may insert the counter at the
            # same time; a savepoint keeps the new rule intact.
            savepoint = self._session.begin_nested()
            try:
                usage = RuleTemplateUsageModel(template_id=template_id, usage_count=1)
                self._session.add(usage)
                self._session.flush()
                savepoint.commit()
                return 1
            except IntegrityError:
                logger.debug(
                    "template_usage_race_retry",
                    extra={"template_id": template_id},
                )
                savepoint.rollback()
                usage = self._locked_usage(template_id)
                if usage is None:
                    raise
        usage.usage_count += 1
        return usage.usage_count

    def _load_for_update(self, rule_id: UUID) -> RuleModel:
        model = self._session.execute(
            select(RuleModel).where(RuleModel.rule_id == rule_id).with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise RuleNotFoundError(str(rule_id))
        return model

    def _flush(self, model: RuleModel) -> None:
        seen_version = model.version
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning(
                "rule_concurrent_modification",
                extra={
                    "exc_code": ConcurrentModificationError.code,
                    "rule_id": str(model.rule_id),
                    "expected_version": seen_version,
                },
            )
            raise ConcurrentModificationError(
                "Rule", str(model.rule_id), seen_version,
            ) from exc
