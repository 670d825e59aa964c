"""
validation_kernel.services.threshold_service -- Threshold policy administration.

Responsibility:
    Stores per-workspace threshold policies that override the configured
    defaults, optionally narrowed to a category.  Every saved policy is
    checked with the same rules the configuration compiler applies.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/ and
    validation_engines.

Invariants enforced:
    - At most one stored policy per workspace, entity type and category
      (ThresholdPolicyExistsError).
    - Thresholds strictly increase and ``auto_approve_below`` stays below
      the level 1 threshold (InvalidThresholdPolicyError).
    - Editing a policy never touches existing requests: ``required_level``
      was stamped when each request was created.
    - Services flush, never commit.

Failure modes:
    - ThresholdPolicyNotFoundError, ThresholdPolicyExistsError,
      InvalidThresholdPolicyError.
    - ConcurrentModificationError when a policy changed under the caller.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from validation_engines.thresholds import validate_threshold_policy
from validation_kernel.domain.clock import Clock, SystemClock
from validation_kernel.domain.thresholds import (
    DEFAULT_WORKSPACE_SCOPE,
    PolicyCheck,
    ThresholdPolicy,
    ThresholdPolicySet,
)
from validation_kernel.domain.validation import EntityType
from validation_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidThresholdPolicyError,
    ThresholdPolicyExistsError,
    ThresholdPolicyNotFoundError,
)
from validation_kernel.logging_config import LogContext, get_logger
from validation_kernel.models.audit_event import AuditAction
from validation_kernel.models.threshold import ThresholdPolicyModel
from validation_kernel.selectors.threshold_selector import ThresholdSelector
from validation_kernel.services.auditor_service import AuditorService

logger = get_logger("services.thresholds")

SYSTEM_ACTOR = "system"


def _category(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


class ThresholdService:
    """Manages stored threshold policies on top of the configured defaults."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        *,
        defaults: ThresholdPolicySet | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._defaults = defaults or ThresholdPolicySet()
        self._selector = ThresholdSelector(session)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_policy(self, policy_id: UUID) -> ThresholdPolicy:
        policy = self._selector.get(policy_id)
        if policy is None:
            raise ThresholdPolicyNotFoundError(str(policy_id))
        return policy

    def find_policy(
        self,
        workspace_id: str,
        entity_type: EntityType | str,
        category: str | None = None,
    ) -> ThresholdPolicy | None:
        """Stored policy for exactly this scope."""
        return self._selector.find(workspace_id, EntityType(entity_type), _category(category))

    def list_policies(
        self,
        workspace_id: str | None = None,
        entity_type: EntityType | str | None = None,
    ) -> list[ThresholdPolicy]:
        entity_type = EntityType(entity_type) if entity_type is not None else None
        return self._selector.list_policies(workspace_id, entity_type)

    def effective_policies(self, workspace_id: str, entity_type: EntityType | str) -> ThresholdPolicySet:
        """Stored policies first, then the configured defaults.

        ``ThresholdPolicySet.lookup`` on the result gives the policy a new
        request in ``workspace_id`` would be stamped with.
        """
        stored = self._selector.policy_set_for(workspace_id, EntityType(entity_type))
        return stored.merged_with(self._defaults)

    def effective_policy(
        self,
        workspace_id: str,
        entity_type: EntityType | str,
        category: str | None = None,
    ) -> ThresholdPolicy | None:
        entity_type = EntityType(entity_type)
        return self.effective_policies(workspace_id, entity_type).lookup(
            workspace_id, entity_type, _category(category),
        )

    def validate_workspace_policies(self, workspace_id: str) -> PolicyCheck:
        """Re-check every stored policy of a workspace."""
        policies = self._selector.list_policies(workspace_id)
        errors: list[str] = []
        for policy in policies:
            errors.extend(validate_threshold_policy(policy))
        if errors:
            logger.warning(
                "threshold_policies_invalid",
                extra={"workspace_id": workspace_id, "error_count": len(errors)},
            )
        return PolicyCheck(workspace_id=workspace_id, checked=len(policies), errors=tuple(errors))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def create_policy(self, policy: ThresholdPolicy, actor_id: str = SYSTEM_ACTOR) -> ThresholdPolicy:
        """Store a new policy for its workspace, entity type and category.

        ``policy_id``, ``version`` and the timestamps of ``policy`` are
        ignored and assigned here.

        Raises:
            InvalidThresholdPolicyError, ThresholdPolicyExistsError.
        """
        now = self._clock.now()
        candidate = replace(
            policy,
            workspace_id=policy.workspace_id.strip(),
            category=_category(policy.category),
            policy_id=uuid4(),
            version=None,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        self._check(candidate)

        with LogContext.bind(actor_id=actor_id):
            if self._selector.find(
                candidate.workspace_id, candidate.entity_type, candidate.category,
            ) is not None:
                raise ThresholdPolicyExistsError(candidate.policy_key)

            model = ThresholdPolicyModel.from_dto(candidate)
            savepoint = self._session.begin_nested()
            try:
                self._session.add(model)
                self._session.flush()
                savepoint.commit()
            except IntegrityError as exc:
                savepoint.rollback()
                raise ThresholdPolicyExistsError(candidate.policy_key) from exc

            created = model.to_dto()
            self._auditor.record_threshold_change(created, AuditAction.THRESHOLD_CREATED, actor_id)
            logger.info(
                "threshold_policy_created",
                extra={
                    "policy_id": str(created.policy_id),
                    "policy_key": created.policy_key,
                    "auto_approve_below": str(created.auto_approve_below),
                },
            )
            return created

    def update_policy(
        self,
        policy_id: UUID,
        *,
        level_thresholds: tuple[Decimal, Decimal, Decimal] | None = None,
        levels_without_amount: int | None = None,
        first_validator_level: int | None = None,
        auto_approve_below: Decimal | None = None,
        unit: str | None = None,
        description: str | None = None,
        expected_version: int | None = None,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ThresholdPolicy:
        """Change the tiers of a stored policy.

        Arguments left as None keep their stored value.  Requests created
        before the change keep the levels they were stamped with.

        Raises:
            ThresholdPolicyNotFoundError, InvalidThresholdPolicyError,
            ConcurrentModificationError.
        """
        with LogContext.bind(actor_id=actor_id):
            model = self._load_for_update(policy_id)
            current = model.to_dto()
            if expected_version is not None and expected_version != current.version:
                raise ConcurrentModificationError(
                    "ThresholdPolicy", str(policy_id), expected_version,
                )

            updated = replace(
                current,
                level_thresholds=(
                    tuple(Decimal(t) for t in level_thresholds)  # type: ignore[arg-type]
                    if level_thresholds is not None else current.level_thresholds
                ),
                levels_without_amount=(
                    current.levels_without_amount
                    if levels_without_amount is None else levels_without_amount
                ),
                first_validator_level=(
                    current.first_validator_level
                    if first_validator_level is None else first_validator_level
                ),
                auto_approve_below=(
                    current.auto_approve_below
                    if auto_approve_below is None else Decimal(auto_approve_below)
                ),
                unit=unit or current.unit,
                description=current.description if description is None else description,
                updated_at=self._clock.now(),
            )
            self._check(updated)
            model.apply_dto(updated)
            self._flush(model)

            saved = model.to_dto()
            self._auditor.record_threshold_change(
                saved,
                AuditAction.THRESHOLD_UPDATED,
                actor_id,
                details={"previous_version": current.version},
            )
            logger.info(
                "threshold_policy_updated",
                extra={
                    "policy_id": str(policy_id),
                    "policy_key": saved.policy_key,
                    "version": saved.version,
                },
            )
            return saved

    def get_or_create_default(
        self,
        workspace_id: str,
        entity_type: EntityType | str,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ThresholdPolicy:
        """The workspace's own policy, created from the configured default if missing.

        Raises:
            ThresholdPolicyNotFoundError: no configured default to copy.
        """
        entity_type = EntityType(entity_type)
        existing = self._selector.find(workspace_id, entity_type)
        if existing is not None:
            return existing

        default = self._defaults.lookup(DEFAULT_WORKSPACE_SCOPE, entity_type)
        if default is None:
            raise ThresholdPolicyNotFoundError(f"{DEFAULT_WORKSPACE_SCOPE}/{entity_type.value}")
        return self.create_policy(
            replace(default, workspace_id=workspace_id, category=None),
            actor_id,
        )

    def clone_to_category(
        self,
        policy_id: UUID,
        category: str,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ThresholdPolicy:
        """Copy a stored policy's tiers to a new category of the same workspace.

        Raises:
            ThresholdPolicyNotFoundError, ThresholdPolicyExistsError,
            InvalidThresholdPolicyError (blank category).
        """
        source = self.get_policy(policy_id)
        if _category(category) is None:
            raise InvalidThresholdPolicyError(source.policy_key, ["a category is required"])
        return self.create_policy(replace(source, category=category), actor_id)

    def delete_policy(self, policy_id: UUID, actor_id: str = SYSTEM_ACTOR) -> ThresholdPolicy:
        """Remove a stored policy; the scope falls back to the next one."""
        with LogContext.bind(actor_id=actor_id):
            model = self._load_for_update(policy_id)
            removed = model.to_dto()
            self._session.delete(model)
            self._session.flush()

            self._auditor.record_threshold_change(removed, AuditAction.THRESHOLD_DELETED, actor_id)
            logger.info(
                "threshold_policy_deleted",
                extra={"policy_id": str(policy_id), "policy_key": removed.policy_key},
            )
            return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check(self, policy: ThresholdPolicy) -> None:
        errors = validate_threshold_policy(policy)
        if not policy.workspace_id:
            errors.insert(0, "a workspace is required")
        if errors:
            logger.warning(
                "threshold_policy_rejected",
                extra={
                    "exc_code": InvalidThresholdPolicyError.code,
                    "policy_key": policy.policy_key,
                    "error_count": len(errors),
                },
            )
            raise InvalidThresholdPolicyError(policy.policy_key, errors)

    def _load_for_update(self, policy_id: UUID) -> ThresholdPolicyModel:
        model = self._session.execute(
            select(ThresholdPolicyModel)
            .where(ThresholdPolicyModel.policy_id == policy_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise ThresholdPolicyNotFoundError(str(policy_id))
        return model

    def _flush(self, model: ThresholdPolicyModel) -> None:
        seen_version = model.version
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning(
                "threshold_concurrent_modification",
                extra={
                    "exc_code": ConcurrentModificationError.code,
                    "policy_id": str(model.policy_id),
                    "expected_version": seen_version,
                },
            )
            raise ConcurrentModificationError(
                "ThresholdPolicy", str(model.policy_id), seen_version,
            ) from exc
