"""
validation_kernel.services.validation_service -- Validation request lifecycle.

Responsibility:
    Creates validation requests, records human decisions, escalates stale
    or flagged work, and cancels withdrawn requests.  Every transition is
    computed by the pure state machine in ``validation_engines`` and
    persisted here, together with its validation record and audit event,
    inside the caller's transaction.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/ and
    validation_engines.

Invariants enforced:
    - required_level is resolved once, at creation, and never recomputed.
      Stored threshold policies win over configured ones for the same
      scope.
    - The rule set is read once per creation (one SELECT) and matched
      first-match-wins.
    - Terminal requests accept no decision: AlreadyFinalizedError and no
      validation record.
    - Optimistic concurrency: the request row is updated with
      ``WHERE version = :seen`` and flushed BEFORE the validation record
      is inserted, so the losing writer never appends history.
    - Services flush, never commit.

Failure modes:
    - ValidationRequestNotFoundError for an unknown request id.
    - AlreadyFinalizedError, InsufficientLevelError,
      LevelAlreadyAdvancedError, ConcurrentModificationError.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from validation_engines.rule_matcher import match_rules
from validation_engines.state_machine import (
    TransitionEvent,
    TransitionOutcome,
    apply_cancellation,
    apply_decision,
    apply_escalation,
    is_stale,
    open_request,
)
from validation_engines.statistics import (
    ThresholdUsageReport,
    ValidatorStats,
    threshold_usage,
    validator_stats,
)
from validation_engines.thresholds import resolve_levels
from validation_kernel.domain.clock import Clock, SystemClock
from validation_kernel.domain.fields import as_number
from validation_kernel.domain.thresholds import ThresholdPolicySet
from validation_kernel.domain.validation import (
    Decision,
    DecisionEvidence,
    EngineSettings,
    EntityType,
    Geolocation,
    Priority,
    ValidationRequest,
)
from validation_kernel.exceptions import (
    ConcurrentModificationError,
    ValidationKernelError,
    ValidationRequestNotFoundError,
)
from validation_kernel.logging_config import LogContext, get_logger
from validation_kernel.models.audit_event import AuditAction
from validation_kernel.models.validation import ValidationRequestModel
from validation_kernel.selectors.rule_selector import RuleSelector
from validation_kernel.selectors.threshold_selector import ThresholdSelector
from validation_kernel.selectors.validation_selector import ValidationSelector
from validation_kernel.services.auditor_service import AuditorService
from validation_kernel.services.trace_recorder import TraceRecorder

logger = get_logger("services.validation")

SYSTEM_ACTOR = "system"

_AUDIT_ACTIONS: dict[TransitionEvent, AuditAction] = {
    TransitionEvent.AUTO_APPROVED: AuditAction.VALIDATION_AUTO_APPROVED,
    TransitionEvent.AUTO_REJECTED: AuditAction.VALIDATION_AUTO_REJECTED,
    TransitionEvent.FLAGGED_FOR_ESCALATION: AuditAction.VALIDATION_FLAGGED,
    TransitionEvent.LEVEL_APPROVED: AuditAction.VALIDATION_LEVEL_APPROVED,
    TransitionEvent.APPROVED: AuditAction.VALIDATION_APPROVED,
    TransitionEvent.REJECTED: AuditAction.VALIDATION_REJECTED,
}


def _parse_amount(value: Any) -> Decimal | None:
    if value is None:
        return None
    amount = as_number(value)
    if amount is None:
        raise ValueError(f"amount must be a number, got {value!r}")
    return amount


class ValidationService:
    """Manages the validation request lifecycle."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
        *,
        thresholds: ThresholdPolicySet | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._thresholds = thresholds or ThresholdPolicySet()
        self._settings = settings or EngineSettings()
        self._trace = TraceRecorder(session)
        self._requests = ValidationSelector(session)
        self._rules = RuleSelector(session)
        self._stored = ThresholdSelector(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_validation_request(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        attributes: Mapping[str, Any] | None,
        requester_id: str,
        priority: Priority | str | None = None,
        *,
        workspace_id: str | None = None,
        amount: Decimal | int | float | None = None,
        reason: str | None = None,
        tags: Iterable[str] = (),
        category: str | None = None,
    ) -> ValidationRequest:
        """Open a request, stamp its required level and try the rules.

        ``amount`` and ``reason`` may also be passed inside ``attributes``;
        explicit arguments win.  ``category`` narrows the threshold policy
        lookup.  When no rule matches, an amount below the policy's
        auto-approval threshold approves the request at once.

        Raises:
            ValueError: unknown entity type or priority, non-numeric amount.
        """
        entity_type = EntityType(entity_type)
        priority = Priority(priority) if priority is not None else self._settings.default_priority
        workspace_id = workspace_id or self._settings.default_workspace

        extra = dict(attributes or {})
        lifted_amount = extra.pop("amount", None)
        lifted_reason = extra.pop("reason", None)
        amount_value = _parse_amount(amount if amount is not None else lifted_amount)
        reason = reason if reason is not None else lifted_reason

        request_id = uuid4()
        now = self._clock.now()

        with LogContext.bind(
            request_id=request_id, actor_id=requester_id, workspace_id=workspace_id,
        ):
            stored = self._stored.policy_set_for(workspace_id, entity_type)
            policy = stored.merged_with(self._thresholds).lookup(
                workspace_id, entity_type, (category or "").strip() or None,
            )
            resolution = resolve_levels(policy, amount_value)

            opening: dict[str, Any] = dict(
                request_id=request_id,
                workspace_id=workspace_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                requester_id=requester_id,
                priority=priority,
                resolution=resolution,
                now=now,
                amount=amount_value,
                reason=reason,
                attributes=extra,
                tags=tuple(tags),
            )
            candidate = open_request(match=None, **opening).request
            rules = self._rules.active_rules_for(entity_type)
            match = match_rules(rules, entity_type, candidate.rule_snapshot())
            outcome = open_request(match=match, **opening)

            model = ValidationRequestModel.from_dto(outcome.request)
            self._session.add(model)
            self._session.flush()

            if outcome.validation is not None:
                self._trace.append(outcome.validation)
                self._session.expire(model, ["validations"])

            created = model.to_dto()
            self._auditor.record_request_created(
                created, resolution.policy_key, resolution.policy_version,
            )
            if match is not None:
                self._auditor.record_rule_outcome(
                    created, _AUDIT_ACTIONS[outcome.event], match,
                )
            elif outcome.event == TransitionEvent.THRESHOLD_AUTO_APPROVED:
                self._auditor.record_threshold_auto_approval(created, resolution)

            logger.info(
                "validation_request_created",
                extra={
                    "entity_type": entity_type.value,
                    "entity_id": created.entity_id,
                    "status": created.status.value,
                    "required_level": created.required_level,
                    "threshold_policy": resolution.policy_key,
                    "threshold_policy_version": resolution.policy_version,
                    "auto_approve_below": (
                        str(resolution.auto_approve_below)
                        if resolution.auto_approve_below is not None else None
                    ),
                    "rules_considered": len(rules),
                    "matched_rule_id": str(match.rule_id) if match else None,
                    "transition": outcome.event.value,
                },
            )
            return created

    # ------------------------------------------------------------------
    # Human decision
    # ------------------------------------------------------------------

    def process(
        self,
        request_id: UUID,
        validator_id: str,
        validator_level: int,
        decision: Decision | str,
        *,
        comment: str | None = None,
        geolocation: Geolocation | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        signature_ref: str | None = None,
        expected_level: int | None = None,
        expected_version: int | None = None,
    ) -> ValidationRequest:
        """Record one validator's decision.

        Reject finalizes.  Approve at the required level finalizes;
        approve below it advances the request one level.

        Raises:
            ValidationRequestNotFoundError, AlreadyFinalizedError,
            InsufficientLevelError, LevelAlreadyAdvancedError,
            ConcurrentModificationError.
        """
        decision = Decision(decision)
        with LogContext.bind(request_id=request_id, actor_id=validator_id):
            model = self._load_for_update(request_id)
            snapshot = model.to_dto()

            try:
                outcome = apply_decision(
                    snapshot,
                    validator_id=validator_id,
                    validator_level=validator_level,
                    decision=decision,
                    now=self._clock.now(),
                    evidence=DecisionEvidence(
                        comment=comment,
                        geolocation=geolocation,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        signature_ref=signature_ref,
                    ),
                    expected_level=expected_level,
                    expected_version=expected_version,
                )
            except ValidationKernelError as exc:
                logger.warning(
                    "validation_decision_refused",
                    extra={
                        "exc_code": exc.code,
                        "status": snapshot.status.value,
                        "current_level": snapshot.current_level,
                        "min_validator_level": snapshot.min_validator_level,
                        "validator_level": validator_level,
                    },
                )
                raise

            self._persist(model, outcome)
            assert outcome.validation is not None
            self._trace.append(outcome.validation)
            self._session.expire(model, ["validations"])

            updated = model.to_dto()
            self._auditor.record_decision(
                updated, outcome.validation, _AUDIT_ACTIONS[outcome.event],
            )
            logger.info(
                "validation_decision_recorded",
                extra={
                    "decision": decision.value,
                    "validator_level": validator_level,
                    "decided_at_level": outcome.validation.level,
                    "status": updated.status.value,
                    "current_level": updated.current_level,
                    "required_level": updated.required_level,
                    "transition": outcome.event.value,
                },
            )
            return updated

    # ------------------------------------------------------------------
    # Escalation
    # ------------------------------------------------------------------

    def escalate(
        self,
        request_id: UUID,
        reason: str | None = None,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ValidationRequest:
        """Raise the minimum acting authority of a pending request.

        Already escalated or finalized requests come back unchanged.
        """
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            model = self._load_for_update(request_id)
            snapshot = model.to_dto()
            outcome = apply_escalation(snapshot, now=self._clock.now(), reason=reason)

            if not outcome.changed:
                logger.info(
                    "validation_escalation_skipped",
                    extra={"status": snapshot.status.value},
                )
                return snapshot

            self._persist(model, outcome)
            updated = model.to_dto()
            self._auditor.record_escalation(updated, actor_id)
            logger.info(
                "validation_escalated",
                extra={
                    "reason": reason,
                    "current_level": updated.current_level,
                    "min_validator_level": updated.min_validator_level,
                    "required_level": updated.required_level,
                },
            )
            return updated

    def escalate_stale(self, as_of: datetime | None = None) -> list[UUID]:
        """Escalate every request pending longer than the staleness window.

        Returns the ids of the requests escalated by this sweep.
        """
        now = as_of or self._clock.now()
        window = self._settings.staleness_window_hours
        cutoff = now - timedelta(hours=window)

        escalated: list[UUID] = []
        for request_id in self._requests.stale_request_ids(cutoff):
            model = self._load_for_update(request_id)
            if not is_stale(model.to_dto(), now, window):
                continue
            self.escalate(
                request_id,
                reason=f"No decision within {window} hours",
            )
            escalated.append(request_id)

        logger.info(
            "validation_escalation_sweep_completed",
            extra={
                "as_of": now,
                "staleness_window_hours": window,
                "escalated_count": len(escalated),
            },
        )
        return escalated

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, request_id: UUID, actor_id: str) -> ValidationRequest:
        """Withdraw an open request.

        Raises:
            ValidationRequestNotFoundError, AlreadyFinalizedError.
        """
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            model = self._load_for_update(request_id)
            outcome = apply_cancellation(
                model.to_dto(), actor_id=actor_id, now=self._clock.now(),
            )
            self._persist(model, outcome)
            updated = model.to_dto()
            self._auditor.record_cancellation(updated)
            logger.info(
                "validation_cancelled",
                extra={"current_level": updated.current_level},
            )
            return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ValidationRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise ValidationRequestNotFoundError(str(request_id))
        return request

    def list_pending(
        self,
        validator_level: int,
        workspace_id: str | None = None,
    ) -> list[ValidationRequest]:
        return self._requests.list_pending(
            validator_level, workspace_id or self._settings.default_workspace,
        )

    def get_history(
        self,
        entity_type: EntityType | str,
        entity_id: str,
    ) -> list[ValidationRequest]:
        """Every request raised for an entity, newest first."""
        return self._requests.entity_history(EntityType(entity_type), str(entity_id))

    def get_validator_stats(
        self,
        workspace_id: str,
        validator_id: str,
        start: datetime,
        end: datetime,
    ) -> ValidatorStats:
        requests = self._requests.requests_in_period(workspace_id, start, end)
        return validator_stats(requests, validator_id)

    def get_threshold_usage(
        self,
        workspace_id: str,
        start: datetime,
        end: datetime,
    ) -> ThresholdUsageReport:
        requests = self._requests.requests_in_period(workspace_id, start, end)
        return threshold_usage(requests)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_for_update(self, request_id: UUID) -> ValidationRequestModel:
        model = self._session.execute(
            select(ValidationRequestModel)
            .where(ValidationRequestModel.request_id == request_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise ValidationRequestNotFoundError(str(request_id))
        return model

    def _persist(self, model: ValidationRequestModel, outcome: TransitionOutcome) -> None:
        """Write the new snapshot with the version check."""
        seen_version = model.version
        model.apply_snapshot(outcome.request)
        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning(
                "validation_concurrent_modification",
                extra={
                    "exc_code": ConcurrentModificationError.code,
                    "expected_version": seen_version,
                },
            )
            raise ConcurrentModificationError(
                "ValidationRequest", str(model.request_id), seen_version,
            ) from exc
