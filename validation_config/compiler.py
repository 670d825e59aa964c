"""
Configuration Compiler -- ValidationConfigurationSet -> CompiledValidationConfig.

The compiler validates the configuration set and produces a frozen,
machine-validated runtime artifact whose members are kernel domain
objects, ready to hand to the services.

Compilation validates:
  - Engine settings are usable (positive staleness window, known priority)
  - Every threshold policy names a known entity type, has three strictly
    increasing non-negative thresholds and valid level numbers, and any
    auto-approval amount sits below the level 1 threshold
  - No two threshold policies share a (workspace, entity type, category) key
  - Every rule template names a known category and action, references only
    catalog fields with their catalog type and an allowed operator, and any
    default value compiles
  - Template ids are unique
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from validation_config.schema import (
    RuleTemplateDef,
    ThresholdPolicyDef,
    ValidationConfigurationSet,
)
from validation_engines.conditions import compile_condition
from validation_engines.thresholds import validate_threshold_policy
from validation_kernel.domain.fields import field_spec
from validation_kernel.domain.rules import (
    OPERATORS_BY_FIELD_TYPE,
    ConditionOperator,
    ConditionSpec,
    ConditionTemplate,
    FieldType,
    RuleAction,
    RuleCategory,
    RuleTemplate,
)
from validation_kernel.domain.thresholds import ThresholdPolicy, ThresholdPolicySet
from validation_kernel.domain.validation import EngineSettings, EntityType, Priority
from validation_kernel.exceptions import (
    InvalidRuleConfigurationError,
    ValidationKernelError,
)


# ---------------------------------------------------------------------------
# Compiled types (frozen, runtime-ready)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompiledValidationConfig:
    """Machine-validated, frozen runtime artifact.

    Attributes:
        config_id: Source configuration identifier
        version: Source configuration version
        checksum: Matches source ValidationConfigurationSet
        settings: Lifecycle settings
        thresholds: Threshold policies, ready for lookup
        templates: Read-only rule templates
    """

    config_id: str
    version: int
    checksum: str
    settings: EngineSettings
    thresholds: ThresholdPolicySet
    templates: tuple[RuleTemplate, ...]


# ---------------------------------------------------------------------------
# Compilation errors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompilationError:
    """An error found during compilation."""

    category: str  # "settings", "threshold", "template"
    message: str
    source: str = ""


class CompilationFailedError(ValidationKernelError):
    """Compilation produced errors that prevent creating a valid config."""

    code: str = "COMPILATION_FAILED"

    def __init__(self, errors: list[CompilationError]):
        self.errors = errors
        messages = [f"  [{e.category}] {e.message}" for e in errors]
        super().__init__(
            f"Compilation failed with {len(messages)} error(s):\n"
            + "\n".join(messages)
        )


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


def compile_validation_config(config: ValidationConfigurationSet) -> CompiledValidationConfig:
    """Compile a configuration set.

    Raises:
        CompilationFailedError: listing every problem found.
    """
    errors: list[CompilationError] = []

    settings = _compile_settings(config, errors)
    policies = _compile_thresholds(config.thresholds, errors)
    templates = _compile_templates(config.templates, errors)

    if errors:
        raise CompilationFailedError(errors)

    return CompiledValidationConfig(
        config_id=config.config_id,
        version=config.version,
        checksum=config.checksum,
        settings=settings,
        thresholds=ThresholdPolicySet(policies=tuple(policies)),
        templates=tuple(templates),
    )


def _compile_settings(
    config: ValidationConfigurationSet,
    errors: list[CompilationError],
) -> EngineSettings:
    raw = config.settings
    if raw.staleness_window_hours <= 0:
        errors.append(CompilationError(
            "settings", "staleness_window_hours must be positive",
        ))
    try:
        priority = Priority(raw.default_priority)
    except ValueError:
        errors.append(CompilationError(
            "settings", f"unknown default_priority '{raw.default_priority}'",
        ))
        priority = Priority.MEDIUM
    if not raw.default_workspace:
        errors.append(CompilationError("settings", "default_workspace must not be empty"))

    return EngineSettings(
        staleness_window_hours=raw.staleness_window_hours,
        default_priority=priority,
        default_workspace=raw.default_workspace,
    )


def _compile_thresholds(
    defs: tuple[ThresholdPolicyDef, ...],
    errors: list[CompilationError],
) -> list[ThresholdPolicy]:
    compiled: list[ThresholdPolicy] = []
    seen: set[str] = set()

    for d in defs:
        source = f"{d.workspace_id}/{d.entity_type}"
        if d.category:
            source = f"{source}/{d.category}"
        try:
            entity_type = EntityType(d.entity_type)
        except ValueError:
            errors.append(CompilationError(
                "threshold", f"unknown entity type '{d.entity_type}'", source,
            ))
            continue
        try:
            thresholds = tuple(Decimal(t) for t in d.level_thresholds)
        except InvalidOperation:
            errors.append(CompilationError(
                "threshold", f"non-numeric threshold in {list(d.level_thresholds)}", source,
            ))
            continue
        try:
            auto_approve_below = Decimal(d.auto_approve_below)
        except InvalidOperation:
            errors.append(CompilationError(
                "threshold", f"non-numeric auto_approve_below {d.auto_approve_below!r}", source,
            ))
            continue

        policy = ThresholdPolicy(
            entity_type=entity_type,
            level_thresholds=thresholds,  # type: ignore[arg-type]
            levels_without_amount=d.levels_without_amount,
            first_validator_level=d.first_validator_level,
            workspace_id=d.workspace_id,
            category=d.category or None,
            auto_approve_below=auto_approve_below,
            unit=d.unit,
            description=d.description,
        )
        for problem in validate_threshold_policy(policy):
            errors.append(CompilationError("threshold", problem, source))
        if policy.policy_key in seen:
            errors.append(CompilationError(
                "threshold", f"duplicate policy for {policy.policy_key}", source,
            ))
        seen.add(policy.policy_key)
        compiled.append(policy)

    return compiled


def _compile_templates(
    defs: tuple[RuleTemplateDef, ...],
    errors: list[CompilationError],
) -> list[RuleTemplate]:
    compiled: list[RuleTemplate] = []
    seen: set[str] = set()

    for d in defs:
        source = d.template_id
        if d.template_id in seen:
            errors.append(CompilationError("template", "duplicate template id", source))
        seen.add(d.template_id)

        try:
            category = RuleCategory(d.category)
            action = RuleAction(d.action)
        except ValueError as exc:
            errors.append(CompilationError("template", str(exc), source))
            continue
        if not d.conditions:
            errors.append(CompilationError("template", "no conditions", source))
            continue

        slots: list[ConditionTemplate] = []
        for cond in d.conditions:
            slot = _compile_condition_template(category, cond, source, errors)
            if slot is not None:
                slots.append(slot)
        if len(slots) != len(d.conditions):
            continue

        compiled.append(RuleTemplate(
            template_id=d.template_id,
            name=d.name,
            description=d.description,
            category=category,
            condition_template=tuple(slots),
            action=action,
            action_reason=d.action_reason,
            estimated_time_saving=d.estimated_time_saving,
        ))

    return compiled


def _compile_condition_template(category, cond, source, errors) -> ConditionTemplate | None:
    spec = field_spec(category, cond.field)
    if spec is None:
        errors.append(CompilationError(
            "template", f"unknown field '{cond.field}' for '{category.value}'", source,
        ))
        return None
    try:
        field_type = FieldType(cond.field_type)
        operator = ConditionOperator(cond.operator)
    except ValueError as exc:
        errors.append(CompilationError("template", str(exc), source))
        return None
    if field_type != spec.field_type:
        errors.append(CompilationError(
            "template",
            f"field '{cond.field}' is {spec.field_type.value}, not {field_type.value}",
            source,
        ))
        return None
    if operator not in OPERATORS_BY_FIELD_TYPE[field_type]:
        errors.append(CompilationError(
            "template",
            f"operator '{operator.value}' not allowed for {field_type.value} fields",
            source,
        ))
        return None
    if cond.default_value is not None:
        try:
            compile_condition(
                ConditionSpec(cond.field, operator.value, cond.default_value),
                category,
                rule_name=source,
            )
        except InvalidRuleConfigurationError as exc:
            for message in exc.errors:
                errors.append(CompilationError("template", message, source))
            return None

    return ConditionTemplate(
        field=cond.field,
        label=cond.label,
        field_type=field_type,
        operator=operator,
        default_value=cond.default_value,
        placeholder=cond.placeholder,
    )
