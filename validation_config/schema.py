"""
ValidationConfigurationSet schema.

Defines the human-authored, reviewable source artifact for validation
configuration.  YAML fragments are parsed into these types by the loader
and compiled into a CompiledValidationConfig by the compiler.

Key distinction:
  ValidationConfigurationSet = source artifact (human-authored, versioned)
  CompiledValidationConfig   = runtime artifact (machine-validated, frozen)

Amounts stay strings here; the compiler turns them into Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineSettingsDef:
    """Lifecycle knobs (engine.yaml)."""

    staleness_window_hours: int = 48
    default_priority: str = "medium"
    default_workspace: str = "default"


@dataclass(frozen=True)
class ThresholdPolicyDef:
    """YAML-authored threshold policy for one entity type."""

    entity_type: str
    level_thresholds: tuple[str, ...]
    levels_without_amount: int = 1
    first_validator_level: int = 1
    workspace_id: str = "*"
    category: str | None = None
    auto_approve_below: str = "0"
    unit: str = "amount"
    description: str | None = None


@dataclass(frozen=True)
class ConditionTemplateDef:
    """One condition slot of a rule template."""

    field: str
    label: str
    field_type: str
    operator: str
    default_value: Any = None
    placeholder: str | None = None


@dataclass(frozen=True)
class RuleTemplateDef:
    """YAML-authored rule template."""

    template_id: str
    name: str
    description: str
    category: str
    conditions: tuple[ConditionTemplateDef, ...]
    action: str
    action_reason: str | None = None
    estimated_time_saving: str | None = None


@dataclass(frozen=True)
class ValidationConfigurationSet:
    """Complete source configuration, as loaded from one directory."""

    config_id: str
    version: int
    settings: EngineSettingsDef
    thresholds: tuple[ThresholdPolicyDef, ...]
    templates: tuple[RuleTemplateDef, ...]
    checksum: str
