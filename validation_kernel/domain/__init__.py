"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from validation_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from validation_kernel.domain.fields import FIELD_CATALOG, FieldSpec, read_field
from validation_kernel.domain.rules import (
    ConditionOperator,
    ConditionSpec,
    ConditionTemplate,
    FieldType,
    Rule,
    RuleAction,
    RuleCategory,
    RuleCondition,
    RuleDraft,
    RuleMatch,
    RuleTemplate,
    TemplateListing,
)
from validation_kernel.domain.thresholds import (
    ThresholdPolicy,
    ThresholdPolicySet,
    ThresholdResolution,
)
from validation_kernel.domain.validation import (
    MAX_AUTHORITY_LEVEL,
    TERMINAL_VALIDATION_STATUSES,
    VALIDATION_TRANSITIONS,
    AuthorityLevel,
    Decision,
    DecisionEvidence,
    EngineSettings,
    EntityType,
    Geolocation,
    Priority,
    ValidationRecord,
    ValidationRequest,
    ValidationStatus,
    ValidatorIdentity,
    ValidatorKind,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "FIELD_CATALOG",
    "FieldSpec",
    "read_field",
    "ConditionOperator",
    "ConditionSpec",
    "ConditionTemplate",
    "FieldType",
    "Rule",
    "RuleAction",
    "RuleCategory",
    "RuleCondition",
    "RuleDraft",
    "RuleMatch",
    "RuleTemplate",
    "TemplateListing",
    "ThresholdPolicy",
    "ThresholdPolicySet",
    "ThresholdResolution",
    "MAX_AUTHORITY_LEVEL",
    "TERMINAL_VALIDATION_STATUSES",
    "VALIDATION_TRANSITIONS",
    "AuthorityLevel",
    "Decision",
    "DecisionEvidence",
    "EngineSettings",
    "EntityType",
    "Geolocation",
    "Priority",
    "ValidationRecord",
    "ValidationRequest",
    "ValidationStatus",
    "ValidatorIdentity",
    "ValidatorKind",
]
