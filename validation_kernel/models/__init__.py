"""ORM models for the validation kernel."""

from validation_kernel.models.audit_event import AuditAction, AuditEvent
from validation_kernel.models.rule import RuleModel, RuleTemplateUsageModel
from validation_kernel.models.threshold import ThresholdPolicyModel
from validation_kernel.models.validation import (
    ValidationRecordModel,
    ValidationRequestModel,
)

__all__ = [
    "AuditAction",
    "AuditEvent",
    "RuleModel",
    "RuleTemplateUsageModel",
    "ThresholdPolicyModel",
    "ValidationRecordModel",
    "ValidationRequestModel",
]
