"""Services for the validation kernel (write side)."""

from validation_kernel.services.auditor_service import AuditorService, AuditTrace
from validation_kernel.services.rule_service import RuleService
from validation_kernel.services.sequence_service import SequenceService
from validation_kernel.services.threshold_service import ThresholdService
from validation_kernel.services.trace_recorder import TraceRecorder
from validation_kernel.services.validation_service import ValidationService

__all__ = [
    "AuditTrace",
    "AuditorService",
    "RuleService",
    "SequenceService",
    "ThresholdService",
    "TraceRecorder",
    "ValidationService",
]
