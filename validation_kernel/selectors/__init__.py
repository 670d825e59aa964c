"""Selectors for the validation kernel (read side)."""

from validation_kernel.selectors.base import BaseSelector
from validation_kernel.selectors.rule_selector import RuleSelector
from validation_kernel.selectors.threshold_selector import ThresholdSelector
from validation_kernel.selectors.validation_selector import ValidationSelector

__all__ = [
    "BaseSelector",
    "RuleSelector",
    "ThresholdSelector",
    "ValidationSelector",
]
