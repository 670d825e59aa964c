"""
Rule domain types (``validation_kernel.domain.rules``).

Responsibility
--------------
Value objects for automated decision rules and the read-only templates
they can be instantiated from.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* A persisted ``Rule`` only ever holds compiled, well-typed conditions
  (see ``validation_engines.conditions.compile_condition``).
* Rules are deactivated, never deleted; ``position`` fixes their
  evaluation order inside a category.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Union
from uuid import UUID

from validation_kernel.domain.validation import EntityType


class RuleCategory(str, Enum):
    """Rule scope: one entity type, or every type (``generic``)."""

    EXPENSE = "expense"
    PURCHASE_ORDER = "purchase_order"
    PRODUCTION_ORDER = "production_order"
    ADVANCE = "advance"
    DEBT = "debt"
    LEAVE = "leave"
    TRANSFER = "transfer"
    PRICE_ADJUSTMENT = "price_adjustment"
    CREDIT_APPROVAL = "credit_approval"
    GENERIC = "generic"

    @classmethod
    def for_entity(cls, entity_type: EntityType) -> RuleCategory:
        return cls(entity_type.value)


class RuleAction(str, Enum):
    """What a matching rule does to a new request."""

    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"


class FieldType(str, Enum):
    NUMBER = "number"
    TEXT = "text"
    DATE = "date"


class ConditionOperator(str, Enum):
    """Comparison operators available to rule conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"

    @property
    def label(self) -> str:
        return _OPERATOR_LABELS[self]


_OPERATOR_LABELS = {
    ConditionOperator.EQUALS: "equals",
    ConditionOperator.NOT_EQUALS: "does not equal",
    ConditionOperator.GREATER_THAN: "is greater than",
    ConditionOperator.GREATER_THAN_OR_EQUAL: "is at least",
    ConditionOperator.LESS_THAN: "is less than",
    ConditionOperator.LESS_THAN_OR_EQUAL: "is at most",
    ConditionOperator.CONTAINS: "contains",
    ConditionOperator.NOT_CONTAINS: "does not contain",
    ConditionOperator.STARTS_WITH: "starts with",
    ConditionOperator.IN: "is one of",
    ConditionOperator.NOT_IN: "is not one of",
    ConditionOperator.BETWEEN: "is between",
}

_ORDERED_OPERATORS = frozenset({
    ConditionOperator.EQUALS,
    ConditionOperator.NOT_EQUALS,
    ConditionOperator.GREATER_THAN,
    ConditionOperator.GREATER_THAN_OR_EQUAL,
    ConditionOperator.LESS_THAN,
    ConditionOperator.LESS_THAN_OR_EQUAL,
    ConditionOperator.BETWEEN,
    ConditionOperator.IN,
    ConditionOperator.NOT_IN,
})

OPERATORS_BY_FIELD_TYPE: dict[FieldType, frozenset[ConditionOperator]] = {
    FieldType.NUMBER: _ORDERED_OPERATORS,
    FieldType.DATE: _ORDERED_OPERATORS,
    FieldType.TEXT: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.NOT_EQUALS,
        ConditionOperator.CONTAINS,
        ConditionOperator.NOT_CONTAINS,
        ConditionOperator.STARTS_WITH,
        ConditionOperator.IN,
        ConditionOperator.NOT_IN,
    }),
}

# Single compiled value: Decimal (number), str (text) or date (date).
Scalar = Union[Decimal, str, date]


@dataclass(frozen=True)
class ConditionSpec:
    """Raw, user-supplied condition awaiting compilation."""

    field: str
    operator: str
    value: Any


@dataclass(frozen=True)
class RuleCondition:
    """Compiled condition.

    ``value`` is a Scalar, or a tuple of Scalars for ``in``/``not_in``
    and a two-element (low, high) tuple for ``between``.
    """

    field: str
    field_type: FieldType
    operator: ConditionOperator
    value: Scalar | tuple[Scalar, ...]
    label: str | None = None

    def describe(self) -> str:
        subject = self.label or self.field
        if not isinstance(self.value, tuple):
            rendered = str(self.value)
        elif self.operator == ConditionOperator.BETWEEN:
            rendered = " and ".join(str(v) for v in self.value)
        else:
            rendered = ", ".join(str(v) for v in self.value)
        return f"{subject} {self.operator.label} {rendered}"


@dataclass(frozen=True)
class Rule:
    """A named, ordered, AND-combined set of conditions with one action."""

    rule_id: UUID
    name: str
    category: RuleCategory
    conditions: tuple[RuleCondition, ...]
    action: RuleAction
    position: int
    is_active: bool = True
    description: str | None = None
    action_reason: str | None = None
    template_id: str | None = None
    version: int = 1
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RuleDraft:
    """Input for creating or updating a rule.

    ``rule_id`` None creates a new rule; ``position`` None appends it to
    the end of its category.
    """

    name: str
    category: RuleCategory
    conditions: tuple[ConditionSpec, ...]
    action: RuleAction
    description: str | None = None
    action_reason: str | None = None
    is_active: bool = True
    rule_id: UUID | None = None
    position: int | None = None
    template_id: str | None = None


@dataclass(frozen=True)
class RuleMatch:
    """The first rule that fully matched a request."""

    action: RuleAction
    rule_id: UUID
    rule_name: str
    reason: str


# =========================================================================
# Templates
# =========================================================================


@dataclass(frozen=True)
class ConditionTemplate:
    """Shape of one condition in a template; the value is filled later."""

    field: str
    label: str
    field_type: FieldType
    operator: ConditionOperator
    default_value: Any = None
    placeholder: str | None = None


@dataclass(frozen=True)
class RuleTemplate:
    """Read-only seed a rule can be instantiated from."""

    template_id: str
    name: str
    description: str
    category: RuleCategory
    condition_template: tuple[ConditionTemplate, ...]
    action: RuleAction
    action_reason: str | None = None
    estimated_time_saving: str | None = None


@dataclass(frozen=True)
class TemplateListing:
    template: RuleTemplate
    usage_count: int = 0
